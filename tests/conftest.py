"""Shared fakes for PixelVerse tests."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Dict, List, Optional

import pytest

from pixelverse.clock import ManualClock
from pixelverse.locations import LocationGraph
from pixelverse.memory import MemoryStore
from pixelverse.persistence import InMemoryPersistence
from pixelverse.schemas import AgentState, Location, ModelTier

_SPEAKER = re.compile(r"You are (?P<name>[^,]+), a Pix")


class ScriptedGenerator:
    """Generator returning canned replies per agent name, recording every call."""

    def __init__(
        self,
        replies: Optional[Dict[str, List[str]]] = None,
        default: str = "[think] What a quiet moment.",
        fail_for: Optional[set] = None,
    ):
        self.replies = {name: list(texts) for name, texts in (replies or {}).items()}
        self.default = default
        self.fail_for = fail_for or set()
        self.calls: List[dict] = []

    async def generate(self, context, tier, *, model=None, structured=False):
        match = _SPEAKER.search(context)
        name = match.group("name") if match else None
        self.calls.append(
            {"name": name, "context": context, "tier": tier, "model": model, "structured": structured}
        )
        if name in self.fail_for:
            raise RuntimeError(f"provider down for {name}")
        queue = self.replies.get(name)
        if queue:
            return queue.pop(0)
        return self.default

    def calls_for(self, name: str) -> List[dict]:
        return [call for call in self.calls if call["name"] == name]


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(datetime(2025, 3, 10, 9, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def persistence() -> InMemoryPersistence:
    return InMemoryPersistence()


@pytest.fixture
def memory(persistence, clock) -> MemoryStore:
    return MemoryStore(persistence, clock=clock)


def make_location(location_id: str, capacity: int = 10, connects_to=(), name=None) -> Location:
    return Location(
        location_id=location_id,
        name=name or location_id.title(),
        description=f"The {location_id}.",
        capacity=capacity,
        connects_to=list(connects_to),
    )


async def make_agent(
    persistence, graph: Optional[LocationGraph], agent_id: str, location_id: str, **stats
) -> AgentState:
    agent = AgentState(agent_id=agent_id, name=agent_id.title(), location_id=location_id, **stats)
    await persistence.save_agent(agent)
    if graph is not None:
        await graph.place(agent_id, location_id)
    return agent


__all__ = ["ScriptedGenerator", "make_agent", "make_location", "ModelTier"]
