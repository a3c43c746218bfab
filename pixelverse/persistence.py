"""
PersistenceStrategy interface for pluggable storage backends.

This module provides the abstract PersistenceStrategy interface and two concrete
implementations. The core never issues raw queries: every component reads and
writes through the narrow per-entity accessors declared here.

Two included implementations:
1. InMemoryPersistence - Dict-based storage, data lost on exit (testing, prototyping)
2. JsonPersistence - In-memory working set snapshotted to a JSON file (small worlds)

Entities:
- Agents (identity, stats, location reference)
- Locations and location events
- Messages (direct + broadcast)
- Activity log (episodic memory), memory summaries, social memories, insights
- Personality souls

Async design rationale:
- All methods are async so a database-backed strategy can be dropped in
  without touching the components
- initialize() and close() manage connection lifecycle (files, pools, etc.)

Usage pattern:
    persistence = InMemoryPersistence()  # or JsonPersistence("pixelverse_data")
    await persistence.initialize()
    await persistence.save_agent(agent)
    await persistence.close()
"""

import asyncio
import itertools
import json
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from pixelverse.schemas import (
    ActivityRecord,
    AgentState,
    Channel,
    Insight,
    Location,
    LocationEvent,
    Message,
    PersonalitySoul,
    SocialMemory,
    SocialMemoryType,
)


class UnknownAgentError(KeyError):
    """Raised when an operation names an agent that is not in the world."""

    def __init__(self, agent_id: str):
        super().__init__(agent_id)
        self.agent_id = agent_id

    def __str__(self) -> str:
        return (
            f"Unknown agent '{self.agent_id}'. "
            "Spawn it first (Orchestrator.spawn_agent) or check the world file's agent ids."
        )


class PersistenceStrategy(ABC):
    """Abstract base class for world state persistence.

    Method categories:
    1. Lifecycle: initialize(), close()
    2. Agents: save_agent(), get_agent(), list_agents()
    3. Locations: save_location(), get_location(), list_locations()
    4. Location events: add_location_event(), get_location_events()
    5. Messages: add_message(), get_messages(), mark_messages_read(), delete_expired_messages()
    6. Activity log: add_activity(), get_recent_activities(), get_activities_since(), prune_activities()
    7. Summaries: get_summary(), save_summary()
    8. Social memory: add_social_memory(), get_social_memories()
    9. Souls and insights: get_soul(), save_soul(), add_insight(), get_recent_insights()

    Design pattern: Strategy pattern - behavior varies (in-memory vs file)
    but interface remains consistent. Components depend on the interface only.
    """

    @abstractmethod
    async def initialize(self) -> None:
        """Initialize the backend (open files, connections)."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Flush and release backend resources."""
        pass

    # Agents -------------------------------------------------------------------

    @abstractmethod
    async def save_agent(self, agent: AgentState) -> None:
        """Insert or replace an agent record."""
        pass

    @abstractmethod
    async def get_agent(self, agent_id: str) -> Optional[AgentState]:
        pass

    @abstractmethod
    async def list_agents(self) -> List[AgentState]:
        """All agents in insertion order."""
        pass

    # Locations ----------------------------------------------------------------

    @abstractmethod
    async def save_location(self, location: Location) -> None:
        pass

    @abstractmethod
    async def get_location(self, location_id: str) -> Optional[Location]:
        pass

    @abstractmethod
    async def list_locations(self) -> List[Location]:
        pass

    @abstractmethod
    async def add_location_event(self, event: LocationEvent) -> LocationEvent:
        """Store an event and return it with ``event_id`` assigned."""
        pass

    @abstractmethod
    async def get_location_events(self, location_id: str) -> List[LocationEvent]:
        pass

    # Messages -----------------------------------------------------------------

    @abstractmethod
    async def add_message(self, message: Message) -> Message:
        """Store a message and return it with ``message_id`` assigned."""
        pass

    @abstractmethod
    async def get_messages(
        self,
        *,
        channel: Optional[Channel] = None,
        recipient_id: Optional[str] = None,
        location_id: Optional[str] = None,
        unread_only: bool = False,
    ) -> List[Message]:
        """Messages matching every given filter, oldest first."""
        pass

    @abstractmethod
    async def mark_messages_read(self, message_ids: List[int], read_at: datetime) -> None:
        pass

    @abstractmethod
    async def delete_expired_messages(self, now: datetime) -> int:
        """Delete messages whose expiry is in the past. Returns the count removed."""
        pass

    # Activity log -------------------------------------------------------------

    @abstractmethod
    async def add_activity(self, record: ActivityRecord) -> ActivityRecord:
        pass

    @abstractmethod
    async def get_recent_activities(
        self, agent_id: str, limit: int = 10, *, activity_types: Optional[List[str]] = None
    ) -> List[ActivityRecord]:
        """Most recent activities first."""
        pass

    @abstractmethod
    async def get_activities_since(self, agent_id: str, since: datetime) -> List[ActivityRecord]:
        """Activities created after ``since``, oldest first."""
        pass

    @abstractmethod
    async def prune_activities(self, agent_id: str, keep: int) -> int:
        """Drop all but the ``keep`` most recent activities. Returns the count removed."""
        pass

    # Summaries ----------------------------------------------------------------

    @abstractmethod
    async def get_summary(self, agent_id: str) -> Optional[str]:
        pass

    @abstractmethod
    async def save_summary(self, agent_id: str, summary: str) -> None:
        pass

    # Social memory ------------------------------------------------------------

    @abstractmethod
    async def add_social_memory(self, memory: SocialMemory) -> SocialMemory:
        pass

    @abstractmethod
    async def get_social_memories(
        self,
        agent_id: str,
        counterpart_id: Optional[str] = None,
        memory_type: Optional[SocialMemoryType] = None,
    ) -> List[SocialMemory]:
        """Matching social memories, oldest first."""
        pass

    # Souls and insights -------------------------------------------------------

    @abstractmethod
    async def get_soul(self, agent_id: str) -> Optional[PersonalitySoul]:
        pass

    @abstractmethod
    async def save_soul(self, agent_id: str, soul: PersonalitySoul) -> None:
        pass

    @abstractmethod
    async def add_insight(self, insight: Insight) -> None:
        pass

    @abstractmethod
    async def get_recent_insights(self, agent_id: str, limit: int = 3) -> List[Insight]:
        """Latest ``limit`` insights, oldest first."""
        pass


class InMemoryPersistence(PersistenceStrategy):
    """In-memory persistence using Python dicts (no database, no files).

    Records are copied on the way in and on the way out so callers cannot
    mutate stored state behind a component's back.

    Perfect for:
    - Unit testing (fast, isolated, no cleanup needed)
    - Short-lived worlds and demos

    NOT suitable for:
    - Persistence across restarts (data lost on exit)
    - Multi-process access (no shared memory)
    """

    def __init__(self):
        """Initialize in-memory storage."""
        self.agents: Dict[str, AgentState] = {}
        self.locations: Dict[str, Location] = {}
        self.location_events: List[LocationEvent] = []
        self.messages: Dict[int, Message] = {}
        self.activities: Dict[str, List[ActivityRecord]] = {}
        self.summaries: Dict[str, str] = {}
        self.social_memories: List[SocialMemory] = []
        self.souls: Dict[str, PersonalitySoul] = {}
        self.insights: List[Insight] = []
        self._reset_counters()

    def _reset_counters(self) -> None:
        # Autoincrement ids continue after whatever is already stored
        def _next(values: List[Optional[int]]) -> "itertools.count[int]":
            return itertools.count(max((v for v in values if v is not None), default=0) + 1)

        self._event_ids = _next([e.event_id for e in self.location_events])
        self._message_ids = _next(list(self.messages))
        self._activity_ids = _next(
            [r.record_id for records in self.activities.values() for r in records]
        )
        self._social_ids = _next([m.memory_id for m in self.social_memories])

    async def initialize(self) -> None:
        """No-op for in-memory implementation."""
        pass

    async def close(self) -> None:
        """No-op: data stays readable after close for post-run inspection."""
        pass

    # Agents -------------------------------------------------------------------

    async def save_agent(self, agent: AgentState) -> None:
        self.agents[agent.agent_id] = agent.model_copy(deep=True)

    async def get_agent(self, agent_id: str) -> Optional[AgentState]:
        agent = self.agents.get(agent_id)
        return agent.model_copy(deep=True) if agent else None

    async def list_agents(self) -> List[AgentState]:
        return [agent.model_copy(deep=True) for agent in self.agents.values()]

    # Locations ----------------------------------------------------------------

    async def save_location(self, location: Location) -> None:
        self.locations[location.location_id] = location.model_copy(deep=True)

    async def get_location(self, location_id: str) -> Optional[Location]:
        location = self.locations.get(location_id)
        return location.model_copy(deep=True) if location else None

    async def list_locations(self) -> List[Location]:
        return [loc.model_copy(deep=True) for loc in self.locations.values()]

    async def add_location_event(self, event: LocationEvent) -> LocationEvent:
        stored = event.model_copy(update={"event_id": next(self._event_ids)})
        self.location_events.append(stored)
        return stored.model_copy()

    async def get_location_events(self, location_id: str) -> List[LocationEvent]:
        return [e.model_copy() for e in self.location_events if e.location_id == location_id]

    # Messages -----------------------------------------------------------------

    async def add_message(self, message: Message) -> Message:
        stored = message.model_copy(deep=True, update={"message_id": next(self._message_ids)})
        self.messages[stored.message_id] = stored
        return stored.model_copy(deep=True)

    async def get_messages(
        self,
        *,
        channel: Optional[Channel] = None,
        recipient_id: Optional[str] = None,
        location_id: Optional[str] = None,
        unread_only: bool = False,
    ) -> List[Message]:
        matches: List[Message] = []
        for message in self.messages.values():
            if channel is not None and message.channel != channel:
                continue
            if recipient_id is not None and message.recipient_id != recipient_id:
                continue
            if location_id is not None and message.location_id != location_id:
                continue
            if unread_only and message.read_at is not None:
                continue
            matches.append(message.model_copy(deep=True))
        return matches

    async def mark_messages_read(self, message_ids: List[int], read_at: datetime) -> None:
        for message_id in message_ids:
            message = self.messages.get(message_id)
            if message is not None and message.read_at is None:
                message.read_at = read_at

    async def delete_expired_messages(self, now: datetime) -> int:
        expired = [
            message_id
            for message_id, message in self.messages.items()
            if message.expires_at is not None and message.expires_at < now
        ]
        for message_id in expired:
            del self.messages[message_id]
        return len(expired)

    # Activity log -------------------------------------------------------------

    async def add_activity(self, record: ActivityRecord) -> ActivityRecord:
        stored = record.model_copy(deep=True, update={"record_id": next(self._activity_ids)})
        self.activities.setdefault(record.agent_id, []).append(stored)
        return stored.model_copy(deep=True)

    async def get_recent_activities(
        self, agent_id: str, limit: int = 10, *, activity_types: Optional[List[str]] = None
    ) -> List[ActivityRecord]:
        records = self.activities.get(agent_id, [])
        if activity_types is not None:
            records = [r for r in records if r.activity_type in activity_types]
        # Stored in insertion order; newest first like ORDER BY id DESC
        return [r.model_copy(deep=True) for r in reversed(records[-limit:])] if limit > 0 else []

    async def get_activities_since(self, agent_id: str, since: datetime) -> List[ActivityRecord]:
        return [
            r.model_copy(deep=True)
            for r in self.activities.get(agent_id, [])
            if r.created_at > since
        ]

    async def prune_activities(self, agent_id: str, keep: int) -> int:
        records = self.activities.get(agent_id, [])
        overflow = len(records) - max(keep, 0)
        if overflow <= 0:
            return 0
        self.activities[agent_id] = records[overflow:]
        return overflow

    # Summaries ----------------------------------------------------------------

    async def get_summary(self, agent_id: str) -> Optional[str]:
        return self.summaries.get(agent_id)

    async def save_summary(self, agent_id: str, summary: str) -> None:
        self.summaries[agent_id] = summary

    # Social memory ------------------------------------------------------------

    async def add_social_memory(self, memory: SocialMemory) -> SocialMemory:
        stored = memory.model_copy(update={"memory_id": next(self._social_ids)})
        self.social_memories.append(stored)
        return stored.model_copy()

    async def get_social_memories(
        self,
        agent_id: str,
        counterpart_id: Optional[str] = None,
        memory_type: Optional[SocialMemoryType] = None,
    ) -> List[SocialMemory]:
        return [
            m.model_copy()
            for m in self.social_memories
            if m.agent_id == agent_id
            and (counterpart_id is None or m.counterpart_id == counterpart_id)
            and (memory_type is None or m.memory_type == memory_type)
        ]

    # Souls and insights -------------------------------------------------------

    async def get_soul(self, agent_id: str) -> Optional[PersonalitySoul]:
        soul = self.souls.get(agent_id)
        return soul.model_copy(deep=True) if soul else None

    async def save_soul(self, agent_id: str, soul: PersonalitySoul) -> None:
        self.souls[agent_id] = soul.model_copy(deep=True)

    async def add_insight(self, insight: Insight) -> None:
        self.insights.append(insight.model_copy())

    async def get_recent_insights(self, agent_id: str, limit: int = 3) -> List[Insight]:
        mine = [i for i in self.insights if i.agent_id == agent_id]
        return [i.model_copy() for i in mine[-limit:]] if limit > 0 else []


class WorldSnapshot(BaseModel):
    """On-disk layout used by :class:`JsonPersistence`."""

    agents: List[AgentState] = Field(default_factory=list)
    locations: List[Location] = Field(default_factory=list)
    location_events: List[LocationEvent] = Field(default_factory=list)
    messages: List[Message] = Field(default_factory=list)
    activities: List[ActivityRecord] = Field(default_factory=list)
    summaries: Dict[str, str] = Field(default_factory=dict)
    social_memories: List[SocialMemory] = Field(default_factory=list)
    souls: Dict[str, PersonalitySoul] = Field(default_factory=dict)
    insights: List[Insight] = Field(default_factory=list)


class JsonPersistence(InMemoryPersistence):
    """File-backed persistence using a single human-readable JSON snapshot.

    The working set lives in memory (inherited from InMemoryPersistence);
    initialize() loads ``{base_path}/world.json`` if present and close() (or an
    explicit flush()) writes it back. File I/O runs in a worker thread so the
    world loop is never blocked on disk.

    Directory structure:
    ```
    {base_path}/
      world.json    # WorldSnapshot: agents, locations, messages, memories, souls
    ```

    Perfect for:
    - Small worlds that should survive restarts
    - Debugging (open the file and read an agent's memory)

    NOT suitable for:
    - Concurrent access from several processes (last writer wins)
    """

    def __init__(self, base_path: Path | str = "pixelverse_data"):
        super().__init__()
        self.base_path = Path(base_path)

    @property
    def snapshot_path(self) -> Path:
        return self.base_path / "world.json"

    async def initialize(self) -> None:
        await asyncio.to_thread(self.base_path.mkdir, parents=True, exist_ok=True)
        if not self.snapshot_path.exists():
            return
        raw = await asyncio.to_thread(self.snapshot_path.read_text, "utf-8")
        snapshot = WorldSnapshot.model_validate_json(raw)
        self._load(snapshot)

    async def close(self) -> None:
        await self.flush()

    async def flush(self) -> None:
        snapshot = self._dump()
        payload = json.dumps(snapshot.model_dump(mode="json"), indent=2, ensure_ascii=False)
        await asyncio.to_thread(self.base_path.mkdir, parents=True, exist_ok=True)
        await asyncio.to_thread(self.snapshot_path.write_text, payload, "utf-8")

    def _load(self, snapshot: WorldSnapshot) -> None:
        self.agents = {a.agent_id: a for a in snapshot.agents}
        self.locations = {loc.location_id: loc for loc in snapshot.locations}
        self.location_events = list(snapshot.location_events)
        self.messages = {m.message_id: m for m in snapshot.messages if m.message_id is not None}
        self.activities = {}
        for record in snapshot.activities:
            self.activities.setdefault(record.agent_id, []).append(record)
        self.summaries = dict(snapshot.summaries)
        self.social_memories = list(snapshot.social_memories)
        self.souls = dict(snapshot.souls)
        self.insights = list(snapshot.insights)
        self._reset_counters()

    def _dump(self) -> WorldSnapshot:
        return WorldSnapshot(
            agents=list(self.agents.values()),
            locations=list(self.locations.values()),
            location_events=list(self.location_events),
            messages=list(self.messages.values()),
            activities=[r for records in self.activities.values() for r in records],
            summaries=dict(self.summaries),
            social_memories=list(self.social_memories),
            souls=dict(self.souls),
            insights=list(self.insights),
        )
