"""
Generation collaborators.

The scheduler talks to a ``Generator``: prompt text in, decision text out.
Two implementations ship with the package:

- :class:`LLMGenerator` calls a hosted or local model through mirascope/Ollama.
- :class:`IdleGenerator` runs fully offline, answering with small in-world
  actions. It is the default so a world can run without any API key.
"""

from __future__ import annotations

import json
import random
import re
from typing import Optional, Protocol, runtime_checkable

from .actions import DecisionResponse
from .config import Config
from .llm_utils import call_llm_text, call_llm_with_retries
from .logging_utils import log_info
from .schemas import ModelTier

GENERATOR_SYSTEM = (
    "You decide what a single inhabitant of a small simulated world does next. "
    "Answer only in the requested format."
)


@runtime_checkable
class Generator(Protocol):
    """Opaque prompt-in, text-out collaborator."""

    async def generate(
        self,
        context: str,
        tier: ModelTier,
        *,
        model: Optional[str] = None,
        structured: bool = False,
    ) -> str:
        ...


class LLMGenerator:
    """Generator backed by a real model provider.

    Structured requests go through ``call_llm_with_retries`` with the
    ``DecisionResponse`` schema and come back as the decision's JSON; schema
    retries stay inside this call. Everything else is a single text call.
    """

    def __init__(
        self,
        provider: str,
        *,
        cheap_model: Optional[str] = None,
        expensive_model: Optional[str] = None,
        timeout: Optional[float] = None,
        max_schema_attempts: int = 3,
        system_prompt: str = GENERATOR_SYSTEM,
    ):
        self.provider = provider
        self.models = {
            ModelTier.CHEAP: cheap_model or Config.LLM_MODEL_CHEAP,
            ModelTier.EXPENSIVE: expensive_model or Config.LLM_MODEL_EXPENSIVE,
        }
        self.timeout = timeout
        self.max_schema_attempts = max_schema_attempts
        self.system_prompt = system_prompt

    async def generate(
        self,
        context: str,
        tier: ModelTier,
        *,
        model: Optional[str] = None,
        structured: bool = False,
    ) -> str:
        llm_model = model or self.models[tier]
        if structured:
            response = await call_llm_with_retries(
                system_prompt=self.system_prompt,
                user_prompt=context,
                llm_provider=self.provider,
                llm_model=llm_model,
                response_model=DecisionResponse,
                max_attempts=self.max_schema_attempts,
                timeout=self.timeout,
            )
            return response.decision.model_dump_json()
        return await call_llm_text(
            system_prompt=self.system_prompt,
            user_prompt=context,
            llm_provider=self.provider,
            llm_model=llm_model,
            timeout=self.timeout,
        )


_INBOX_SENDER = re.compile(r"^- From (?P<name>[^:\n]+):", re.M)
_NEIGHBOUR_LINE = re.compile(r"^- Nearby places: (?P<places>.+)$", re.M)

IDLE_ACTS = [
    "daydreams about fluffy clouds",
    "reads a few pages of a picture book",
    "plays with a pebble",
    "takes a slow walk around",
    "has a little snack",
    "stretches and yawns",
]
IDLE_THOUGHTS = [
    "I wonder what everyone else is doing today.",
    "This place feels cozy.",
    "Maybe I'll go somewhere new later.",
]
IDLE_REPLIES = [
    "Hi! Nice to hear from you!",
    "Hehe, that sounds fun!",
    "Want to hang out later?",
]


class IdleGenerator:
    """Offline generator producing plausible in-world actions.

    Replies to whoever wrote last when the inbox has messages, otherwise
    picks a quiet action. Deterministic for a seeded ``rng``.
    """

    def __init__(self, rng: Optional[random.Random] = None, move_chance: float = 0.2):
        self.rng = rng or random.Random()
        self.move_chance = move_chance
        self.calls = 0

    def _choose(self, context: str) -> tuple[str, dict[str, str]]:
        sender = _INBOX_SENDER.search(context)
        if sender:
            return "speak", {
                "target": sender.group("name").strip(),
                "message": self.rng.choice(IDLE_REPLIES),
            }
        places = _NEIGHBOUR_LINE.search(context)
        if places and self.rng.random() < self.move_chance:
            options = [p.strip() for p in places.group("places").split(",") if p.strip()]
            if options:
                return "move", {"destination": self.rng.choice(options)}
        if self.rng.random() < 0.3:
            return "think", {"thought": self.rng.choice(IDLE_THOUGHTS)}
        return "act", {"description": self.rng.choice(IDLE_ACTS)}

    async def generate(
        self,
        context: str,
        tier: ModelTier,
        *,
        model: Optional[str] = None,
        structured: bool = False,
    ) -> str:
        self.calls += 1
        kind, fields = self._choose(context)
        if structured:
            return json.dumps({"kind": kind, **fields})
        if kind == "speak":
            return f"[say] {fields['target']}: {fields['message']}"
        if kind == "move":
            return f"[go] {fields['destination']}"
        if kind == "think":
            return f"[think] {fields['thought']}"
        return f"[act] {fields['description']}"


def build_generator(provider: Optional[str] = None, rng: Optional[random.Random] = None) -> Generator:
    """Create the generator named by ``provider`` (defaults to ``Config.LLM_PROVIDER``)."""
    provider = (provider or Config.LLM_PROVIDER or "idle").lower()
    if provider == "idle":
        log_info("Using offline idle generator (set LLM_PROVIDER to use a real model)")
        return IdleGenerator(rng=rng)
    Config.validate()
    timeout = Config.LLM_TIMEOUT_SECONDS if Config.LLM_TIMEOUT_SECONDS > 0 else None
    return LLMGenerator(provider, timeout=timeout)


__all__ = ["Generator", "LLMGenerator", "IdleGenerator", "build_generator", "GENERATOR_SYSTEM"]
