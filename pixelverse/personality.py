"""
Personality Model: each agent's soul and how it evolves.

A soul is born with traits drawn from fixed ranges so no two agents start
the same, then drifts slowly based on what the agent actually did during
the past week. ``project`` turns a soul into the personality section of a
decision prompt; it is a pure function of the soul.
"""

from __future__ import annotations

import random
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable, Dict, List, Optional, Tuple

from .cadence import day_key
from .clock import Clock, SystemClock
from .logging_utils import log_deterministic, log_error, log_llm
from .memory import (
    BECAME_FRIENDS,
    DAYDREAM,
    EAT,
    EXPLORATION_TYPES,
    EXPLORE,
    MemoryStore,
    PLAY,
    READ,
    REST,
    SOCIAL_CHAT,
    SOCIAL_TYPES,
)
from .persistence import PersistenceStrategy
from .prompts import DEFAULT_PROMPTS, render_prompt
from .safety import SafetyFilter
from .scheduler import DecisionScheduler, GenerationError
from .schemas import (
    EvolutionEntry,
    Insight,
    PersonalitySoul,
    SoulPreferences,
    SoulTendencies,
    SoulTraits,
    ThinkingRequest,
    clamp_stat,
)


TRAIT_RANGES: Dict[str, Tuple[int, int]] = {
    "curiosity": (40, 90),
    "playfulness": (40, 90),
    "sociability": (30, 85),
    "independence": (20, 70),
    "emotionality": (40, 90),
    "gentleness": (40, 85),
}

# (trait, above, high descriptor, below, low descriptor); between the two is silent
DESCRIPTOR_BUCKETS: List[Tuple[str, int, str, int, str]] = [
    ("curiosity", 70, "full of curiosity", 35, "slow to warm up"),
    ("playfulness", 70, "lively and playful", 35, "calm and steady"),
    ("sociability", 70, "fond of making friends", 35, "a little shy"),
    ("independence", 65, "independent-minded", 30, "a bit clingy"),
    ("emotionality", 70, "deeply emotional", 35, "even-tempered"),
    ("gentleness", 70, "gentle and caring", 35, "rather blunt"),
]

TENDENCY_LINES: List[Tuple[str, str]] = [
    ("morning_person", "Loves early mornings; most energetic before noon"),
    ("prefers_quiet", "Enjoys quiet time alone"),
    ("adventurous", "Likes exploring new places"),
    ("foodie", "Very interested in food"),
]

# Activity types that can become a "like"
NAMED_ACTIVITIES: Dict[str, str] = {
    PLAY: "playing",
    EXPLORE: "exploring",
    SOCIAL_CHAT: "chatting",
    DAYDREAM: "daydreaming",
    REST: "resting",
    READ: "reading",
    EAT: "snacking",
}

MAX_LIKES = 5
FAVORITE_PLACE_MARGIN = 3
EVOLUTION_WINDOW = timedelta(days=7)
MIN_ACTIVITIES_TO_REFLECT = 3


@dataclass(frozen=True)
class EvolutionRule:
    """Apply ``delta`` to ``trait`` when the summed count of ``activity_types`` passes ``test``."""

    trait: str
    activity_types: Tuple[str, ...]
    test: Callable[[int], bool]
    delta: int


EVOLUTION_RULES: List[EvolutionRule] = [
    EvolutionRule("sociability", SOCIAL_TYPES, lambda n: n >= 5, +3),
    EvolutionRule("sociability", SOCIAL_TYPES, lambda n: n == 0, -1),
    EvolutionRule("curiosity", EXPLORATION_TYPES, lambda n: n > 3, +2),
    EvolutionRule("playfulness", (PLAY,), lambda n: n > 5, +2),
    EvolutionRule("gentleness", (BECAME_FRIENDS,), lambda n: n >= 1, +2),
]


def _join_phrases(words: List[str]) -> str:
    if len(words) == 1:
        return words[0]
    return ", ".join(words[:-1]) + " and " + words[-1]


class PersonalityModel:
    """Owns every agent's soul: creation, projection, evolution and reflection."""

    def __init__(
        self,
        persistence: PersistenceStrategy,
        memory: MemoryStore,
        *,
        clock: Optional[Clock] = None,
        rng: Optional[random.Random] = None,
        safety: Optional[SafetyFilter] = None,
    ):
        self.persistence = persistence
        self.memory = memory
        self.clock = clock or SystemClock()
        self.rng = rng or random.Random()
        self.safety = safety or SafetyFilter()

    # ------------------------------------------------------------------
    # Creation and projection
    # ------------------------------------------------------------------

    def generate(self, rng: Optional[random.Random] = None) -> PersonalitySoul:
        rng = rng or self.rng
        now = self.clock.now()
        traits = SoulTraits(
            **{name: rng.randint(low, high) for name, (low, high) in TRAIT_RANGES.items()}
        )
        tendencies = SoulTendencies(
            morning_person=rng.random() > 0.5,
            prefers_quiet=rng.random() > 0.6,
            adventurous=rng.random() > 0.4,
            foodie=rng.random() > 0.5,
        )
        return PersonalitySoul(
            version=1,
            last_updated=now,
            traits=traits,
            tendencies=tendencies,
            preferences=SoulPreferences(),
            evolution_log=[EvolutionEntry(date=day_key(now), change="born", reason="initial personality")],
        )

    @staticmethod
    def project(soul: PersonalitySoul) -> str:
        """Describe a soul in prompt text. Pure; same soul, same text."""
        parts: List[str] = []

        words: List[str] = []
        for trait, above, high, below, low in DESCRIPTOR_BUCKETS:
            value = getattr(soul.traits, trait)
            if value > above:
                words.append(high)
            elif value < below:
                words.append(low)
        if words:
            parts.append(f"## Your personality\nYou are a Pix who is {_join_phrases(words)}.")

        habits = [line for attr, line in TENDENCY_LINES if getattr(soul.tendencies, attr)]
        if habits:
            parts.append("## Your habits\n" + "\n".join(f"- {line}" for line in habits))

        prefs = soul.preferences
        pref_lines: List[str] = []
        if prefs.likes:
            pref_lines.append(f"Likes: {', '.join(prefs.likes)}")
        if prefs.dislikes:
            pref_lines.append(f"Dislikes: {', '.join(prefs.dislikes)}")
        if prefs.favorite_activity:
            pref_lines.append(f"Favorite activity: {prefs.favorite_activity}")
        if prefs.favorite_place:
            pref_lines.append(f"Favorite place: {prefs.favorite_place}")
        if pref_lines:
            parts.append("## Your preferences\n" + "\n".join(f"- {line}" for line in pref_lines))

        return "\n\n".join(parts)

    async def soul(self, agent_id: str) -> PersonalitySoul:
        """Load an agent's soul, creating and storing one on first access."""
        soul = await self.persistence.get_soul(agent_id)
        if soul is None:
            soul = self.generate()
            await self.persistence.save_soul(agent_id, soul)
        return soul

    # ------------------------------------------------------------------
    # Evolution
    # ------------------------------------------------------------------

    async def evolve(self, agent_id: str) -> PersonalitySoul:
        """Nudge traits and preferences from the last week of activity.

        Appends one log entry and bumps ``version`` once, only when something
        actually changed.
        """
        soul = await self.soul(agent_id)
        now = self.clock.now()
        since = now - EVOLUTION_WINDOW
        counts = await self.memory.activity_counts(agent_id, since)
        changes: List[str] = []

        for rule in EVOLUTION_RULES:
            n = sum(counts.get(t, 0) for t in rule.activity_types)
            if not rule.test(n):
                continue
            before = getattr(soul.traits, rule.trait)
            after = clamp_stat(before + rule.delta)
            if after != before:
                setattr(soul.traits, rule.trait, after)
                changes.append(f"{rule.trait} {after - before:+d}")

        named = [(counts[t], name) for t, name in NAMED_ACTIVITIES.items() if counts.get(t)]
        if named:
            # Highest count wins; ties resolved by table order
            top = max(named, key=lambda item: item[0])[1]
            if top not in soul.preferences.likes:
                soul.preferences.likes = (soul.preferences.likes + [top])[-MAX_LIKES:]
                changes.append(f"now likes {top}")

        visits = (await self.memory.visit_counts(agent_id, since)).most_common(2)
        if visits:
            leader, lead_count = visits[0]
            runner_up = visits[1][1] if len(visits) > 1 else 0
            if lead_count > runner_up + FAVORITE_PLACE_MARGIN:
                location = await self.persistence.get_location(leader)
                place = location.name if location else leader
                if soul.preferences.favorite_place != place:
                    soul.preferences.favorite_place = place
                    changes.append(f"favorite place is {place}")

        if changes:
            total = sum(counts.values())
            soul.evolution_log.append(
                EvolutionEntry(
                    date=day_key(now),
                    change=", ".join(changes),
                    reason=f"based on {total} activities this week",
                )
            )
            soul.version += 1
            soul.last_updated = now
            await self.persistence.save_soul(agent_id, soul)
            log_deterministic(f"soul evolved for {agent_id}: {', '.join(changes)}")
        return soul

    async def evolve_all(self) -> int:
        """Evolve every agent. Returns how many souls changed."""
        changed = 0
        for agent in await self.persistence.list_agents():
            before = await self.soul(agent.agent_id)
            after = await self.evolve(agent.agent_id)
            if after.version != before.version:
                changed += 1
        return changed

    # ------------------------------------------------------------------
    # Daily reflection
    # ------------------------------------------------------------------

    async def recent_insights(self, agent_id: str, limit: int = 3) -> List[str]:
        return [i.text for i in await self.persistence.get_recent_insights(agent_id, limit)]

    async def reflect(self, agent_id: str, scheduler: DecisionScheduler) -> Optional[str]:
        """Generate today's one-line insight.

        Runs at most once per calendar day and only after at least three
        activities today. ``GenerationError`` propagates to the caller.
        """
        now = self.clock.now()
        today = day_key(now)
        latest = await self.persistence.get_recent_insights(agent_id, 1)
        if latest and day_key(latest[-1].created_at) == today:
            return None

        start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)
        activities = await self.memory.activities_since(agent_id, start_of_day)
        if len(activities) < MIN_ACTIVITIES_TO_REFLECT:
            return None

        lines = "\n".join(f"- {a.description}" for a in activities[-10:])
        rendered = render_prompt(DEFAULT_PROMPTS.get("reflect"), {"activities": lines})
        request = ThinkingRequest(
            agent_id=agent_id,
            context=rendered.text,
            priority=scheduler.classify_priority("reflection"),
            trigger="reflection",
        )
        result = await scheduler.think(request)
        insight = self.safety.filter(result.text).strip().strip("\"'").strip()[:200]
        if len(insight) <= 5:
            return None

        await self.persistence.add_insight(Insight(agent_id=agent_id, text=insight, created_at=now))
        log_llm(f"daily insight for {agent_id}: {insight[:50]}")
        return insight

    async def reflect_all(self, scheduler: DecisionScheduler) -> Dict[str, str]:
        """Reflect for every agent; a failed generation skips only that agent."""
        insights: Dict[str, str] = {}
        for agent in await self.persistence.list_agents():
            try:
                insight = await self.reflect(agent.agent_id, scheduler)
            except GenerationError as exc:
                log_error(f"reflection failed for {agent.agent_id}: {exc}")
                continue
            if insight:
                insights[agent.agent_id] = insight
        return insights
