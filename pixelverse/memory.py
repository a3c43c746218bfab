"""
Memory Store: episodic activity log, compressed summary, and social memory.

Three layers per agent:
- Activity log: every action or experience, newest entries kept up to a limit
- Summary: one line per day derived from activity counts, capped at a budget
- Social memory: what an agent remembers about a specific counterpart

``build_context`` turns these into the memory section of a decision prompt.
Its output depends only on stored records, never on randomness, so the same
state always produces the same text.
"""

from __future__ import annotations

import math
import re
from collections import Counter
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from .cadence import day_key
from .clock import Clock, SystemClock
from .config import Config
from .logging_utils import log_deterministic, log_info
from .persistence import PersistenceStrategy, UnknownAgentError
from .schemas import ActivityRecord, SocialHealthReport, SocialMemory, SocialMemoryType

# Activity types written to the log
MOVE = "move"
SOCIAL_CHAT = "social_chat"
SOCIAL_REPLY = "social_reply"
BECAME_FRIENDS = "became_friends"
BROADCAST = "broadcast"
THOUGHT = "thought"
ACTION = "action"
FREE = "free"
REJECTED = "rejected"
SOCIAL_NUDGE = "social_nudge"
OWNER_CHAT = "owner_chat"
PLAY = "play"
EXPLORE = "explore"
REST = "rest"
EAT = "eat"
READ = "read"
DAYDREAM = "daydream"

SOCIAL_TYPES = (SOCIAL_CHAT, SOCIAL_REPLY)
SOCIAL_HEALTH_TYPES = (SOCIAL_CHAT, SOCIAL_REPLY, BECAME_FRIENDS)
EXPLORATION_TYPES = (MOVE, EXPLORE)

GROUNDING_INSTRUCTION = (
    "## Important\n"
    "You can only talk about things that really happened. The memories above are "
    "your real experiences. Share feelings, chat about your day and ask questions, "
    "but never invent specific activities or events that did not happen."
)

# Ordered (activity types, phrase) table for the daily summary line
DAILY_PHRASES: List[Tuple[Tuple[str, ...], str]] = [
    ((PLAY,), "played {n} time(s)"),
    (EXPLORATION_TYPES, "wandered around {n} time(s)"),
    ((REST,), "rested {n} time(s)"),
    ((EAT,), "ate {n} time(s)"),
    ((READ,), "read {n} time(s)"),
    ((DAYDREAM, THOUGHT), "got lost in thought {n} time(s)"),
    ((BROADCAST,), "called out to everyone {n} time(s)"),
]

# Ordered (pattern, emotion) table; first match wins
EMOTION_KEYWORDS: List[Tuple[re.Pattern[str], str]] = [
    (re.compile(r"\b(happy|fun|funny|glad|haha|yay|great|love)\b", re.I), "happy"),
    (re.compile(r"\b(warm|kind|gentle|thank|thanks|touched|sweet)\b", re.I), "warm"),
    (re.compile(r"\b(curious|interesting|wonder|wondering|why|how come)\b", re.I), "curious"),
    (re.compile(r"\b(sad|worried|miss|lonely|sorry|upset)\b", re.I), "sad"),
]

NUDGES: Dict[str, str] = {
    "long_alone": "Heard laughter drifting over from the Hub and felt a little curious...",
    "encourage_social": "A nice smell floated by; it seems something fun is happening at the Hub.",
    "diversify_friends": "Heard that a new Pix from far away arrived at the Hub with lots of stories.",
}


def detect_emotion(text: str) -> str:
    for pattern, emotion in EMOTION_KEYWORDS:
        if pattern.search(text):
            return emotion
    return "neutral"


def _time_of_day(moment: datetime) -> str:
    if moment.hour < 12:
        return "morning"
    if moment.hour < 18:
        return "afternoon"
    return "evening"


def truncate_summary(summary: str, budget: int) -> str:
    """Drop whole lines from the front until the summary fits ``budget``.

    The newest line is always kept; if it alone is over budget it is cut.
    """
    lines = [line for line in summary.split("\n") if line]
    while len(lines) > 1 and len("\n".join(lines)) > budget:
        lines.pop(0)
    result = "\n".join(lines)
    return result[:budget]


class MemoryStore:
    """Owns the activity log, the compressed summary and social memories."""

    def __init__(
        self,
        persistence: PersistenceStrategy,
        *,
        clock: Optional[Clock] = None,
        activity_limit: Optional[int] = None,
        summary_budget: Optional[int] = None,
    ):
        self.persistence = persistence
        self.clock = clock or SystemClock()
        self.activity_limit = activity_limit or Config.ACTIVITY_LOG_LIMIT
        self.summary_budget = summary_budget or Config.SUMMARY_CHAR_BUDGET

    # ------------------------------------------------------------------
    # Episodic log
    # ------------------------------------------------------------------

    async def record_activity(
        self,
        agent_id: str,
        activity_type: str,
        description: str,
        location_id: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None,
    ) -> ActivityRecord:
        record = ActivityRecord(
            agent_id=agent_id,
            activity_type=activity_type,
            description=description,
            location_id=location_id,
            data=data or {},
            created_at=self.clock.now(),
        )
        stored = await self.persistence.add_activity(record)
        await self.persistence.prune_activities(agent_id, self.activity_limit)
        return stored

    async def recent_activities(self, agent_id: str, limit: int = 10) -> List[ActivityRecord]:
        """Most recent ``limit`` activities, oldest first."""
        records = await self.persistence.get_recent_activities(agent_id, limit)
        return list(reversed(records))

    async def activities_since(self, agent_id: str, since: datetime) -> List[ActivityRecord]:
        return await self.persistence.get_activities_since(agent_id, since)

    async def activity_counts(self, agent_id: str, since: datetime) -> Counter[str]:
        """Activity-type tallies since ``since``."""
        return Counter(r.activity_type for r in await self.activities_since(agent_id, since))

    async def visit_counts(self, agent_id: str, since: datetime) -> Counter[str]:
        """How often the agent arrived at each location since ``since``."""
        return Counter(
            r.location_id
            for r in await self.activities_since(agent_id, since)
            if r.activity_type == MOVE and r.location_id
        )

    # ------------------------------------------------------------------
    # Context
    # ------------------------------------------------------------------

    async def build_context(
        self,
        agent_id: str,
        *,
        activity_count: Optional[int] = None,
        social_count: Optional[int] = None,
    ) -> str:
        """Assemble the memory section of a decision prompt.

        Fixed order: summary, recent activities (oldest first), recent social
        interactions, then the grounding instruction.
        """
        activity_count = activity_count or Config.CONTEXT_ACTIVITY_COUNT
        social_count = social_count or Config.CONTEXT_SOCIAL_COUNT
        parts: List[str] = []

        summary = await self.persistence.get_summary(agent_id)
        if summary:
            parts.append(f"## Your memories\n{summary}")

        recent = await self.recent_activities(agent_id, activity_count)
        if recent:
            lines = "\n".join(f"- {r.description}" for r in recent)
            parts.append(f"## What you did recently\n{lines}")

        social = await self.persistence.get_recent_activities(
            agent_id, social_count, activity_types=list(SOCIAL_HEALTH_TYPES)
        )
        if social:
            lines = "\n".join(f"- {r.description}" for r in reversed(social))
            parts.append(f"## Your recent social life\n{lines}")

        parts.append(GROUNDING_INSTRUCTION)
        return "\n\n".join(parts)

    # ------------------------------------------------------------------
    # Compression
    # ------------------------------------------------------------------

    async def compress(self, agent_id: str, *, window: Optional[int] = None) -> Optional[str]:
        """Fold recent activity counts into today's summary line.

        A new day appends a line; the same day replaces its line. The result
        is truncated from the front to the character budget.
        """
        window = window or Config.COMPRESS_WINDOW
        activities = await self.persistence.get_recent_activities(agent_id, window)
        existing = await self.persistence.get_summary(agent_id) or ""
        if not activities:
            return existing or None

        daily = self._daily_line(day_key(self.clock.now()), activities)
        if daily is None:
            return existing or None

        prefix = daily.split(" ", 1)[0]
        lines = [line for line in existing.split("\n") if line]
        same_day = [i for i, line in enumerate(lines) if line.startswith(prefix)]
        if same_day:
            lines[same_day[0]] = daily
            lines = [line for i, line in enumerate(lines) if i not in same_day[1:]]
        else:
            lines.append(daily)

        summary = truncate_summary("\n".join(lines), self.summary_budget)
        await self.persistence.save_summary(agent_id, summary)
        return summary

    def _daily_line(self, today: str, activities: Sequence[ActivityRecord]) -> Optional[str]:
        counts = Counter(a.activity_type for a in activities)
        phrases: List[str] = []
        for types, template in DAILY_PHRASES:
            n = sum(counts.get(t, 0) for t in types)
            if n:
                phrases.append(template.format(n=n))

        chat_partners = _names(a for a in activities if a.activity_type in SOCIAL_TYPES)
        social = sum(counts.get(t, 0) for t in SOCIAL_TYPES)
        if social:
            who = ", ".join(chat_partners) or "other Pix"
            phrases.append(f"chatted with {who} {math.ceil(social / 2)} time(s)")

        new_friends = _names(a for a in activities if a.activity_type == BECAME_FRIENDS)
        if counts.get(BECAME_FRIENDS):
            phrases.append(f"made new friends: {', '.join(new_friends) or 'someone new'}")

        if not phrases:
            return None
        return f"[{today}] " + ", ".join(phrases)

    async def compress_all(self) -> int:
        agents = await self.persistence.list_agents()
        for agent in agents:
            await self.compress(agent.agent_id)
        log_deterministic(f"memory compressed for {len(agents)} agent(s)")
        return len(agents)

    # ------------------------------------------------------------------
    # Social memory
    # ------------------------------------------------------------------

    async def record_social(
        self,
        agent_id: str,
        counterpart_id: str,
        memory_type: SocialMemoryType,
        text: str,
        emotion: str = "neutral",
        importance: int = 5,
    ) -> SocialMemory:
        memory = SocialMemory(
            agent_id=agent_id,
            counterpart_id=counterpart_id,
            memory_type=memory_type,
            text=text,
            emotion=emotion,
            importance=max(1, min(10, importance)),
            created_at=self.clock.now(),
        )
        return await self.persistence.add_social_memory(memory)

    async def is_first_meeting(self, agent_id: str, counterpart_id: str) -> bool:
        met = await self.persistence.get_social_memories(
            agent_id, counterpart_id, SocialMemoryType.FIRST_MEET
        )
        return not met

    async def record_first_meeting(
        self,
        agent_id: str,
        counterpart_id: str,
        counterpart_name: str,
        place_name: Optional[str] = None,
    ) -> Optional[SocialMemory]:
        """Store the one-time "we just met" memory. No-op if they already met."""
        if not await self.is_first_meeting(agent_id, counterpart_id):
            return None
        where = f" at {place_name}" if place_name else ""
        text = f"Met {counterpart_name} for the first time{where}, in the {_time_of_day(self.clock.now())}"
        return await self.record_social(
            agent_id, counterpart_id, SocialMemoryType.FIRST_MEET, text, "warm", 8
        )

    async def remember_conversation(
        self, agent_id: str, counterpart_id: str, counterpart_name: str, text: str
    ) -> SocialMemory:
        emotion = detect_emotion(text)
        importance = 7 if emotion in ("happy", "warm") else 5
        line = f"Talked with {counterpart_name}: \"{text[:160]}\""
        return await self.record_social(
            agent_id, counterpart_id, SocialMemoryType.CONVERSATION, line, emotion, importance
        )

    async def record_friendship(
        self, agent_id: str, counterpart_id: str, counterpart_name: str
    ) -> SocialMemory:
        memory = await self.record_social(
            agent_id,
            counterpart_id,
            SocialMemoryType.FRIENDSHIP,
            f"Became good friends with {counterpart_name}! Feeling really happy about it",
            "happy",
            9,
        )
        await self.record_activity(
            agent_id,
            BECAME_FRIENDS,
            f"Became friends with {counterpart_name}",
            data={"target_id": counterpart_id, "target_name": counterpart_name},
        )
        return memory

    async def is_friend(self, agent_id: str, counterpart_id: str) -> bool:
        return bool(
            await self.persistence.get_social_memories(
                agent_id, counterpart_id, SocialMemoryType.FRIENDSHIP
            )
        )

    async def conversation_count(self, agent_id: str, counterpart_id: str) -> int:
        return len(
            await self.persistence.get_social_memories(
                agent_id, counterpart_id, SocialMemoryType.CONVERSATION
            )
        )

    async def memories_about(self, agent_id: str, counterpart_id: str) -> List[SocialMemory]:
        """Everything ``agent_id`` remembers about ``counterpart_id``, most important first."""
        memories = await self.persistence.get_social_memories(agent_id, counterpart_id)
        return sorted(memories, key=lambda m: (-m.importance, m.memory_id or 0))

    async def social_context(
        self, agent_id: str, counterpart_id: str, counterpart_name: str
    ) -> str:
        """Framing used when ``agent_id`` is about to address ``counterpart_id``."""
        if await self.is_first_meeting(agent_id, counterpart_id):
            return (
                f"[You have never met {counterpart_name} before. This is your first "
                "meeting, so be curious and get to know them!]"
            )
        memories = await self.memories_about(agent_id, counterpart_id)
        if not memories:
            return f"[You have met {counterpart_name} before, but the memory is fuzzy.]"
        lines = "\n".join(f"- {m.text}" for m in memories)
        return (
            f"[What you remember about {counterpart_name}:\n{lines}\n\n"
            "Continue your conversation based on these memories.]"
        )

    # ------------------------------------------------------------------
    # Social health
    # ------------------------------------------------------------------

    async def social_health(self, agent_id: str) -> SocialHealthReport:
        agent = await self.persistence.get_agent(agent_id)
        if agent is None:
            raise UnknownAgentError(agent_id)

        now = self.clock.now()
        friends = {
            m.counterpart_id
            for m in await self.persistence.get_social_memories(
                agent_id, memory_type=SocialMemoryType.FRIENDSHIP
            )
        }
        counts = await self.activity_counts(agent_id, now - timedelta(days=7))
        recent_social = sum(counts[t] for t in SOCIAL_HEALTH_TYPES)
        last_social = await self.persistence.get_recent_activities(
            agent_id, 1, activity_types=list(SOCIAL_HEALTH_TYPES)
        )
        days_since = (now - last_social[0].created_at).days if last_social else 999

        conversations = Counter(
            m.counterpart_id
            for m in await self.persistence.get_social_memories(
                agent_id, memory_type=SocialMemoryType.CONVERSATION
            )
        )
        top_id = conversations.most_common(1)[0][0] if conversations else None
        top_name: Optional[str] = None
        if top_id is not None:
            top_agent = await self.persistence.get_agent(top_id)
            top_name = top_agent.name if top_agent else None

        status, recommendation = "healthy", None
        if days_since >= 7:
            status, recommendation = "isolated", "long_alone"
        elif days_since >= 3 or (recent_social < 2 and not friends):
            status, recommendation = "lonely", "encourage_social"
        elif len(friends) == 1 and recent_social > 5 and top_id is not None:
            others = sum(n for cid, n in conversations.items() if cid != top_id)
            if others == 0:
                status, recommendation = "overly_dependent", "diversify_friends"

        return SocialHealthReport(
            agent_id=agent_id,
            agent_name=agent.name,
            status=status,
            friend_count=len(friends),
            recent_social_count=recent_social,
            days_since_last_social=days_since,
            top_counterpart=top_name,
            recommendation=recommendation,
        )

    async def apply_nudges(self, reports: Iterable[SocialHealthReport]) -> List[str]:
        """Write at most one gentle social nudge per agent per day.

        Returns the ids of agents that were nudged.
        """
        nudged: List[str] = []
        now = self.clock.now()
        for report in reports:
            text = NUDGES.get(report.recommendation or "")
            if text is None:
                continue
            recent = await self.persistence.get_activities_since(
                report.agent_id, now - timedelta(days=1)
            )
            if any(r.activity_type == SOCIAL_NUDGE for r in recent):
                continue
            await self.record_activity(
                report.agent_id, SOCIAL_NUDGE, text, data={"reason": report.status}
            )
            log_info(f"social nudge for {report.agent_name} ({report.status})")
            nudged.append(report.agent_id)
        return nudged


def _names(records: Iterable[ActivityRecord]) -> List[str]:
    seen: List[str] = []
    for record in records:
        name = record.data.get("target_name")
        if name and name not in seen:
            seen.append(name)
    return seen
