"""
Pydantic schemas for the PixelVerse world.

All records exchanged between components (and stored by the persistence
collaborator) are defined here.

Design Philosophy:
- Records are plain data; behaviour lives in the component that owns them
- Integer identifiers are assigned by the persistence layer on insert
- Bounded values (stats, traits, importance) are clamped by their owners
- Pydantic validation keeps JSON persistence round-trips honest
"""

from __future__ import annotations

from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


STAT_MIN = 0
STAT_MAX = 100


def clamp_stat(value: float) -> int:
    """Clamp a stat or trait value into the 0-100 band."""

    return int(max(STAT_MIN, min(STAT_MAX, round(value))))


# ============================================================================
# Enumerations
# ============================================================================


class Channel(str, Enum):
    DIRECT = "direct"
    BROADCAST = "broadcast"


class SocialMemoryType(str, Enum):
    FIRST_MEET = "first_meet"
    CONVERSATION = "conversation"
    SHARED_ACTIVITY = "shared_activity"
    IMPRESSION = "impression"
    FRIENDSHIP = "friendship"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ModelTier(str, Enum):
    CHEAP = "cheap"
    EXPENSIVE = "expensive"


class ThinkingStatus(str, Enum):
    QUEUED = "queued"
    DISPATCHED = "dispatched"
    COMPLETED = "completed"
    FAILED = "failed"


class RejectionReason(str, Enum):
    """Structured reasons an action is refused. Returned, never raised."""

    UNKNOWN_LOCATION = "unknown_location"
    ALREADY_THERE = "already_there"
    UNREACHABLE = "unreachable"
    FULL = "full"
    UNKNOWN_TARGET = "unknown_target"
    UNKNOWN_AGENT = "unknown_agent"


# ============================================================================
# World Schemas
# ============================================================================


class AgentState(BaseModel):
    """An agent's identity, resource stats and current location reference.

    Exactly one current location at all times. The personality soul is keyed
    by ``agent_id`` and owned by the Personality Model.
    """

    agent_id: str = Field(..., description="Unique agent identifier")
    name: str = Field(..., description="Display name used in prompts and by other agents")
    location_id: str = Field(..., description="Current location")
    mood: int = Field(70, ge=STAT_MIN, le=STAT_MAX)
    energy: int = Field(80, ge=STAT_MIN, le=STAT_MAX)
    # Fullness; decays over time and is replenished by eating.
    satiety: int = Field(70, ge=STAT_MIN, le=STAT_MAX)
    current_action: str = Field("idle", description="Short description of what the agent is doing")
    created_at: Optional[datetime] = None

    def has_low_stats(self, threshold: int) -> bool:
        return self.energy < threshold or self.satiety < threshold or self.mood < threshold

    def with_stat_changes(self, changes: Dict[str, int]) -> "AgentState":
        """Return a copy with ``changes`` applied and every stat clamped."""

        updated = self.model_copy()
        for key, delta in changes.items():
            setattr(updated, key, clamp_stat(getattr(updated, key) + delta))
        return updated


class Location(BaseModel):
    """A place in the world. Static after boot; occupancy is tracked elsewhere."""

    location_id: str
    name: str
    description: str = ""
    kind: str = "public"
    capacity: int = Field(50, ge=0, description="Maximum simultaneous occupants")
    connects_to: List[str] = Field(default_factory=list, description="Directly reachable locations")
    # Presentation-only tags (noise, light, mood) used in prompt text
    ambient: Dict[str, str] = Field(default_factory=dict)
    position: List[float] = Field(default_factory=lambda: [0.0, 0.0])

    @property
    def mood(self) -> str:
        return self.ambient.get("mood", "neutral")


class LocationEvent(BaseModel):
    """Something happening at a location; extra perception context only."""

    event_id: Optional[int] = None
    location_id: str
    event_type: str
    title: str
    description: str
    importance: int = Field(5, ge=1, le=10)
    starts_at: datetime
    ends_at: Optional[datetime] = None

    def is_visible(self, now: datetime, window: timedelta) -> bool:
        if self.starts_at < now - window or self.starts_at > now:
            return False
        return self.ends_at is None or self.ends_at > now


class MessageMeta(BaseModel):
    emotion: Optional[str] = None
    topic: Optional[str] = None
    importance: Optional[int] = None


class Message(BaseModel):
    """A direct message (``recipient_id`` set) or a location broadcast."""

    message_id: Optional[int] = None
    sender_id: str
    recipient_id: Optional[str] = None
    location_id: Optional[str] = None
    channel: Channel
    content: str
    meta: Optional[MessageMeta] = None
    read_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    created_at: datetime

    @property
    def is_broadcast(self) -> bool:
        return self.recipient_id is None


# ============================================================================
# Memory Schemas
# ============================================================================


class ActivityRecord(BaseModel):
    """One episodic memory: something the agent did or experienced."""

    record_id: Optional[int] = None
    agent_id: str
    activity_type: str
    description: str
    location_id: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime


class SocialMemory(BaseModel):
    """A memory about one specific counterpart."""

    memory_id: Optional[int] = None
    agent_id: str
    counterpart_id: str
    memory_type: SocialMemoryType
    text: str
    emotion: str = "neutral"
    importance: int = Field(5, ge=1, le=10)
    created_at: datetime


class Insight(BaseModel):
    """A one-line daily reflection."""

    agent_id: str
    text: str
    source: str = "daily_reflection"
    created_at: datetime


class SocialHealthReport(BaseModel):
    """Aggregate social signal read by downstream notification consumers."""

    agent_id: str
    agent_name: str
    status: str = Field(..., description="healthy | lonely | isolated | overly_dependent")
    friend_count: int
    recent_social_count: int
    days_since_last_social: int
    top_counterpart: Optional[str] = None
    recommendation: Optional[str] = None


# ============================================================================
# Personality Schemas
# ============================================================================


class SoulTraits(BaseModel):
    curiosity: int = Field(60, ge=STAT_MIN, le=STAT_MAX)
    playfulness: int = Field(60, ge=STAT_MIN, le=STAT_MAX)
    sociability: int = Field(60, ge=STAT_MIN, le=STAT_MAX)
    independence: int = Field(45, ge=STAT_MIN, le=STAT_MAX)
    emotionality: int = Field(60, ge=STAT_MIN, le=STAT_MAX)
    gentleness: int = Field(60, ge=STAT_MIN, le=STAT_MAX)


class SoulTendencies(BaseModel):
    morning_person: bool = False
    prefers_quiet: bool = False
    adventurous: bool = False
    foodie: bool = False


class SoulPreferences(BaseModel):
    likes: List[str] = Field(default_factory=list)
    dislikes: List[str] = Field(default_factory=list)
    favorite_activity: Optional[str] = None
    favorite_place: Optional[str] = None


class EvolutionEntry(BaseModel):
    date: str
    change: str
    reason: str


class PersonalitySoul(BaseModel):
    """Trait vector, tendencies, preferences and append-only evolution history."""

    version: int = Field(1, ge=1)
    last_updated: datetime
    traits: SoulTraits = Field(default_factory=SoulTraits)
    tendencies: SoulTendencies = Field(default_factory=SoulTendencies)
    preferences: SoulPreferences = Field(default_factory=SoulPreferences)
    evolution_log: List[EvolutionEntry] = Field(default_factory=list)


# ============================================================================
# Scheduling Schemas
# ============================================================================


class ThinkingRequest(BaseModel):
    """One decision to be generated. Transient; never persisted."""

    agent_id: str
    context: str
    priority: Priority
    # Explicit model name; bypasses the tier's configured model
    model: Optional[str] = None
    trigger: Optional[str] = None
    # Ask for a JSON decision rather than a tagged line
    structured: bool = False


class ThinkingResult(BaseModel):
    request_id: int
    agent_id: str
    text: str
    tier: ModelTier
    model: str
    duration_ms: int


# ============================================================================
# Outcomes
# ============================================================================


class MoveResult(BaseModel):
    ok: bool
    reason: Optional[RejectionReason] = None
    detail: str = ""
    origin_id: Optional[str] = None
    location: Optional[Location] = None


class ActionOutcome(BaseModel):
    """What executing one parsed action did."""

    kind: str
    ok: bool
    summary: str
    reason: Optional[RejectionReason] = None
    target: Optional[str] = None


class TickOutcome(BaseModel):
    """Result of one agent's decision cycle."""

    agent_id: str
    tick: int
    thought: bool = False
    trigger: Optional[str] = None
    priority: Optional[Priority] = None
    tier: Optional[ModelTier] = None
    action: Optional[ActionOutcome] = None
    error: Optional[str] = None
