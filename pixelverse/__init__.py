"""
PixelVerse - a small world of autonomous Pix driven by a cost-bounded decision pipeline.

Agents perceive their surroundings, a scheduler decides whether and how hard
to think, generated text is filtered and parsed into one action, and the
action is applied to a shared location graph and message bus.

All collaborators (persistence, generator, clock) are injected.
"""

__version__ = "0.1.0"

# Main loop
from .orchestrator import Orchestrator

# Services
from .locations import LocationGraph, OccupancyRegistry
from .message_bus import MessageBus
from .memory import MemoryStore
from .personality import PersonalityModel
from .safety import SafetyFilter
from .scheduler import DecisionScheduler, GenerationError

# Collaborators
from .persistence import (
    PersistenceStrategy,
    InMemoryPersistence,
    JsonPersistence,
    UnknownAgentError,
)
from .generation import Generator, LLMGenerator, IdleGenerator, build_generator
from .clock import Clock, SystemClock, ManualClock

# Action grammar and prompts
from .actions import ParsedAction, DecisionResponse, parse_decision
from .prompts import PromptLibrary, PromptTemplate, DEFAULT_PROMPTS, render_prompt

# Schemas
from .schemas import (
    AgentState,
    Location,
    LocationEvent,
    Message,
    ActivityRecord,
    SocialMemory,
    PersonalitySoul,
    ThinkingRequest,
    ThinkingResult,
    MoveResult,
    RejectionReason,
    Priority,
    ModelTier,
)

# World definitions
from .world import WorldDefinition, WorldLoader, default_world

__all__ = [
    "Orchestrator",
    "LocationGraph",
    "OccupancyRegistry",
    "MessageBus",
    "MemoryStore",
    "PersonalityModel",
    "SafetyFilter",
    "DecisionScheduler",
    "GenerationError",
    "PersistenceStrategy",
    "InMemoryPersistence",
    "JsonPersistence",
    "UnknownAgentError",
    "Generator",
    "LLMGenerator",
    "IdleGenerator",
    "build_generator",
    "Clock",
    "SystemClock",
    "ManualClock",
    "ParsedAction",
    "DecisionResponse",
    "parse_decision",
    "PromptLibrary",
    "PromptTemplate",
    "DEFAULT_PROMPTS",
    "render_prompt",
    "AgentState",
    "Location",
    "LocationEvent",
    "Message",
    "ActivityRecord",
    "SocialMemory",
    "PersonalitySoul",
    "ThinkingRequest",
    "ThinkingResult",
    "MoveResult",
    "RejectionReason",
    "Priority",
    "ModelTier",
    "WorldDefinition",
    "WorldLoader",
    "default_world",
]
