"""
Perception construction: what one agent can see from where it stands.

An agent perceives only its own location: the place and its ambience, the
other Pix there and what they are doing, events happening there, broadcasts
heard there, and the direct messages addressed to it. It never sees other
locations' occupants or other agents' inboxes.

Perception is built from live services and then rendered to prompt text by
:func:`format_perception` and :func:`format_inbox`.
"""

from __future__ import annotations

from typing import List, Mapping, Optional, Sequence

from pydantic import BaseModel, Field

from .locations import LocationGraph
from .logging_utils import debug_enabled, log_info
from .schemas import AgentState, Location, LocationEvent, Message


class OccupantView(BaseModel):
    agent_id: str
    name: str
    current_action: str = "idle"


class HeardMessage(BaseModel):
    sender_id: str
    sender_name: str
    content: str
    broadcast: bool = False


class AgentPerception(BaseModel):
    """A snapshot of what a single agent can observe this tick."""

    tick: int = 0
    agent_id: str
    agent_name: str
    location: Location
    occupants: List[OccupantView] = Field(default_factory=list)
    neighbours: List[str] = Field(default_factory=list, description="Names of adjacent places")
    events: List[LocationEvent] = Field(default_factory=list)
    direct: List[HeardMessage] = Field(default_factory=list)
    broadcasts: List[HeardMessage] = Field(default_factory=list)

    def occupant_named(self, name: str) -> Optional[OccupantView]:
        """Case-insensitive lookup among the other agents present."""
        wanted = name.strip().lower()
        for occupant in self.occupants:
            if occupant.name.lower() == wanted or occupant.agent_id.lower() == wanted:
                return occupant
        return None


async def build_agent_perception(
    agent: AgentState,
    *,
    locations: LocationGraph,
    roster: Mapping[str, AgentState],
    inbox: Sequence[Message] = (),
    tick: int = 0,
) -> AgentPerception:
    """Filter the world down to what ``agent`` can perceive.

    ``inbox`` is the agent's already-received messages (direct first, then
    broadcasts) so reading them, which marks direct ones read, stays the
    caller's decision.

    Raises:
        KeyError: The agent stands at a location the graph does not know.
    """
    location = locations.get(agent.location_id)
    if location is None:
        raise KeyError(f"Agent {agent.agent_id} is at unknown location '{agent.location_id}'")

    occupants = [
        OccupantView(
            agent_id=other_id,
            name=roster[other_id].name if other_id in roster else other_id,
            current_action=roster[other_id].current_action if other_id in roster else "idle",
        )
        for other_id in locations.occupants(location.location_id)
        if other_id != agent.agent_id
    ]

    def _heard(message: Message) -> HeardMessage:
        sender = roster.get(message.sender_id)
        return HeardMessage(
            sender_id=message.sender_id,
            sender_name=sender.name if sender else message.sender_id,
            content=message.content,
            broadcast=message.is_broadcast,
        )

    perception = AgentPerception(
        tick=tick,
        agent_id=agent.agent_id,
        agent_name=agent.name,
        location=location,
        occupants=occupants,
        neighbours=[n.name for n in locations.neighbours(location.location_id)],
        events=await locations.recent_events(location.location_id),
        direct=[_heard(m) for m in inbox if not m.is_broadcast],
        broadcasts=[_heard(m) for m in inbox if m.is_broadcast],
    )

    if debug_enabled("DEBUG_PERCEPTION"):
        log_info(f"perception for {agent.agent_id} (tick {tick}):\n{format_perception(perception)}")
    return perception


def format_perception(perception: AgentPerception) -> str:
    """Render the place, company, events and exits as prompt lines."""
    location = perception.location
    lines = [f"- You are at {location.name}. {location.description}".rstrip()]
    if location.ambient:
        ambience = ", ".join(f"{key}: {value}" for key, value in sorted(location.ambient.items()))
        lines.append(f"- It feels like this here: {ambience}")

    if perception.occupants:
        company = ", ".join(f"{o.name} ({o.current_action})" for o in perception.occupants)
        lines.append(f"- Here with you: {company}")
    else:
        lines.append("- Nobody else is here right now.")

    for event in perception.events:
        lines.append(f"- Happening here: {event.title}: {event.description}")

    if perception.neighbours:
        lines.append(f"- Nearby places: {', '.join(perception.neighbours)}")
    return "\n".join(lines)


def format_inbox(perception: AgentPerception) -> str:
    sections: List[str] = []
    if perception.direct:
        lines = "\n".join(f"- From {m.sender_name}: {m.content}" for m in perception.direct)
        sections.append(f"## Messages for you\n{lines}")
    if perception.broadcasts:
        lines = "\n".join(f"- {m.sender_name} called out: {m.content}" for m in perception.broadcasts)
        sections.append(f"## Heard nearby\n{lines}")
    return "\n\n".join(sections)


__all__ = [
    "AgentPerception",
    "HeardMessage",
    "OccupantView",
    "build_agent_perception",
    "format_inbox",
    "format_perception",
]
