"""
World definitions: the places a world is seeded with and the Pix living there.

Worlds are data. A world file is JSON:

```json
{
  "name": "Plaza",
  "description": "...",
  "locations": [
    {"location_id": "hub", "name": "Central Plaza", "capacity": 100,
     "connects_to": ["park"], "ambient": {"mood": "lively"}}
  ],
  "agents": [{"agent_id": "mochi", "name": "Mochi", "location_id": "hub"}],
  "events": [{"location_id": "park", "event_type": "festival", "title": "..."}]
}
```

Adjacency is made symmetric on load; a connection to a location that does not
exist is an error.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from .config import Config
from .schemas import Location


class AgentSeed(BaseModel):
    agent_id: str
    name: str
    location_id: str
    mood: Optional[int] = None
    energy: Optional[int] = None
    satiety: Optional[int] = None


class EventSeed(BaseModel):
    location_id: str
    event_type: str
    title: str
    description: str = ""
    importance: int = 5
    duration_minutes: Optional[int] = None


class WorldDefinition(BaseModel):
    name: str
    description: str = ""
    locations: List[Location]
    agents: List[AgentSeed] = Field(default_factory=list)
    events: List[EventSeed] = Field(default_factory=list)


DEFAULT_LOCATIONS: List[Location] = [
    Location(
        location_id="hub",
        name="Central Plaza",
        description="A sunny square with a fountain where every path meets.",
        kind="public",
        capacity=100,
        connects_to=["park", "library", "cafe", "market"],
        ambient={"mood": "lively", "noise": "busy"},
        position=[0.0, 0.0],
    ),
    Location(
        location_id="park",
        name="Clover Park",
        description="Soft grass, tall trees and a swing that creaks.",
        kind="outdoor",
        capacity=30,
        connects_to=["hub", "lake"],
        ambient={"mood": "relaxed", "light": "dappled"},
        position=[-1.0, 1.0],
    ),
    Location(
        location_id="library",
        name="Quiet Library",
        description="Shelves of picture books and a reading nook by the window.",
        kind="quiet",
        capacity=15,
        connects_to=["hub"],
        ambient={"mood": "calm", "noise": "hushed"},
        position=[1.0, 1.0],
    ),
    Location(
        location_id="cafe",
        name="Pixel Cafe",
        description="Warm cocoa, tiny cakes and mismatched chairs.",
        kind="food",
        capacity=20,
        connects_to=["hub", "market"],
        ambient={"mood": "cozy", "smell": "cocoa"},
        position=[1.0, -1.0],
    ),
    Location(
        location_id="market",
        name="Little Market",
        description="Stalls full of fruit, trinkets and chatter.",
        kind="public",
        capacity=40,
        connects_to=["hub", "cafe"],
        ambient={"mood": "bustling"},
        position=[-1.0, -1.0],
    ),
    Location(
        location_id="lake",
        name="Mirror Lake",
        description="A still lake where the sky looks back at you.",
        kind="outdoor",
        capacity=10,
        connects_to=["park"],
        ambient={"mood": "peaceful", "light": "shimmering"},
        position=[-2.0, 2.0],
    ),
]


def link_bidirectional(locations: List[Location]) -> List[Location]:
    """Return copies with every connection mirrored.

    Raises:
        ValueError: A location connects to an id that is not defined.
    """
    by_id: Dict[str, Location] = {loc.location_id: loc.model_copy(deep=True) for loc in locations}
    if len(by_id) != len(locations):
        raise ValueError("World defines the same location_id more than once")
    for location in list(by_id.values()):
        for neighbour_id in location.connects_to:
            neighbour = by_id.get(neighbour_id)
            if neighbour is None:
                raise ValueError(
                    f"Location '{location.location_id}' connects to unknown location '{neighbour_id}'"
                )
            if location.location_id not in neighbour.connects_to:
                neighbour.connects_to.append(location.location_id)
    return list(by_id.values())


def default_world() -> WorldDefinition:
    return WorldDefinition(
        name="PixelVerse",
        description="The default town: a plaza with a park, library, cafe, market and lake.",
        locations=link_bidirectional(DEFAULT_LOCATIONS),
    )


class WorldLoader:
    """Load and validate world definitions from JSON files.

    Files live in ``Config.WORLDS_DIR`` (``examples/worlds``) unless another
    directory is given; ``load("plaza")`` reads ``plaza.json``.
    """

    def __init__(self, worlds_dir: Optional[Path] = None):
        self.worlds_dir = worlds_dir or Config.WORLDS_DIR

    def load(self, world_name: str) -> WorldDefinition:
        """Read, validate and normalise a world.

        Raises:
            FileNotFoundError: No such world file.
            ValueError: The world is malformed (missing locations, dangling
                connections, agents placed somewhere undefined).
        """
        path = self.worlds_dir / f"{world_name}.json"
        if not path.exists():
            raise FileNotFoundError(f"World '{world_name}' not found at {path}")
        return self.parse(json.loads(path.read_text()))

    def parse(self, data: Dict) -> WorldDefinition:
        if not data.get("locations"):
            raise ValueError("World must define at least one location")
        world = WorldDefinition.model_validate(data)
        world.locations = link_bidirectional(world.locations)

        known = {loc.location_id for loc in world.locations}
        for seed in world.agents:
            if seed.location_id not in known:
                raise ValueError(
                    f"Agent '{seed.agent_id}' starts at unknown location '{seed.location_id}'"
                )
        for event in world.events:
            if event.location_id not in known:
                raise ValueError(f"Event '{event.title}' is at unknown location '{event.location_id}'")
        return world


__all__ = [
    "AgentSeed",
    "DEFAULT_LOCATIONS",
    "EventSeed",
    "WorldDefinition",
    "WorldLoader",
    "default_world",
    "link_bidirectional",
]
