"""Location graph and occupancy tracking.

Locations are static after boot: an adjacency graph of places with capacity
and ambient metadata. Who is where is derived state held by a single
:class:`OccupancyRegistry`; every move checks and writes under the registry's
lock so concurrent moves into the same place can never overfill it.
"""

from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Set

from .clock import Clock, SystemClock
from .logging_utils import log_deterministic
from .persistence import PersistenceStrategy
from .schemas import Location, LocationEvent, MoveResult, RejectionReason

if TYPE_CHECKING:
    from .memory import MemoryStore

DEFAULT_EVENT_WINDOW = timedelta(minutes=60)
MAX_RECENT_EVENTS = 5


class OccupancyRegistry:
    """Tracks which agents are at which location.

    Maintains both directions (location -> agents, agent -> location) so an
    agent is counted at exactly one place. Callers that check capacity and
    then write must hold :attr:`lock` for the whole sequence.
    """

    def __init__(self) -> None:
        self.lock = asyncio.Lock()
        # Sets ensure each agent counted at most once per location
        self._occupants: Dict[str, Set[str]] = {}
        self._where: Dict[str, str] = {}

    def occupants(self, location_id: str) -> Set[str]:
        """Copy of the agent ids currently at ``location_id``."""
        return set(self._occupants.get(location_id, ()))

    def count(self, location_id: str) -> int:
        return len(self._occupants.get(location_id, ()))

    def location_of(self, agent_id: str) -> Optional[str]:
        return self._where.get(agent_id)

    def place(self, agent_id: str, location_id: str) -> Optional[str]:
        """Put an agent at ``location_id`` unconditionally. Returns the previous location."""
        previous = self._where.get(agent_id)
        if previous is not None:
            self._occupants.get(previous, set()).discard(agent_id)
        self._occupants.setdefault(location_id, set()).add(agent_id)
        self._where[agent_id] = location_id
        return previous

    def remove(self, agent_id: str) -> None:
        previous = self._where.pop(agent_id, None)
        if previous is not None:
            self._occupants.get(previous, set()).discard(agent_id)

    def populations(self) -> Dict[str, int]:
        return {loc: len(agents) for loc, agents in self._occupants.items() if agents}


class LocationGraph:
    """Static graph of places plus the occupancy registry.

    ``move`` validates in a fixed order (exists, not already there, adjacent,
    has room) and returns a :class:`MoveResult` instead of raising. On success
    the agent's location reference is persisted and one ``move`` activity is
    appended to the mover's log.
    """

    def __init__(
        self,
        persistence: PersistenceStrategy,
        memory: "MemoryStore",
        *,
        clock: Optional[Clock] = None,
    ) -> None:
        self.persistence = persistence
        self.memory = memory
        self.clock = clock or SystemClock()
        self.registry = OccupancyRegistry()
        self._locations: Dict[str, Location] = {}

    async def load(self) -> None:
        """Read locations and agent placements from persistence."""
        self._locations = {loc.location_id: loc for loc in await self.persistence.list_locations()}
        for agent in await self.persistence.list_agents():
            self.registry.place(agent.agent_id, agent.location_id)

    async def add_location(self, location: Location) -> None:
        """Seed a location at boot. Locations are never mutated afterwards."""
        await self.persistence.save_location(location)
        self._locations[location.location_id] = location

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, location_id: str) -> Optional[Location]:
        return self._locations.get(location_id)

    def all(self) -> List[Location]:
        return list(self._locations.values())

    def neighbours(self, location_id: str) -> List[Location]:
        location = self._locations.get(location_id)
        if location is None:
            return []
        return [self._locations[n] for n in location.connects_to if n in self._locations]

    def occupants(self, location_id: str) -> List[str]:
        """Agent ids at ``location_id`` in a stable (sorted) order."""
        return sorted(self.registry.occupants(location_id))

    def location_of(self, agent_id: str) -> Optional[str]:
        return self.registry.location_of(agent_id)

    def populations(self) -> Dict[str, int]:
        """Occupant count per location, for presence/display consumers."""
        counts = {loc_id: 0 for loc_id in self._locations}
        counts.update(self.registry.populations())
        return counts

    def resolve_destination(self, agent_id: str, name: str) -> Optional[str]:
        """Map a destination named in generated text to a location id.

        Neighbours of the agent's current location are searched first so an
        ambiguous partial name prefers somewhere reachable. Matching is by id,
        then case-insensitive full name, then partial name.
        """
        query = name.strip().strip(".!?\"'").lower()
        if not query:
            return None

        current = self.registry.location_of(agent_id)
        candidates = self.neighbours(current) if current else []
        for pool in (candidates, self.all()):
            match = _match_location(pool, query)
            if match is not None:
                return match.location_id
        return None

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def place(self, agent_id: str, location_id: str) -> None:
        """Initial placement at agent birth. Not a move: no adjacency or capacity check."""
        if location_id not in self._locations:
            raise KeyError(f"Unknown location '{location_id}'")
        async with self.registry.lock:
            self.registry.place(agent_id, location_id)

    async def move(
        self,
        agent_id: str,
        dest_id: str,
        *,
        description: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None,
    ) -> MoveResult:
        """Move an agent to an adjacent location with room.

        The checks and the writes happen under the registry lock, so two
        simultaneous moves cannot both take the last free place.
        """
        async with self.registry.lock:
            destination = self._locations.get(dest_id)
            if destination is None:
                return MoveResult(
                    ok=False,
                    reason=RejectionReason.UNKNOWN_LOCATION,
                    detail=f"There is no place called '{dest_id}'",
                )

            current_id = self.registry.location_of(agent_id)
            if current_id is None:
                return MoveResult(
                    ok=False,
                    reason=RejectionReason.UNKNOWN_AGENT,
                    detail=f"Agent '{agent_id}' is not anywhere in the world",
                )
            current = self._locations.get(current_id)
            current_name = current.name if current else current_id

            if current_id == dest_id:
                return MoveResult(
                    ok=False,
                    reason=RejectionReason.ALREADY_THERE,
                    detail=f"Already at {destination.name}",
                    origin_id=current_id,
                )

            if current is None or dest_id not in current.connects_to:
                return MoveResult(
                    ok=False,
                    reason=RejectionReason.UNREACHABLE,
                    detail=f"Cannot get to {destination.name} directly from {current_name}",
                    origin_id=current_id,
                )

            if self.registry.count(dest_id) >= destination.capacity:
                return MoveResult(
                    ok=False,
                    reason=RejectionReason.FULL,
                    detail=f"{destination.name} is too crowded to enter",
                    origin_id=current_id,
                )

            agent = await self.persistence.get_agent(agent_id)
            if agent is not None:
                agent.location_id = dest_id
                await self.persistence.save_agent(agent)
            self.registry.place(agent_id, dest_id)

            payload = {"from": current_id, "to": dest_id}
            payload.update(data or {})
            await self.memory.record_activity(
                agent_id,
                "move",
                description or f"Walked from {current_name} to {destination.name}",
                location_id=dest_id,
                data=payload,
            )

        log_deterministic(f"{agent_id} moved: {current_name} -> {destination.name}")
        return MoveResult(
            ok=True,
            detail=f"Arrived at {destination.name}. {destination.description}".strip(),
            origin_id=current_id,
            location=destination,
        )

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    async def recent_events(
        self,
        location_id: str,
        window: timedelta = DEFAULT_EVENT_WINDOW,
        limit: int = MAX_RECENT_EVENTS,
    ) -> List[LocationEvent]:
        """Events that started within ``window`` and have not ended.

        Ordered by importance (highest first), then newest first.
        """
        now = self.clock.now()
        events = [
            event
            for event in await self.persistence.get_location_events(location_id)
            if event.is_visible(now, window)
        ]
        events.sort(key=lambda e: (-e.importance, -e.starts_at.timestamp()))
        return events[:limit]

    async def create_event(
        self,
        location_id: str,
        event_type: str,
        title: str,
        description: str,
        importance: int = 5,
        duration: Optional[timedelta] = None,
    ) -> LocationEvent:
        if location_id not in self._locations:
            raise KeyError(f"Unknown location '{location_id}'")
        now = self.clock.now()
        event = LocationEvent(
            location_id=location_id,
            event_type=event_type,
            title=title,
            description=description,
            importance=max(1, min(10, importance)),
            starts_at=now,
            ends_at=now + duration if duration else None,
        )
        return await self.persistence.add_location_event(event)


def _match_location(pool: List[Location], query: str) -> Optional[Location]:
    for location in pool:
        if location.location_id.lower() == query:
            return location
    for location in pool:
        if location.name.lower() == query:
            return location
    if len(query) < 3:
        return None
    for location in pool:
        name = location.name.lower()
        if query in name or name in query:
            return location
    return None
