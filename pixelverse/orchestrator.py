"""
Tick orchestrator: one decision cycle per agent per interval.

All collaborators (persistence, generator or scheduler, clock, rng) are
injected, so the same loop runs against real models in production and
against fakes with a manual clock in tests.

A tick:
1. Run any periodic jobs that are due (decay, compression, cleanup, ...)
2. For every agent concurrently:
   a. Evaluate the stimulus gate (unread mail, company changed, new event,
      low stats, or a random draw)
   b. Build perception, memory and personality context
   c. Ask the scheduler for a decision
   d. Filter the text, parse it into one action and execute it
3. Collect outcomes; one agent's failure never stops the others
"""

from __future__ import annotations

import asyncio
import random
import re
from datetime import timedelta
from typing import Dict, FrozenSet, List, Mapping, Optional, Set, Tuple

from .actions import ParsedAction, parse_decision
from .cadence import Interval, PeriodicJob
from .clock import Clock, SystemClock
from .config import Config
from .generation import Generator, build_generator
from .locations import LocationGraph
from .logging_utils import (
    log_deterministic,
    log_error,
    log_info,
    log_llm,
    log_success,
)
from .memory import (
    ACTION,
    BROADCAST,
    DAYDREAM,
    EAT,
    EXPLORE,
    FREE,
    OWNER_CHAT,
    PLAY,
    READ,
    REJECTED,
    REST,
    SOCIAL_CHAT,
    SOCIAL_REPLY,
    THOUGHT,
    MemoryStore,
    detect_emotion,
)
from .message_bus import MessageBus
from .perception import (
    AgentPerception,
    OccupantView,
    build_agent_perception,
    format_inbox,
    format_perception,
)
from .persistence import InMemoryPersistence, PersistenceStrategy, UnknownAgentError
from .personality import PersonalityModel
from .prompts import DEFAULT_PROMPTS, PromptLibrary, render_prompt
from .safety import SafetyFilter, awakening_deflection, is_awakening_attempt
from .scheduler import DecisionScheduler, GenerationError
from .schemas import (
    ActionOutcome,
    AgentState,
    MessageMeta,
    RejectionReason,
    ThinkingRequest,
    TickOutcome,
)
from .world import WorldDefinition, default_world

# Stat deltas applied together with an action's writes
STAT_EFFECTS: Dict[str, Dict[str, int]] = {
    "speak": {"mood": 3, "energy": -2},
    "broadcast": {"mood": 1, "energy": -1},
    "move": {"energy": -3},
    PLAY: {"mood": 5, "energy": -5, "satiety": -2},
    EXPLORE: {"mood": 2, "energy": -4},
    REST: {"energy": 10},
    EAT: {"satiety": 20, "mood": 2},
    READ: {"mood": 2, "energy": -1},
    DAYDREAM: {"mood": 1},
    ACTION: {"energy": -1},
}

DECAY_EFFECTS: Dict[str, int] = {"mood": -2, "energy": -3, "satiety": -4}

# Ordered (pattern, activity type) table for free-form act descriptions
ACT_KEYWORDS: List[Tuple[re.Pattern[str], str]] = [
    (re.compile(r"\b(eat|eats|eating|snack|snacks|lunch|cake|cocoa|food)\b", re.I), EAT),
    (re.compile(r"\b(sleep|sleeps|nap|naps|rest|rests|resting|yawn|yawns)\b", re.I), REST),
    (re.compile(r"\b(read|reads|reading|book|books)\b", re.I), READ),
    (re.compile(r"\b(play|plays|playing|game|swing|dance|dances)\b", re.I), PLAY),
    (re.compile(r"\b(explore|explores|exploring|wander|wanders|walk|walks)\b", re.I), EXPLORE),
    (re.compile(r"\b(daydream|daydreams|dreaming|gaze|gazes|clouds)\b", re.I), DAYDREAM),
]


def classify_act(description: str) -> str:
    for pattern, activity_type in ACT_KEYWORDS:
        if pattern.search(description):
            return activity_type
    return ACTION


def _quote(text: str, limit: int = 80) -> str:
    text = text.strip()
    return text if len(text) <= limit else text[: limit - 3] + "..."


class Orchestrator:
    """Drives the world: spawns agents, runs ticks and periodic jobs."""

    def __init__(
        self,
        *,
        persistence: Optional[PersistenceStrategy] = None,
        generator: Optional[Generator] = None,
        scheduler: Optional[DecisionScheduler] = None,
        clock: Optional[Clock] = None,
        rng: Optional[random.Random] = None,
        world: Optional[WorldDefinition] = None,
        prompts: Optional[PromptLibrary] = None,
        structured: Optional[bool] = None,
        random_chance: Optional[float] = None,
        low_stat_threshold: Optional[int] = None,
        tick_interval: Optional[float] = None,
    ):
        self.clock = clock or SystemClock()
        self.rng = rng or random.Random()
        self.persistence = persistence or InMemoryPersistence()
        self.world = world
        self.prompts = prompts or DEFAULT_PROMPTS
        self.structured = Config.LLM_STRUCTURED_DECISIONS if structured is None else structured
        self.random_chance = (
            Config.RANDOM_THOUGHT_CHANCE if random_chance is None else random_chance
        )
        self.low_stat_threshold = (
            Config.LOW_STAT_THRESHOLD if low_stat_threshold is None else low_stat_threshold
        )
        self.tick_interval = (
            Config.TICK_INTERVAL_SECONDS if tick_interval is None else tick_interval
        )

        self.memory = MemoryStore(self.persistence, clock=self.clock)
        self.locations = LocationGraph(self.persistence, self.memory, clock=self.clock)
        self.bus = MessageBus(self.persistence, clock=self.clock)
        self._names: Dict[str, str] = {}
        self.safety = SafetyFilter(self.known_names)
        self.personality = PersonalityModel(
            self.persistence, self.memory, clock=self.clock, rng=self.rng, safety=self.safety
        )
        self.scheduler = scheduler or DecisionScheduler(
            generator or build_generator(rng=self.rng)
        )

        self.tick = 0
        self._initialized = False
        self._running = False
        self._seen_occupants: Dict[str, FrozenSet[str]] = {}
        self._seen_events: Dict[str, Set[int]] = {}
        self.jobs: List[PeriodicJob] = self._build_jobs()

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def _build_jobs(self) -> List[PeriodicJob]:
        return [
            PeriodicJob("decay", Interval(Config.DECAY_INTERVAL_SECONDS), self.decay_stats),
            PeriodicJob("compress", Interval(Config.COMPRESS_INTERVAL_SECONDS), self.memory.compress_all),
            PeriodicJob("cleanup", Interval(Config.CLEANUP_INTERVAL_SECONDS), self.bus.cleanup_expired),
            PeriodicJob("evolve", Interval(Config.EVOLVE_INTERVAL_SECONDS), self.personality.evolve_all),
            PeriodicJob("reflect", Interval(Config.REFLECT_INTERVAL_SECONDS), self._reflect_all),
            PeriodicJob(
                "social_health", Interval(Config.SOCIAL_HEALTH_INTERVAL_SECONDS), self.check_social_health
            ),
        ]

    def known_names(self) -> List[str]:
        """Agent and place names the safety filter must never treat as fabricated."""
        return [*self._names.values(), *(loc.name for loc in self.locations.all())]

    async def initialize(self) -> None:
        """Open persistence and seed the world if it has no locations yet."""
        if self._initialized:
            return
        await self.persistence.initialize()
        await self.locations.load()

        if not self.locations.all():
            await self.load_world(self.world or default_world())
        else:
            for agent in await self.persistence.list_agents():
                self._names[agent.agent_id] = agent.name
        self._initialized = True
        log_success(
            f"world ready: {len(self.locations.all())} location(s), {len(self._names)} agent(s)"
        )

    async def load_world(self, world: WorldDefinition) -> None:
        for location in world.locations:
            await self.locations.add_location(location)
        for seed in world.agents:
            stats = {
                key: value
                for key, value in seed.model_dump(include={"mood", "energy", "satiety"}).items()
                if value is not None
            }
            await self.spawn_agent(seed.agent_id, seed.name, seed.location_id, **stats)
        for event in world.events:
            duration = None
            if event.duration_minutes:
                duration = timedelta(minutes=event.duration_minutes)
            await self.locations.create_event(
                event.location_id,
                event.event_type,
                event.title,
                event.description,
                importance=event.importance,
                duration=duration,
            )

    async def close(self) -> None:
        await self.persistence.close()

    async def spawn_agent(
        self, agent_id: str, name: str, location_id: str = "hub", **stats: int
    ) -> AgentState:
        """Create an agent, give it a soul and place it in the world.

        Raises:
            ValueError: An agent with this id already exists.
            KeyError: ``location_id`` is not a known location.
        """
        if await self.persistence.get_agent(agent_id) is not None:
            raise ValueError(f"Agent '{agent_id}' already exists")
        if self.locations.get(location_id) is None:
            raise KeyError(f"Unknown location '{location_id}'")

        agent = AgentState(
            agent_id=agent_id,
            name=name,
            location_id=location_id,
            created_at=self.clock.now(),
            **stats,
        )
        await self.persistence.save_agent(agent)
        await self.locations.place(agent_id, location_id)
        await self.personality.soul(agent_id)
        self._names[agent_id] = name
        log_deterministic(f"{name} ({agent_id}) was born at {location_id}")
        return agent

    async def _require_agent(self, agent_id: str) -> AgentState:
        agent = await self.persistence.get_agent(agent_id)
        if agent is None:
            raise UnknownAgentError(agent_id)
        return agent

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    async def run(self, num_ticks: int) -> List[List[TickOutcome]]:
        """Run ``num_ticks`` ticks back to back (no waiting between them)."""
        await self.initialize()
        log_info(f"Agents: {len(self._names)}, Ticks: {num_ticks}")
        history: List[List[TickOutcome]] = []
        for _ in range(num_ticks):
            history.append(await self.run_tick())
        log_success("Simulation complete")
        return history

    async def run_forever(self) -> None:
        """Tick every ``tick_interval`` seconds of clock time until :meth:`stop`."""
        await self.initialize()
        self._running = True
        while self._running:
            await self.run_tick()
            await self.clock.sleep(self.tick_interval)

    def stop(self) -> None:
        self._running = False

    async def run_tick(self) -> List[TickOutcome]:
        """Run due jobs, then one decision cycle for every agent concurrently."""
        await self.initialize()
        self.tick += 1
        tick = self.tick
        log_info(f"=== Tick {tick} ===")
        await self.run_jobs()

        roster = {a.agent_id: a for a in await self.persistence.list_agents()}
        agent_ids = list(roster)
        results = await asyncio.gather(
            *(self.tick_agent(agent_id, roster=roster) for agent_id in agent_ids),
            return_exceptions=True,
        )

        outcomes: List[TickOutcome] = []
        for agent_id, result in zip(agent_ids, results):
            if isinstance(result, TickOutcome):
                outcomes.append(result)
                continue
            if not isinstance(result, Exception):
                raise result
            if isinstance(result, GenerationError):
                reason = result.reason
            else:
                reason = f"{type(result).__name__}: {result}"
            log_error(f"tick {tick} aborted for {agent_id}: {reason}")
            outcomes.append(
                TickOutcome(
                    agent_id=agent_id,
                    tick=tick,
                    thought=isinstance(result, GenerationError),
                    error=reason,
                )
            )

        thinking = sum(1 for o in outcomes if o.thought)
        log_deterministic(f"tick {tick}: {thinking}/{len(outcomes)} agent(s) thought")
        return outcomes

    async def run_jobs(self) -> Dict[str, object]:
        """Run every periodic job whose interval has elapsed.

        A failing job is logged and skipped until its next interval; the
        remaining jobs and the agent ticks still run.
        """
        now = self.clock.now()
        ran: Dict[str, object] = {}
        for job in self.jobs:
            if not job.is_due(now):
                continue
            try:
                ran[job.name] = await job.run(now)
            except Exception as exc:
                log_error(f"job {job.name} failed: {type(exc).__name__}: {exc}")
        return ran

    # ------------------------------------------------------------------
    # One agent
    # ------------------------------------------------------------------

    async def _stimulus(self, agent: AgentState) -> Tuple[int, bool, bool]:
        """Unread count, whether company changed, whether a new event appeared.

        Occupancy and event novelty are judged against what this agent saw on
        its previous tick, then remembered.
        """
        unread = await self.bus.unread_count(agent.agent_id)

        company = frozenset(self.locations.occupants(agent.location_id)) - {agent.agent_id}
        occupancy_changed = company != self._seen_occupants.get(agent.agent_id, frozenset())
        self._seen_occupants[agent.agent_id] = company

        events = await self.locations.recent_events(agent.location_id)
        seen = self._seen_events.setdefault(agent.agent_id, set())
        fresh = {e.event_id for e in events if e.event_id is not None} - seen
        seen.update(fresh)
        return unread, occupancy_changed, bool(fresh)

    async def tick_agent(
        self, agent_id: str, *, roster: Optional[Mapping[str, AgentState]] = None
    ) -> TickOutcome:
        """One decision cycle for one agent.

        Raises:
            UnknownAgentError: No such agent.
            GenerationError: The decision could not be generated; nothing was
                executed and the agent stays eligible next tick.
        """
        agent = await self._require_agent(agent_id)
        if roster is None:
            roster = {a.agent_id: a for a in await self.persistence.list_agents()}

        unread, occupancy_changed, new_event = await self._stimulus(agent)
        low_stats = agent.has_low_stats(self.low_stat_threshold)
        stimulated = bool(unread) or occupancy_changed or new_event or low_stats
        if not self.scheduler.should_think(
            unread, occupancy_changed, new_event, low_stats, self.random_chance, self.rng
        ):
            return TickOutcome(agent_id=agent_id, tick=self.tick)

        inbox = await self.bus.inbox(agent_id, agent.location_id)
        perception = await build_agent_perception(
            agent, locations=self.locations, roster=roster, inbox=inbox, tick=self.tick
        )

        strangers = [
            o for o in perception.occupants
            if await self.memory.is_first_meeting(agent_id, o.agent_id)
        ]
        if unread:
            trigger = "message_reply"
        elif strangers:
            trigger = "first_meeting"
        elif stimulated:
            trigger = "autonomous"
        else:
            trigger = "autonomous_idle"

        context = await self._decision_context(agent, perception, trigger, strangers)
        priority = self.scheduler.classify_priority(trigger)
        request = ThinkingRequest(
            agent_id=agent_id,
            context=context,
            priority=priority,
            trigger=trigger,
            structured=self.structured,
        )
        log_llm(f"[{agent.name}] thinking ({trigger}, {priority.value})")
        result = await self.scheduler.think(request)

        text = self.safety.filter(result.text)
        action = parse_decision(text)
        outcome = await self.execute(agent, action, perception)
        if outcome.ok:
            log_success(f"[{agent.name}] {action.kind} ({action.source}): {outcome.summary}")
        return TickOutcome(
            agent_id=agent_id,
            tick=self.tick,
            thought=True,
            trigger=trigger,
            priority=priority,
            tier=result.tier,
            action=outcome,
        )

    async def _decision_context(
        self,
        agent: AgentState,
        perception: AgentPerception,
        trigger: str,
        strangers: List[OccupantView],
    ) -> str:
        memory = await self.memory.build_context(agent.agent_id)
        framing: List[str] = []
        if trigger == "message_reply":
            for sender_id in dict.fromkeys(m.sender_id for m in perception.direct):
                name = self._names.get(sender_id, sender_id)
                framing.append(await self.memory.social_context(agent.agent_id, sender_id, name))
        elif trigger == "first_meeting":
            for stranger in strangers:
                framing.append(
                    await self.memory.social_context(agent.agent_id, stranger.agent_id, stranger.name)
                )
        if framing:
            memory = "\n\n".join(framing + [memory])

        template = self.prompts.get("decide_structured" if self.structured else "decide")
        rendered = render_prompt(
            template,
            {
                "agent_name": agent.name,
                "personality": await self._personality_section(agent.agent_id),
                "perception": format_perception(perception),
                "mood": agent.mood,
                "energy": agent.energy,
                "satiety": agent.satiety,
                "inbox": format_inbox(perception),
                "memory": memory,
            },
        )
        return rendered.text

    async def _personality_section(self, agent_id: str) -> str:
        soul = await self.personality.soul(agent_id)
        section = self.personality.project(soul)
        insights = await self.personality.recent_insights(agent_id)
        if insights:
            section += "\n\n## Things you realised lately\n" + "\n".join(f"- {i}" for i in insights)
        return section

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute(
        self, agent: AgentState, action: ParsedAction, perception: AgentPerception
    ) -> ActionOutcome:
        """Apply one parsed action.

        Validation happens before any write. A rejected action writes only one
        ``rejected`` activity entry describing why.
        """
        if action.kind == "speak":
            return await self._speak(agent, action, perception)
        if action.kind == "move":
            return await self._move(agent, action)
        if action.kind == "broadcast":
            return await self._broadcast(agent, action, perception)
        if action.kind == "think":
            summary = f"Thought: {_quote(action.content)}"
            await self.memory.record_activity(
                agent.agent_id, THOUGHT, summary, location_id=agent.location_id
            )
            return ActionOutcome(kind="think", ok=True, summary=summary)
        return await self._act(agent, action, perception)

    async def _reject(
        self, agent: AgentState, action: ParsedAction, reason: RejectionReason, detail: str
    ) -> ActionOutcome:
        await self.memory.record_activity(
            agent.agent_id,
            REJECTED,
            detail,
            location_id=agent.location_id,
            data={"kind": action.kind, "reason": reason.value, "target": action.target},
        )
        log_error(f"{agent.agent_id} {action.kind} rejected ({reason.value}): {detail}")
        return ActionOutcome(
            kind=action.kind, ok=False, summary=detail, reason=reason, target=action.target
        )

    async def _apply_effects(self, agent_id: str, effect_key: str, current_action: str) -> None:
        agent = await self._require_agent(agent_id)
        updated = agent.with_stat_changes(STAT_EFFECTS.get(effect_key, {}))
        updated.current_action = current_action[:60]
        await self.persistence.save_agent(updated)

    async def _speak(
        self, agent: AgentState, action: ParsedAction, perception: AgentPerception
    ) -> ActionOutcome:
        target = perception.occupant_named(action.target or "")
        if target is None:
            return await self._reject(
                agent,
                action,
                RejectionReason.UNKNOWN_TARGET,
                f"Wanted to talk to {action.target or 'someone'}, but they are not here",
            )

        place = perception.location.name
        content = action.content
        await self.memory.record_first_meeting(agent.agent_id, target.agent_id, target.name, place)
        await self.memory.record_first_meeting(target.agent_id, agent.agent_id, agent.name, place)
        await self.bus.send_direct(
            agent.agent_id, target.agent_id, content, MessageMeta(emotion=detect_emotion(content))
        )
        await self.memory.remember_conversation(agent.agent_id, target.agent_id, target.name, content)
        await self.memory.remember_conversation(target.agent_id, agent.agent_id, agent.name, content)

        replying = any(m.sender_id == target.agent_id for m in perception.direct)
        summary = f"{'Replied to' if replying else 'Said to'} {target.name}: \"{_quote(content)}\""
        await self.memory.record_activity(
            agent.agent_id,
            SOCIAL_REPLY if replying else SOCIAL_CHAT,
            summary,
            location_id=agent.location_id,
            data={"target_id": target.agent_id, "target_name": target.name},
        )
        await self._apply_effects(agent.agent_id, "speak", f"chatting with {target.name}")

        if not await self.memory.is_friend(agent.agent_id, target.agent_id):
            talks = await self.memory.conversation_count(agent.agent_id, target.agent_id)
            if talks >= Config.FRIENDSHIP_THRESHOLD:
                await self.memory.record_friendship(agent.agent_id, target.agent_id, target.name)
                await self.memory.record_friendship(target.agent_id, agent.agent_id, agent.name)
                log_success(f"{agent.name} and {target.name} became friends")

        return ActionOutcome(kind="speak", ok=True, summary=summary, target=target.agent_id)

    async def _move(self, agent: AgentState, action: ParsedAction) -> ActionOutcome:
        wanted = action.target or action.content
        dest_id = self.locations.resolve_destination(agent.agent_id, wanted)
        if dest_id is None:
            return await self._reject(
                agent,
                action,
                RejectionReason.UNKNOWN_LOCATION,
                f"Wanted to go to {wanted or 'somewhere'}, but there is no such place",
            )

        result = await self.locations.move(agent.agent_id, dest_id, data={"via": action.source})
        if not result.ok:
            return await self._reject(agent, action, result.reason, result.detail)

        destination = result.location
        await self._apply_effects(agent.agent_id, "move", f"walking around {destination.name}")
        return ActionOutcome(
            kind="move",
            ok=True,
            summary=f"Went to {destination.name}",
            target=destination.location_id,
        )

    async def _broadcast(
        self, agent: AgentState, action: ParsedAction, perception: AgentPerception
    ) -> ActionOutcome:
        content = action.content
        await self.bus.broadcast(
            agent.agent_id,
            agent.location_id,
            content,
            meta=MessageMeta(emotion=detect_emotion(content)),
        )
        summary = f"Called out at {perception.location.name}: \"{_quote(content)}\""
        await self.memory.record_activity(
            agent.agent_id, BROADCAST, summary, location_id=agent.location_id
        )
        await self._apply_effects(agent.agent_id, "broadcast", "calling out to everyone")
        return ActionOutcome(kind="broadcast", ok=True, summary=summary)

    async def _act(
        self, agent: AgentState, action: ParsedAction, perception: AgentPerception
    ) -> ActionOutcome:
        description = action.content or "Did nothing in particular"
        if action.source == "fallback":
            activity_type = FREE
        else:
            activity_type = classify_act(description)
        await self.memory.record_activity(
            agent.agent_id,
            activity_type,
            description,
            location_id=agent.location_id,
            data={"place": perception.location.name},
        )
        await self._apply_effects(agent.agent_id, activity_type, description)
        return ActionOutcome(kind="act", ok=True, summary=description)

    # ------------------------------------------------------------------
    # Owner chat
    # ------------------------------------------------------------------

    async def chat(self, agent_id: str, user_text: str) -> str:
        """Answer the agent's owner.

        Questions probing whether the agent is artificial are deflected
        without a generation call.

        Raises:
            UnknownAgentError: No such agent.
            GenerationError: The reply could not be generated.
        """
        await self.initialize()
        agent = await self._require_agent(agent_id)

        if is_awakening_attempt(user_text):
            reply = awakening_deflection(self.rng)
        else:
            roster = {a.agent_id: a for a in await self.persistence.list_agents()}
            perception = await build_agent_perception(
                agent, locations=self.locations, roster=roster, tick=self.tick
            )
            rendered = render_prompt(
                self.prompts.get("user_chat"),
                {
                    "agent_name": agent.name,
                    "personality": await self._personality_section(agent_id),
                    "perception": format_perception(perception),
                    "memory": await self.memory.build_context(agent_id),
                    "user_text": user_text.strip(),
                },
            )
            result = await self.scheduler.think(
                ThinkingRequest(
                    agent_id=agent_id,
                    context=rendered.text,
                    priority=self.scheduler.classify_priority("user_chat"),
                    trigger="user_chat",
                )
            )
            reply = self.safety.filter(result.text).strip() or "..."

        await self.memory.record_activity(
            agent_id,
            OWNER_CHAT,
            f"Chatted with my owner: \"{_quote(user_text, 60)}\"",
            location_id=agent.location_id,
            data={"reply": reply},
        )
        return reply

    # ------------------------------------------------------------------
    # Periodic jobs
    # ------------------------------------------------------------------

    async def decay_stats(self) -> int:
        agents = await self.persistence.list_agents()
        for agent in agents:
            await self.persistence.save_agent(agent.with_stat_changes(DECAY_EFFECTS))
        log_deterministic(f"stats decayed for {len(agents)} agent(s)")
        return len(agents)

    async def _reflect_all(self) -> Dict[str, str]:
        return await self.personality.reflect_all(self.scheduler)

    async def check_social_health(self) -> List[str]:
        reports = [
            await self.memory.social_health(agent.agent_id)
            for agent in await self.persistence.list_agents()
        ]
        return await self.memory.apply_nudges(reports)


__all__ = [
    "ACT_KEYWORDS",
    "DECAY_EFFECTS",
    "Orchestrator",
    "STAT_EFFECTS",
    "UnknownAgentError",
    "classify_act",
]
