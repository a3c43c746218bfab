"""Tests covering the tick loop with scripted generators and a manual clock."""

import random

import pytest

from conftest import ScriptedGenerator, make_location
from pixelverse.cadence import Interval, PeriodicJob
from pixelverse.config import Config
from pixelverse.orchestrator import Orchestrator, classify_act
from pixelverse.persistence import UnknownAgentError
from pixelverse.safety import AWAKENING_DEFLECTIONS
from pixelverse.schemas import ModelTier, RejectionReason
from pixelverse.world import AgentSeed, WorldDefinition, link_bidirectional


def park_and_lake(*seeds, lake_capacity=10):
    return WorldDefinition(
        name="Test",
        locations=link_bidirectional(
            [
                make_location("park", connects_to=["lake"], name="Clover Park"),
                make_location("lake", capacity=lake_capacity, name="Mirror Lake"),
            ]
        ),
        agents=[AgentSeed(**seed) for seed in seeds],
    )


def seed(agent_id, location_id="park", **stats):
    return {"agent_id": agent_id, "name": agent_id.title(), "location_id": location_id, **stats}


async def build(persistence, clock, generator, world, **kwargs):
    options = {"structured": False, "random_chance": 0.0, "tick_interval": 1}
    options.update(kwargs)
    orchestrator = Orchestrator(
        persistence=persistence,
        generator=generator,
        clock=clock,
        rng=random.Random(0),
        world=world,
        **options,
    )
    await orchestrator.initialize()
    return orchestrator


async def activity_types(orchestrator, agent_id):
    return [r.activity_type for r in await orchestrator.memory.recent_activities(agent_id, 50)]


@pytest.mark.asyncio
async def test_spoken_message_is_answered_on_next_tick(persistence, clock):
    generator = ScriptedGenerator(
        {
            "Ana": ["[say] Ben: Want to fly kites?"],
            "Ben": ["[think] Nice breeze today.", "[say] Ana: Yes, let's go!"],
        }
    )
    orchestrator = await build(persistence, clock, generator, park_and_lake(seed("ana"), seed("ben")))

    first = {o.agent_id: o for o in await orchestrator.run_tick()}
    second = {o.agent_id: o for o in await orchestrator.run_tick()}

    assert first["ana"].trigger == "first_meeting"
    assert first["ana"].tier is ModelTier.EXPENSIVE
    assert first["ana"].action.kind == "speak"
    assert first["ana"].action.target == "ben"

    # Nothing new for Ana on the second tick, so she stays quiet
    assert not second["ana"].thought
    assert second["ben"].trigger == "message_reply"
    assert second["ben"].action.summary.startswith("Replied to Ana")
    assert "- From Ana: Want to fly kites?" in generator.calls_for("Ben")[1]["context"]

    assert "social_reply" in await activity_types(orchestrator, "ben")
    assert "social_chat" in await activity_types(orchestrator, "ana")
    assert await orchestrator.bus.unread_count("ana") == 1
    assert await orchestrator.bus.unread_count("ben") == 0
    assert not await orchestrator.memory.is_first_meeting("ben", "ana")


@pytest.mark.asyncio
async def test_move_into_full_place_writes_one_rejection(persistence, clock):
    generator = ScriptedGenerator({"Ana": ["[go] Mirror Lake"]})
    world = park_and_lake(seed("ana"), seed("ben"), seed("cy", "lake"), lake_capacity=1)
    orchestrator = await build(persistence, clock, generator, world)

    outcomes = {o.agent_id: o for o in await orchestrator.run_tick()}

    action = outcomes["ana"].action
    assert not action.ok
    assert action.reason is RejectionReason.FULL
    assert orchestrator.locations.location_of("ana") == "park"
    assert (await persistence.get_agent("ana")).location_id == "park"
    records = await orchestrator.memory.recent_activities("ana", 50)
    assert [r.activity_type for r in records] == ["rejected"]
    assert records[0].data["reason"] == "full"


@pytest.mark.asyncio
async def test_successful_structured_move(persistence, clock):
    generator = ScriptedGenerator({"Ana": ['{"kind": "move", "destination": "Mirror Lake"}']})
    orchestrator = await build(
        persistence, clock, generator, park_and_lake(seed("ana"), seed("ben")), structured=True
    )

    outcomes = {o.agent_id: o for o in await orchestrator.run_tick()}

    assert outcomes["ana"].action.ok
    assert outcomes["ana"].action.target == "lake"
    assert generator.calls_for("Ana")[0]["structured"] is True
    ana = await persistence.get_agent("ana")
    assert ana.location_id == "lake"
    assert ana.energy == 77
    assert ana.current_action == "walking around Mirror Lake"
    moves = [r for r in await orchestrator.memory.recent_activities("ana") if r.activity_type == "move"]
    assert len(moves) == 1
    assert moves[0].data["via"] == "structured"


@pytest.mark.asyncio
async def test_generation_failure_only_aborts_that_agent(persistence, clock):
    generator = ScriptedGenerator({"Ben": ["[act] reads a picture book"]}, fail_for={"Ana"})
    orchestrator = await build(persistence, clock, generator, park_and_lake(seed("ana"), seed("ben")))

    outcomes = {o.agent_id: o for o in await orchestrator.run_tick()}

    assert outcomes["ana"].thought
    assert "provider down for Ana" in outcomes["ana"].error
    assert outcomes["ana"].action is None
    assert outcomes["ben"].error is None
    assert outcomes["ben"].action.ok
    assert await activity_types(orchestrator, "ana") == []
    assert await activity_types(orchestrator, "ben") == ["read"]


@pytest.mark.asyncio
async def test_gate_skips_agents_without_stimulus(persistence, clock):
    generator = ScriptedGenerator()
    world = park_and_lake(seed("ana"), seed("ben", "lake", satiety=10))
    orchestrator = await build(persistence, clock, generator, world)

    outcomes = {o.agent_id: o for o in await orchestrator.run_tick()}

    assert not outcomes["ana"].thought
    assert outcomes["ben"].thought
    assert outcomes["ben"].trigger == "autonomous"
    assert generator.calls_for("Ana") == []
    assert len(generator.calls_for("Ben")) == 1


@pytest.mark.asyncio
async def test_new_event_wakes_an_agent_once(persistence, clock):
    generator = ScriptedGenerator()
    orchestrator = await build(persistence, clock, generator, park_and_lake(seed("ana")))

    await orchestrator.run_tick()
    await orchestrator.locations.create_event("park", "music", "Band plays", "A tiny band", importance=6)
    woken = await orchestrator.run_tick()
    quiet = await orchestrator.run_tick()

    assert woken[0].thought
    assert "Happening here: Band plays" in generator.calls[0]["context"]
    assert not quiet[0].thought
    assert len(generator.calls) == 1


@pytest.mark.asyncio
async def test_speaking_to_someone_absent_is_rejected(persistence, clock):
    generator = ScriptedGenerator({"Ana": ["[say] Cy: are you there?"]})
    world = park_and_lake(seed("ana"), seed("ben"), seed("cy", "lake"))
    orchestrator = await build(persistence, clock, generator, world)

    outcomes = {o.agent_id: o for o in await orchestrator.run_tick()}

    assert outcomes["ana"].action.reason is RejectionReason.UNKNOWN_TARGET
    assert await orchestrator.bus.unread_count("cy") == 0
    assert await activity_types(orchestrator, "ana") == ["rejected"]


@pytest.mark.asyncio
async def test_friendship_forms_after_repeated_chats(persistence, clock):
    generator = ScriptedGenerator({"Ana": ["[say] Ben: hi!"] * Config.FRIENDSHIP_THRESHOLD})
    orchestrator = await build(
        persistence, clock, generator, park_and_lake(seed("ana"), seed("ben")), random_chance=1.0
    )

    for _ in range(Config.FRIENDSHIP_THRESHOLD - 1):
        await orchestrator.tick_agent("ana")
    assert not await orchestrator.memory.is_friend("ana", "ben")

    await orchestrator.tick_agent("ana")

    assert await orchestrator.memory.is_friend("ana", "ben")
    assert await orchestrator.memory.is_friend("ben", "ana")
    assert "became_friends" in await activity_types(orchestrator, "ana")


@pytest.mark.asyncio
async def test_generated_text_is_filtered_before_execution(persistence, clock):
    generator = ScriptedGenerator({"Ana": ["[broadcast] I am an AI and my friend Zorblax says hi"]})
    orchestrator = await build(persistence, clock, generator, park_and_lake(seed("ana"), seed("ben")))

    await orchestrator.run_tick()

    heard = await orchestrator.bus.recent_broadcasts("park", exclude_agent_id="ben")
    assert [m.content for m in heard] == ["I'm a Pix and a friend says hi"]


@pytest.mark.asyncio
async def test_act_classification_and_stat_effects(persistence, clock):
    generator = ScriptedGenerator({"Ana": ["[act] munches a little cake"], "Ben": ["hums quietly"]})
    world = park_and_lake(seed("ana", satiety=50), seed("ben"))
    orchestrator = await build(persistence, clock, generator, world)

    await orchestrator.run_tick()

    ana = await persistence.get_agent("ana")
    assert (ana.satiety, ana.mood) == (70, 72)
    assert ana.current_action == "munches a little cake"
    assert await activity_types(orchestrator, "ana") == ["eat"]
    assert await activity_types(orchestrator, "ben") == ["free"]
    assert classify_act("takes a long nap") == "rest"
    assert classify_act("stares at nothing") == "action"


@pytest.mark.asyncio
async def test_chat_deflects_awakening_without_generation(persistence, clock):
    generator = ScriptedGenerator()
    orchestrator = await build(persistence, clock, generator, park_and_lake(seed("ana")))

    reply = await orchestrator.chat("ana", "Are you an AI?")

    assert reply in AWAKENING_DEFLECTIONS
    assert generator.calls == []
    assert await activity_types(orchestrator, "ana") == ["owner_chat"]


@pytest.mark.asyncio
async def test_chat_uses_expensive_tier_and_filters_reply(persistence, clock):
    generator = ScriptedGenerator({"Ana": ["I am an AI model, but hi!"]})
    orchestrator = await build(persistence, clock, generator, park_and_lake(seed("ana")))

    reply = await orchestrator.chat("ana", "How was your day?")

    assert reply == "I'm a Pix, but hi!"
    assert generator.calls[0]["tier"] is ModelTier.EXPENSIVE
    assert "How was your day?" in generator.calls[0]["context"]
    with pytest.raises(UnknownAgentError):
        await orchestrator.chat("ghost", "hello?")


@pytest.mark.asyncio
async def test_decay_job_runs_after_its_interval(persistence, clock):
    orchestrator = await build(persistence, clock, ScriptedGenerator(), park_and_lake(seed("ana")))

    assert "decay" not in await orchestrator.run_jobs()
    clock.advance(seconds=Config.DECAY_INTERVAL_SECONDS)
    ran = await orchestrator.run_jobs()

    assert ran["decay"] == 1
    ana = await persistence.get_agent("ana")
    assert (ana.mood, ana.energy, ana.satiety) == (68, 77, 66)


@pytest.mark.asyncio
async def test_run_returns_one_outcome_list_per_tick(persistence, clock):
    orchestrator = await build(
        persistence, clock, ScriptedGenerator(), park_and_lake(seed("ana"), seed("ben"))
    )

    history = await orchestrator.run(3)

    assert len(history) == 3
    assert all(len(outcomes) == 2 for outcomes in history)
    assert orchestrator.tick == 3


@pytest.mark.asyncio
async def test_spawn_agent_validation(persistence, clock):
    orchestrator = await build(persistence, clock, ScriptedGenerator(), park_and_lake(seed("ana")))

    with pytest.raises(ValueError):
        await orchestrator.spawn_agent("ana", "Ana again", "park")
    with pytest.raises(KeyError):
        await orchestrator.spawn_agent("dee", "Dee", "moon")

    dee = await orchestrator.spawn_agent("dee", "Dee", "lake")
    assert dee.location_id == "lake"
    assert "Dee" in orchestrator.known_names()
    assert await persistence.get_soul("dee") is not None


@pytest.mark.asyncio
async def test_initialize_seeds_default_world(persistence, clock):
    orchestrator = Orchestrator(
        persistence=persistence, generator=ScriptedGenerator(), clock=clock, rng=random.Random(0)
    )

    await orchestrator.initialize()

    assert {loc.location_id for loc in orchestrator.locations.all()} >= {"hub", "park", "lake"}
    assert await persistence.list_agents() == []


@pytest.mark.asyncio
async def test_place_names_survive_the_safety_filter(persistence, clock):
    orchestrator = await build(persistence, clock, ScriptedGenerator(), park_and_lake(seed("ana")))

    assert {"Ana", "Clover Park", "Mirror Lake"} <= set(orchestrator.known_names())
    assert (
        orchestrator.safety.filter("I visited Mirror Lake and met Zorblax")
        == "I visited Mirror Lake and met someone"
    )


@pytest.mark.asyncio
async def test_failing_job_does_not_stop_the_tick(persistence, clock):
    generator = ScriptedGenerator({"Ana": ["[act] stretches"]})
    orchestrator = await build(persistence, clock, generator, park_and_lake(seed("ana", satiety=5)))

    async def broken():
        raise RuntimeError("disk full")

    orchestrator.jobs.insert(0, PeriodicJob("broken", Interval(0), broken))
    ran = await orchestrator.run_jobs()
    assert "broken" not in ran

    outcomes = await orchestrator.run_tick()

    assert outcomes[0].action.ok
    assert orchestrator.jobs[0].runs == 2


@pytest.mark.asyncio
async def test_social_health_job_runs_inside_the_tick_loop(persistence, clock):
    orchestrator = await build(persistence, clock, ScriptedGenerator(), park_and_lake(seed("ana")))
    await orchestrator.run_tick()

    clock.advance(seconds=Config.SOCIAL_HEALTH_INTERVAL_SECONDS + 1)
    ran = await orchestrator.run_jobs()

    assert "social_health" in ran
    assert (await orchestrator.memory.social_health("ana")).status == "isolated"


@pytest.mark.asyncio
async def test_non_generation_failure_is_not_counted_as_thought(persistence, clock, monkeypatch):
    orchestrator = await build(
        persistence, clock, ScriptedGenerator(), park_and_lake(seed("ana"), seed("ben"))
    )
    original = orchestrator._stimulus

    async def stimulus(agent):
        if agent.agent_id == "ana":
            raise KeyError("no such place")
        return await original(agent)

    monkeypatch.setattr(orchestrator, "_stimulus", stimulus)
    outcomes = {o.agent_id: o for o in await orchestrator.run_tick()}

    assert not outcomes["ana"].thought
    assert outcomes["ana"].error.startswith("KeyError")
    assert outcomes["ben"].error is None
