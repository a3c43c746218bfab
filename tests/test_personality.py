"""Tests for soul generation, projection, evolution and daily reflection."""

import random

import pytest

from pixelverse.personality import TRAIT_RANGES, PersonalityModel
from pixelverse.scheduler import DecisionScheduler
from pixelverse.schemas import Location, ModelTier, SoulTraits, ThinkingResult


@pytest.fixture
def personality(persistence, memory, clock) -> PersonalityModel:
    return PersonalityModel(persistence, memory, clock=clock, rng=random.Random(3))


async def seed_soul(personality, persistence, agent_id="ana", **traits):
    soul = personality.generate()
    values = {name: 50 for name in TRAIT_RANGES}
    values.update(traits)
    soul.traits = SoulTraits(**values)
    await persistence.save_soul(agent_id, soul)
    return soul


def test_generate_draws_traits_from_ranges(personality):
    for _ in range(20):
        soul = personality.generate()
        for name, (low, high) in TRAIT_RANGES.items():
            assert low <= getattr(soul.traits, name) <= high
        assert soul.version == 1
        assert len(soul.evolution_log) == 1


def test_project_is_pure_and_uses_buckets(personality):
    soul = personality.generate()
    soul.traits = SoulTraits(
        curiosity=85, playfulness=50, sociability=20, independence=50, emotionality=50, gentleness=75
    )
    soul.tendencies.foodie = True
    soul.preferences.likes = ["reading"]

    text = PersonalityModel.project(soul)

    assert text == PersonalityModel.project(soul)
    assert "full of curiosity" in text
    assert "a little shy" in text
    assert "gentle and caring" in text
    assert "lively and playful" not in text and "calm and steady" not in text
    assert "Very interested in food" in text
    assert "Likes: reading" in text


@pytest.mark.asyncio
async def test_evolve_raises_sociability_after_social_week(personality, persistence, memory):
    await seed_soul(personality, persistence, sociability=50)
    for i in range(6):
        await memory.record_activity("ana", "social_chat", f"Chat {i}", data={"target_name": "Ben"})

    soul = await personality.evolve("ana")

    assert soul.traits.sociability == 53
    assert len(soul.evolution_log) == 2
    assert soul.version == 2
    assert "sociability +3" in soul.evolution_log[-1].change
    stored = await persistence.get_soul("ana")
    assert stored.traits.sociability == 53


@pytest.mark.asyncio
async def test_evolve_without_change_keeps_version(personality, persistence, memory):
    await seed_soul(personality, persistence, sociability=0)

    soul = await personality.evolve("ana")

    # A quiet week would lower sociability, but it is already at the floor
    assert soul.traits.sociability == 0
    assert soul.version == 1
    assert len(soul.evolution_log) == 1


@pytest.mark.asyncio
async def test_evolve_ignores_activity_older_than_a_week(personality, persistence, memory, clock):
    await seed_soul(personality, persistence, sociability=50)
    for i in range(6):
        await memory.record_activity("ana", "social_chat", f"Chat {i}")
    clock.advance(days=8)

    soul = await personality.evolve("ana")

    assert soul.traits.sociability == 49


@pytest.mark.asyncio
async def test_evolve_updates_likes_and_favorite_place(personality, persistence, memory):
    soul = await seed_soul(personality, persistence)
    soul.preferences.likes = ["a", "b", "c", "d", "e"]
    await persistence.save_soul("ana", soul)
    await persistence.save_location(Location(location_id="lake", name="Mirror Lake"))
    for _ in range(6):
        await memory.record_activity("ana", "play", "Played tag")
    for _ in range(5):
        await memory.record_activity("ana", "move", "Walked to the lake", location_id="lake")
    await memory.record_activity("ana", "move", "Walked to the park", location_id="park")

    evolved = await personality.evolve("ana")

    assert evolved.preferences.likes == ["b", "c", "d", "e", "playing"]
    assert evolved.preferences.favorite_place == "Mirror Lake"
    assert evolved.traits.playfulness == 52
    assert evolved.traits.curiosity == 52
    assert evolved.version == 2
    assert len(evolved.evolution_log) == 2


class FakeScheduler(DecisionScheduler):
    def __init__(self, text):
        super().__init__(generator=None, capacity=1, timeout=0)
        self.text = text
        self.requests = []

    async def think(self, request):
        self.requests.append(request)
        return ThinkingResult(
            request_id=len(self.requests),
            agent_id=request.agent_id,
            text=self.text,
            tier=ModelTier.EXPENSIVE,
            model="fake",
            duration_ms=1,
        )


@pytest.mark.asyncio
async def test_reflect_once_per_day(personality, memory, persistence, clock):
    scheduler = FakeScheduler("I learned that I am an AI model who loves the park.")
    await memory.record_activity("ana", "play", "Played")
    assert await personality.reflect("ana", scheduler) is None

    await memory.record_activity("ana", "read", "Read")
    await memory.record_activity("ana", "rest", "Napped")
    insight = await personality.reflect("ana", scheduler)
    again = await personality.reflect("ana", scheduler)

    assert insight == "I learned that I'm a Pix who loves the park."
    assert again is None
    assert len(scheduler.requests) == 1
    assert scheduler.requests[0].trigger == "reflection"
    assert await personality.recent_insights("ana") == [insight]
