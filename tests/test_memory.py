"""Tests for the memory store: activity log, context, compression, social memory."""

import pytest

from conftest import make_agent
from pixelverse.memory import GROUNDING_INSTRUCTION, MemoryStore, detect_emotion, truncate_summary
from pixelverse.persistence import UnknownAgentError
from pixelverse.schemas import SocialMemoryType


@pytest.mark.asyncio
async def test_activity_log_is_bounded(persistence, clock):
    memory = MemoryStore(persistence, clock=clock, activity_limit=5)
    for i in range(8):
        await memory.record_activity("ana", "play", f"game {i}")

    recent = await memory.recent_activities("ana", 10)

    assert [r.description for r in recent] == [f"game {i}" for i in range(3, 8)]


@pytest.mark.asyncio
async def test_build_context_is_deterministic_and_ordered(persistence, memory):
    await persistence.save_summary("ana", "[2025-03-09] played 2 time(s)")
    await memory.record_activity("ana", "read", "Read a picture book")
    await memory.record_activity(
        "ana", "social_chat", "Said to Ben: \"hi\"", data={"target_name": "Ben"}
    )
    await memory.record_activity("ana", "rest", "Took a nap")

    first = await memory.build_context("ana")
    second = await memory.build_context("ana")

    assert first == second
    summary_at = first.index("[2025-03-09] played 2 time(s)")
    recent_at = first.index("## What you did recently")
    social_at = first.index("## Your recent social life")
    grounding_at = first.index(GROUNDING_INSTRUCTION)
    assert summary_at < recent_at < social_at < grounding_at
    assert first.endswith(GROUNDING_INSTRUCTION)
    # Recent activities are listed oldest first
    assert first.index("Read a picture book") < first.index("Took a nap")


@pytest.mark.asyncio
async def test_build_context_without_history_is_only_grounding(memory):
    assert await memory.build_context("nobody") == GROUNDING_INSTRUCTION


@pytest.mark.asyncio
async def test_compress_replaces_same_day_line(memory, persistence, clock):
    await memory.record_activity("ana", "play", "Played tag")
    first = await memory.compress("ana")
    await memory.record_activity("ana", "play", "Played tag again")
    await memory.record_activity("ana", "read", "Read a book")
    second = await memory.compress("ana")

    assert first == "[2025-03-10] played 1 time(s)"
    assert second == "[2025-03-10] played 2 time(s), read 1 time(s)"
    assert await persistence.get_summary("ana") == second

    clock.advance(hours=24)
    third = await memory.compress("ana")
    lines = third.split("\n")
    assert lines[0] == second
    assert lines[1].startswith("[2025-03-11]")


@pytest.mark.asyncio
async def test_compress_respects_character_budget(persistence, clock):
    memory = MemoryStore(persistence, clock=clock, summary_budget=80)
    for day in range(6):
        await memory.record_activity("ana", "play", f"Played on day {day}")
        await memory.record_activity("ana", "explore", f"Explored on day {day}")
        summary = await memory.compress("ana")
        clock.advance(hours=24)

    assert len(summary) <= 80
    assert summary.split("\n")[-1].startswith("[2025-03-15]")
    assert "[2025-03-10]" not in summary


def test_truncate_summary_drops_whole_lines():
    summary = "line one\nline two\nline three"

    assert truncate_summary(summary, 100) == summary
    assert truncate_summary(summary, 20) == "line two\nline three"
    assert truncate_summary(summary, 5) == "line "


@pytest.mark.asyncio
async def test_first_meeting_is_recorded_once(memory):
    assert await memory.is_first_meeting("ana", "ben")

    first = await memory.record_first_meeting("ana", "ben", "Ben", "Clover Park")
    again = await memory.record_first_meeting("ana", "ben", "Ben", "Clover Park")

    assert first is not None
    assert "Clover Park" in first.text
    assert first.importance == 8
    assert again is None
    assert not await memory.is_first_meeting("ana", "ben")
    assert await memory.is_first_meeting("ben", "ana")


@pytest.mark.asyncio
async def test_remember_conversation_tags_emotion(memory):
    happy = await memory.remember_conversation("ana", "ben", "Ben", "That was so fun, haha!")
    sad = await memory.remember_conversation("ana", "ben", "Ben", "I miss the rain")
    plain = await memory.remember_conversation("ana", "ben", "Ben", "The lake is over there")

    assert (happy.emotion, happy.importance) == ("happy", 7)
    assert (sad.emotion, sad.importance) == ("sad", 5)
    assert (plain.emotion, plain.importance) == ("neutral", 5)
    assert await memory.conversation_count("ana", "ben") == 3
    assert detect_emotion("thank you, that is kind") == "warm"


@pytest.mark.asyncio
async def test_memories_about_orders_by_importance(memory):
    await memory.record_social("ana", "ben", SocialMemoryType.IMPRESSION, "Seems quiet", importance=4)
    await memory.record_friendship("ana", "ben", "Ben")
    await memory.record_social("ana", "ben", SocialMemoryType.IMPRESSION, "Likes cake", importance=4)

    memories = await memory.memories_about("ana", "ben")

    assert [m.text for m in memories][1:] == ["Seems quiet", "Likes cake"]
    assert memories[0].memory_type is SocialMemoryType.FRIENDSHIP
    assert await memory.is_friend("ana", "ben")
    assert not await memory.is_friend("ben", "ana")


@pytest.mark.asyncio
async def test_social_context_framing(memory):
    stranger = await memory.social_context("ana", "ben", "Ben")
    await memory.record_first_meeting("ana", "ben", "Ben")
    await memory.remember_conversation("ana", "ben", "Ben", "Want to play?")
    known = await memory.social_context("ana", "ben", "Ben")

    assert "never met Ben" in stranger
    assert "What you remember about Ben" in known
    assert "Want to play?" in known


@pytest.mark.asyncio
async def test_social_health_statuses(persistence, memory, clock):
    await make_agent(persistence, None, "ana", "hub")
    await make_agent(persistence, None, "ben", "hub")
    await make_agent(persistence, None, "cy", "hub")

    # Ana never talked to anyone
    assert (await memory.social_health("ana")).status == "isolated"

    # Ben talked once, three days ago, and has no friends
    await memory.record_activity("ben", "social_chat", "Said hi", data={"target_name": "Cy"})
    clock.advance(days=3)
    report = await memory.social_health("ben")
    assert report.status == "lonely"
    assert report.recommendation == "encourage_social"

    # Cy chats often and has a friend
    for _ in range(3):
        await memory.record_activity("cy", "social_chat", "Chatted", data={"target_name": "Ben"})
    await memory.record_friendship("cy", "ben", "Ben")
    healthy = await memory.social_health("cy")
    assert healthy.status == "healthy"
    assert healthy.friend_count == 1

    with pytest.raises(UnknownAgentError):
        await memory.social_health("ghost")


@pytest.mark.asyncio
async def test_nudges_are_written_at_most_once_per_day(persistence, memory, clock):
    await make_agent(persistence, None, "ana", "hub")

    report = await memory.social_health("ana")
    assert await memory.apply_nudges([report]) == ["ana"]
    assert await memory.apply_nudges([report]) == []

    clock.advance(days=1, seconds=1)
    assert await memory.apply_nudges([report]) == ["ana"]
    nudges = [r for r in await memory.recent_activities("ana") if r.activity_type == "social_nudge"]
    assert len(nudges) == 2


@pytest.mark.asyncio
async def test_social_health_flags_single_dependency(persistence, memory):
    await make_agent(persistence, None, "dee", "hub")
    await make_agent(persistence, None, "ben", "hub")
    for _ in range(6):
        await memory.record_activity("dee", "social_chat", "Chatted", data={"target_name": "Ben"})
        await memory.remember_conversation("dee", "ben", "Ben", "hello again")
    await memory.record_friendship("dee", "ben", "Ben")

    report = await memory.social_health("dee")

    assert report.status == "overly_dependent"
    assert report.top_counterpart == "Ben"
    assert report.recommendation == "diversify_friends"
