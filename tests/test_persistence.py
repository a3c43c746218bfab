"""Tests for in-memory and JSON snapshot persistence."""

import json
import random
from datetime import datetime, timedelta, timezone

import pytest

from pixelverse.persistence import InMemoryPersistence, JsonPersistence, UnknownAgentError
from pixelverse.personality import PersonalityModel
from pixelverse.schemas import (
    ActivityRecord,
    AgentState,
    Channel,
    Insight,
    Location,
    Message,
)

NOW = datetime(2025, 3, 10, 9, 0, 0, tzinfo=timezone.utc)


def activity(agent_id, activity_type, description, minutes=0):
    return ActivityRecord(
        agent_id=agent_id,
        activity_type=activity_type,
        description=description,
        created_at=NOW + timedelta(minutes=minutes),
    )


@pytest.mark.asyncio
async def test_in_memory_copies_records_in_and_out():
    persistence = InMemoryPersistence()
    await persistence.initialize()
    agent = AgentState(agent_id="ana", name="Ana", location_id="hub")

    await persistence.save_agent(agent)
    agent.mood = 5
    fetched = await persistence.get_agent("ana")
    fetched.energy = 1

    stored = await persistence.get_agent("ana")
    assert stored.mood == 70
    assert stored.energy == 80
    assert await persistence.get_agent("ghost") is None


@pytest.mark.asyncio
async def test_recent_activities_newest_first_with_type_filter():
    persistence = InMemoryPersistence()
    for i, kind in enumerate(["play", "read", "play", "rest"]):
        await persistence.add_activity(activity("ana", kind, f"{kind} {i}", minutes=i))

    recent = await persistence.get_recent_activities("ana", 3)
    plays = await persistence.get_recent_activities("ana", 10, activity_types=["play"])

    assert [r.description for r in recent] == ["rest 3", "play 2", "read 1"]
    assert [r.description for r in plays] == ["play 2", "play 0"]
    assert [r.record_id for r in recent] == [4, 3, 2]
    assert await persistence.prune_activities("ana", 1) == 3
    assert [r.description for r in await persistence.get_recent_activities("ana")] == ["rest 3"]


@pytest.mark.asyncio
async def test_messages_filter_and_expire():
    persistence = InMemoryPersistence()
    direct = await persistence.add_message(
        Message(
            sender_id="ana",
            recipient_id="ben",
            channel=Channel.DIRECT,
            content="hi",
            created_at=NOW,
            expires_at=NOW + timedelta(hours=1),
        )
    )
    await persistence.add_message(
        Message(
            sender_id="ben",
            location_id="park",
            channel=Channel.BROADCAST,
            content="hello all",
            created_at=NOW,
        )
    )

    assert [m.content for m in await persistence.get_messages(recipient_id="ben")] == ["hi"]
    await persistence.mark_messages_read([direct.message_id], NOW)
    assert await persistence.get_messages(recipient_id="ben", unread_only=True) == []
    assert await persistence.delete_expired_messages(NOW + timedelta(hours=2)) == 1
    assert [m.channel for m in await persistence.get_messages()] == [Channel.BROADCAST]


def test_unknown_agent_error_is_a_key_error():
    error = UnknownAgentError("ghost")

    assert isinstance(error, KeyError)
    assert "ghost" in str(error)


@pytest.mark.asyncio
async def test_json_persistence_survives_restart(tmp_path):
    first = JsonPersistence(tmp_path / "world")
    await first.initialize()
    await first.save_agent(AgentState(agent_id="ana", name="Ana", location_id="park", mood=42))
    await first.save_location(Location(location_id="park", name="Clover Park", capacity=3))
    await first.add_activity(activity("ana", "play", "Played tag"))
    await first.save_summary("ana", "[2025-03-10] played 1 time(s)")
    await first.add_insight(Insight(agent_id="ana", text="Tag is fun.", created_at=NOW))
    soul = PersonalityModel(first, None, rng=random.Random(1)).generate()
    await first.save_soul("ana", soul)
    await first.close()

    raw = json.loads((tmp_path / "world" / "world.json").read_text())
    assert raw["agents"][0]["agent_id"] == "ana"

    second = JsonPersistence(tmp_path / "world")
    await second.initialize()

    assert (await second.get_agent("ana")).mood == 42
    assert (await second.get_location("park")).capacity == 3
    assert await second.get_summary("ana") == "[2025-03-10] played 1 time(s)"
    assert [i.text for i in await second.get_recent_insights("ana")] == ["Tag is fun."]
    assert (await second.get_soul("ana")).traits == soul.traits
    # Ids continue after the stored ones
    added = await second.add_activity(activity("ana", "rest", "Napped", minutes=5))
    assert added.record_id == 2


@pytest.mark.asyncio
async def test_json_persistence_starts_empty_without_snapshot(tmp_path):
    persistence = JsonPersistence(tmp_path / "fresh")
    await persistence.initialize()

    assert await persistence.list_agents() == []
    assert (tmp_path / "fresh").is_dir()
