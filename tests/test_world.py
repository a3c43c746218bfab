"""Tests for world definitions and loading via WorldLoader."""

import json
from pathlib import Path

import pytest

from conftest import make_location
from pixelverse.config import Config
from pixelverse.world import DEFAULT_LOCATIONS, WorldLoader, default_world, link_bidirectional

WORLDS_DIR = Path(__file__).resolve().parent.parent / "examples" / "worlds"


def test_default_world_is_symmetric():
    world = default_world()
    by_id = {loc.location_id: loc for loc in world.locations}

    assert set(by_id) == {"hub", "park", "library", "cafe", "market", "lake"}
    for location in world.locations:
        for neighbour_id in location.connects_to:
            assert location.location_id in by_id[neighbour_id].connects_to


def test_default_loader_uses_bundled_worlds_dir():
    assert WorldLoader().worlds_dir == Config.PROJECT_ROOT / "examples" / "worlds"
    assert not hasattr(Config, "LOG_LEVEL")


def test_link_bidirectional_does_not_mutate_input():
    original = [make_location("a", connects_to=["b"]), make_location("b")]

    linked = {loc.location_id: loc for loc in link_bidirectional(original)}

    assert linked["b"].connects_to == ["a"]
    assert original[1].connects_to == []
    assert DEFAULT_LOCATIONS[0].location_id == "hub"


def test_link_bidirectional_rejects_bad_graphs():
    with pytest.raises(ValueError):
        link_bidirectional([make_location("a", connects_to=["nowhere"])])
    with pytest.raises(ValueError):
        link_bidirectional([make_location("a"), make_location("a")])


def test_loader_reads_plaza_world():
    world = WorldLoader(worlds_dir=WORLDS_DIR).load("plaza")
    by_id = {loc.location_id: loc for loc in world.locations}

    assert world.name == "Plaza"
    assert by_id["lake"].capacity == 2
    # Park only lists the lake; the plaza's link back is filled in
    assert "hub" in by_id["park"].connects_to
    assert [seed.agent_id for seed in world.agents] == ["mochi", "pudding", "biscuit", "tofu"]
    assert world.agents[2].energy == 40
    assert world.events[0].title == "Kite day"


def test_loader_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        WorldLoader(worlds_dir=tmp_path).load("atlantis")


@pytest.mark.parametrize(
    "data",
    [
        {"name": "Empty", "locations": []},
        {
            "name": "Lost agent",
            "locations": [{"location_id": "a", "name": "A"}],
            "agents": [{"agent_id": "x", "name": "X", "location_id": "b"}],
        },
        {
            "name": "Lost event",
            "locations": [{"location_id": "a", "name": "A"}],
            "events": [
                {"location_id": "b", "event_type": "party", "title": "Party", "description": "!"}
            ],
        },
    ],
)
def test_loader_rejects_malformed_worlds(data, tmp_path):
    (tmp_path / "bad.json").write_text(json.dumps(data))

    with pytest.raises(ValueError):
        WorldLoader(worlds_dir=tmp_path).load("bad")
