import pytest

from assembler.bundle import DocumentRefs
from documents.store import InMemoryDocumentStore


def npc_content(name: str, **extra) -> dict:
    return {
        "name": name,
        "archetype": "dock worker",
        "summary": f"{name} knows every rope on the pier and every rumor behind it.",
        "traits": ["loyal", "curious"],
        **extra,
    }


@pytest.fixture
def store() -> InMemoryDocumentStore:
    store = InMemoryDocumentStore()
    store.put(
        "contract",
        "core",
        "1.0.0",
        {
            "name": "Core contract",
            "instructions": ["Write in second person."],
            "output_keys": ["txt", "choices", "acts"],
            "acts_catalog": ["TIME_ADVANCE", "FLAG_SET"],
        },
        active=True,
    )
    store.put(
        "ruleset",
        "default",
        "1.0.0",
        {
            "name": "Default ruleset",
            "rules": {"violence": "off-screen"},
            "choices_policy": "Short imperative phrases.",
        },
        active=True,
    )
    store.put(
        "world",
        "mystika",
        "1.0.0",
        {
            "name": "Mystika",
            "summary": "A rain-soaked archipelago.",
            "tone": ["wistful"],
            "locations": [{"id": "harbor", "name": "Saltmere Harbor"}],
        },
        active=True,
    )
    store.put(
        "adventure",
        "tide",
        "1.0.0",
        {
            "name": "The Whispering Tide",
            "synopsis": "Find out why the bells ring.",
            "opening": "Rain drums on the harbor roofs.",
            "modules": [
                {"id": "relationships", "summary": "Trust tracking."},
                {"id": "economy", "summary": "Coin and barter.", "enabled": False},
            ],
        },
        active=True,
    )
    store.put(
        "scenario",
        "harbor",
        "1.0.0",
        {
            "name": "Harbor at night",
            "objectives": ["Reach the bell tower"],
            "graph_id": "tide-main",
        },
        active=True,
    )
    return store


@pytest.fixture
def refs() -> DocumentRefs:
    return DocumentRefs(
        contract="core",
        ruleset="default@1.0.0",
        world="mystika",
        adventure="tide",
        scenario="harbor",
    )


@pytest.fixture
def add_npcs(store):
    def _add(count: int) -> tuple[str, ...]:
        ids = tuple(f"npc_{index:02d}" for index in range(1, count + 1))
        for npc_id in ids:
            store.put(
                "npc", npc_id, "1.0.0", npc_content(npc_id.replace("_", " ").title()), active=True
            )
        return ids

    return _add


@pytest.fixture
def graph_data() -> dict:
    return {
        "entry_node": "docks",
        "nodes": [
            {"id": "docks", "synopsis": "The bells ring over the empty docks."},
            {"id": "warden", "type": "objective", "synopsis": "Convince the warden."},
            {"id": "tower", "type": "gate", "synopsis": "Climb the bell tower."},
            {"id": "caves", "type": "setpiece", "synopsis": "The caves flood with light."},
        ],
        "edges": [
            {"from": "docks", "to": "warden"},
            {
                "from": "warden",
                "to": "tower",
                "guard": {"op": "gte", "left": "rel.kiera.trust", "right": 10},
            },
            {
                "from": "tower",
                "to": "caves",
                "guard": {"op": "flag", "scope": "story", "key": "bells_silenced"},
            },
        ],
    }
