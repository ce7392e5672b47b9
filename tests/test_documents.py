import pytest

from db import create_schema, make_engine, make_session_factory
from documents.schemas import parse_ref, validate_document
from documents.store import InMemoryDocumentStore, SqlDocumentStore, resolve_document
from errors import DocumentInvalid, DocumentNotFound

WORLD = {"name": "Mystika", "summary": "Rain and tide."}


def test_put_normalizes_and_hashes() -> None:
    store = InMemoryDocumentStore()
    document = store.put("world", "mystika", "1.0.0", WORLD, active=True)

    assert document.content["tone"] == []
    assert document.label == "world:mystika@1.0.0"
    assert store.get("world", "mystika", "1.0.0") == document
    assert store.get_active("world", "mystika") == document


def test_activating_a_version_deactivates_the_others() -> None:
    store = InMemoryDocumentStore()
    store.put("world", "mystika", "1.0.0", WORLD, active=True)
    store.put("world", "mystika", "1.1.0", {**WORLD, "summary": "Storms."}, active=True)

    assert store.get_active("world", "mystika").version == "1.1.0"
    assert [doc.active for doc in store.versions("world", "mystika")] == [False, True]


def test_versions_are_immutable() -> None:
    store = InMemoryDocumentStore()
    store.put("world", "mystika", "1.0.0", WORLD)
    store.put("world", "mystika", "1.0.0", dict(reversed(list(WORLD.items()))))

    with pytest.raises(DocumentInvalid):
        store.put("world", "mystika", "1.0.0", {**WORLD, "summary": "Changed."})


def test_missing_documents_raise_not_found() -> None:
    store = InMemoryDocumentStore()
    store.put("world", "mystika", "1.0.0", WORLD)

    with pytest.raises(DocumentNotFound) as excinfo:
        store.get_active("world", "mystika")
    assert excinfo.value.code == "DOCUMENT_NOT_FOUND"

    with pytest.raises(DocumentNotFound):
        resolve_document(store, "world", "mystika", "9.9.9")


def test_invalid_content_lists_errors() -> None:
    with pytest.raises(DocumentInvalid) as excinfo:
        validate_document("ruleset", {"name": "Rules", "ticks_per_turn": 0}, doc_id="r")
    assert excinfo.value.context["doc_id"] == "r"
    assert any("ticks_per_turn" in error for error in excinfo.value.context["errors"])


def test_unknown_kind_is_invalid() -> None:
    with pytest.raises(DocumentInvalid):
        validate_document("spellbook", {"name": "x"})


def test_npc_visibility_guard_is_validated() -> None:
    with pytest.raises(DocumentInvalid) as excinfo:
        validate_document("npc", {"name": "Talan", "visible_if": {"op": "maybe"}})
    assert any("visible_if" in error for error in excinfo.value.context["errors"])


def test_injection_targets_must_be_bundle_sections() -> None:
    validate_document("injection_map", {"rules": [{"from": "/world/lore", "to": "/world/lore"}]})

    with pytest.raises(DocumentInvalid):
        validate_document("injection_map", {"rules": [{"from": "/world", "to": "/lore/x"}]})
    with pytest.raises(DocumentInvalid):
        validate_document("injection_map", {"rules": [{"from": "world", "to": "/world"}]})


def test_parse_ref() -> None:
    assert parse_ref("kiera") == ("kiera", None)
    assert parse_ref("kiera@1.2.0") == ("kiera", "1.2.0")
    assert parse_ref("kiera@") == ("kiera", None)
    with pytest.raises(ValueError):
        parse_ref("@1.0.0")


def test_sql_store_matches_in_memory_behaviour() -> None:
    engine = make_engine("sqlite://")
    create_schema(engine)
    store = SqlDocumentStore(make_session_factory(engine))

    first = store.put("world", "mystika", "1.0.0", WORLD, active=True)
    second = store.put("world", "mystika", "1.1.0", {**WORLD, "summary": "Storms."}, active=True)

    assert store.get_active("world", "mystika") == second
    assert store.get("world", "mystika", "1.0.0").active is False
    assert store.get("world", "mystika", "1.0.0").hash == first.hash
    with pytest.raises(DocumentInvalid):
        store.put("world", "mystika", "1.0.0", {**WORLD, "summary": "Changed."})
    with pytest.raises(DocumentNotFound):
        store.get("npc", "kiera", "1.0.0")


def test_npc_style_register_keeps_its_wire_name() -> None:
    content = {"name": "Kiera", "style": {"voice": "clipped", "register": "informal"}}
    store = InMemoryDocumentStore()

    document = store.put("npc", "kiera", "1.0.0", content)

    assert validate_document("npc", content).style.speech_register == "informal"
    assert document.content["style"] == {"voice": "clipped", "register": "informal"}
