from documents.hashing import canonical_size, canonicalize, content_hash
from documents.store import InMemoryDocumentStore


def test_canonical_form_sorts_keys_at_every_depth() -> None:
    value = {"b": 1, "a": {"d": [2, {"z": 1, "y": 2}], "c": None}}
    assert canonicalize(value) == '{"a":{"c":null,"d":[2,{"y":2,"z":1}]},"b":1}'


def test_hash_ignores_key_order_but_not_array_order() -> None:
    first = {"name": "Kiera", "traits": ["watchful", "dry"]}
    reordered = {"traits": ["watchful", "dry"], "name": "Kiera"}
    swapped = {"name": "Kiera", "traits": ["dry", "watchful"]}

    assert content_hash(first) == content_hash(reordered)
    assert content_hash(first) != content_hash(swapped)
    assert len(content_hash(first)) == 64


def test_canonical_size_counts_utf8_bytes() -> None:
    assert canonical_size({"a": "é"}) == len('{"a":"é"}'.encode("utf-8"))


def test_store_assigns_same_hash_regardless_of_insertion_order() -> None:
    store = InMemoryDocumentStore()
    first = store.put("world", "one", "1", {"name": "World", "summary": "Rain", "tone": ["dim"]})
    second = store.put("world", "two", "1", {"tone": ["dim"], "summary": "Rain", "name": "World"})
    assert first.hash == second.hash
