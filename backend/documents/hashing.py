from __future__ import annotations

import hashlib
import json
from typing import Any


def canonicalize(value: Any) -> str:
    """Return the canonical JSON text for a document body.

    Object keys are sorted at every depth and separators are compact, so two
    documents with the same content but different key insertion order produce
    the same text. Array element order is significant and kept.
    """
    return json.dumps(
        value,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
    )


def content_hash(value: Any) -> str:
    return hashlib.sha256(canonicalize(value).encode("utf-8")).hexdigest()


def canonical_size(value: Any) -> int:
    return len(canonicalize(value).encode("utf-8"))
