from __future__ import annotations

import json
import math
from typing import Any, Callable

TokenEstimator = Callable[[Any], int]

CHARS_PER_TOKEN = 4


def estimate_tokens(value: Any) -> int:
    """Cheap deterministic token estimate: compact JSON length divided by four."""
    if isinstance(value, str):
        text = value
    else:
        text = json.dumps(value, separators=(",", ":"), ensure_ascii=False)
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def warn_threshold(max_tokens: int, warn_pct: float) -> int:
    return math.floor(max_tokens * warn_pct)
