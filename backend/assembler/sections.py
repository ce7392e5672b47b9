from __future__ import annotations

SECTION_ORDER: tuple[str, ...] = (
    "contract",
    "ruleset",
    "modules",
    "world",
    "scenario",
    "npcs",
    "state",
    "input",
)
