from __future__ import annotations

import re
from typing import Any, Mapping

PLACEHOLDER = re.compile(r"\{env\.([A-Za-z0-9_]+)\}")


class PathError(ValueError):
    pass


def split_path(path: str) -> list[str]:
    stripped = path.strip("/")
    if not stripped:
        return []
    return [segment.replace("~1", "/").replace("~0", "~") for segment in stripped.split("/")]


def render_path(template: str, env: Mapping[str, Any]) -> str:
    def substitute(match: re.Match) -> str:
        key = match.group(1)
        value = env.get(key)
        if value is None or value == "":
            raise PathError(f"unknown placeholder '{{env.{key}}}'")
        return str(value).replace("~", "~0").replace("/", "~1")

    return PLACEHOLDER.sub(substitute, template)


def get_path(tree: Any, path: str) -> Any:
    current = tree
    for segment in split_path(path):
        if isinstance(current, Mapping):
            if segment not in current:
                return None
            current = current[segment]
        elif isinstance(current, list):
            if not segment.isdigit() or int(segment) >= len(current):
                return None
            current = current[int(segment)]
        else:
            return None
    return current


def set_path(tree: dict, path: str, value: Any) -> None:
    segments = split_path(path)
    if not segments:
        raise PathError("cannot replace the bundle root")
    current: Any = tree
    for index, segment in enumerate(segments):
        last = index == len(segments) - 1
        next_container: Any = None if last else ([] if segments[index + 1].isdigit() else {})
        if isinstance(current, dict):
            if last:
                current[segment] = value
                return
            if not isinstance(current.get(segment), (dict, list)):
                current[segment] = next_container
            current = current[segment]
        elif isinstance(current, list):
            if not segment.isdigit():
                raise PathError(f"segment '{segment}' is not a list index")
            position = int(segment)
            if position > len(current):
                raise PathError(f"index {position} is past the end of the list")
            if position == len(current):
                current.append(value if last else next_container)
            elif last:
                current[position] = value
            elif not isinstance(current[position], (dict, list)):
                current[position] = next_container
            if last:
                return
            current = current[position]
        else:
            raise PathError(f"cannot descend into {type(current).__name__} at '{segment}'")
