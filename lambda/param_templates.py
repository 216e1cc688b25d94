from __future__ import annotations

import json
import re
from typing import Any

# {$.user.email}, {$.roles[0].name}
_PLACEHOLDER = re.compile(r"\{(\$(?:\.[A-Za-z0-9_\-]+|\[\d+\])*)\}")
_SEGMENT = re.compile(r"\.([A-Za-z0-9_\-]+)|\[(\d+)\]")

_MISSING = object()


def _lookup(data: Any, path: str) -> Any:
    current = data
    for key, index in _SEGMENT.findall(path[1:]):
        if key:
            if not isinstance(current, dict) or key not in current:
                return _MISSING
            current = current[key]
        else:
            i = int(index)
            if not isinstance(current, list) or i >= len(current):
                return _MISSING
            current = current[i]
    return current


def _as_text(value: Any) -> str:
    if isinstance(value, (dict, list)):
        return json.dumps(value, separators=(",", ":"))
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _resolve_str(text: str, data: Any, errors: list[str]) -> Any:
    whole = _PLACEHOLDER.fullmatch(text)
    if whole:
        value = _lookup(data, whole.group(1))
        if value is _MISSING:
            errors.append(f"failed to resolve {whole.group(1)}")
            return ""
        return value

    def _sub(m: re.Match[str]) -> str:
        value = _lookup(data, m.group(1))
        if value is _MISSING:
            errors.append(f"failed to resolve {m.group(1)}")
            return ""
        return _as_text(value)

    return _PLACEHOLDER.sub(_sub, text)


def _resolve(value: Any, data: Any, errors: list[str]) -> Any:
    if isinstance(value, str):
        return _resolve_str(value, data, errors)
    if isinstance(value, dict):
        return {k: _resolve(v, data, errors) for k, v in value.items()}
    if isinstance(value, list):
        return [_resolve(v, data, errors) for v in value]
    return value


def resolve_templates(value: Any, data: Any) -> tuple[Any, list[str]]:
    """Return a copy of ``value`` with ``{$.path}`` placeholders filled from ``data``.

    Unresolvable placeholders become empty strings and are reported in the
    returned error list instead of raising.
    """

    errors: list[str] = []
    resolved = _resolve(value, data if data is not None else {}, errors)
    return resolved, errors
