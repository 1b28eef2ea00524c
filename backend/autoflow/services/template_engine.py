"""``{{variable}}`` substitution for step configuration strings.

Tokens are identifiers (optionally a dotted path into nested maps or lists).
Tokens with no binding are left in place untouched; callers decide whether
that deserves a warning. Rendering never raises.
"""

import json
import re
from typing import Any

TOKEN_RE = re.compile(r"\{\{\s*([A-Za-z_][\w.]*)\s*\}\}")

_MISSING = object()


def lookup(bindings: dict, identifier: str) -> Any:
    """Resolve ``identifier`` against ``bindings``; returns the ``_MISSING`` sentinel when unbound."""
    if identifier in bindings:
        value = bindings[identifier]
        return _MISSING if value is None else value

    value: Any = bindings
    for part in identifier.split("."):
        if isinstance(value, dict) and part in value:
            value = value[part]
        elif isinstance(value, list) and part.isdigit() and int(part) < len(value):
            value = value[int(part)]
        else:
            return _MISSING
    return _MISSING if value is None else value


def is_bound(bindings: dict, identifier: str) -> bool:
    return lookup(bindings, identifier) is not _MISSING


def to_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    return str(value)


def render(template: str, bindings: dict) -> str:
    if not template or "{{" not in template:
        return template

    def replace_match(m: re.Match) -> str:
        value = lookup(bindings, m.group(1))
        if value is _MISSING:
            return m.group(0)
        return to_text(value)

    return TOKEN_RE.sub(replace_match, template)


def unresolved_tokens(template: str, bindings: dict) -> list[str]:
    """Identifiers in ``template`` that ``bindings`` cannot satisfy, in order of first use."""
    if not template or "{{" not in template:
        return []
    missing: list[str] = []
    for m in TOKEN_RE.finditer(template):
        name = m.group(1)
        if name not in missing and not is_bound(bindings, name):
            missing.append(name)
    return missing
