"""Template rendering for spawn, window and recycle commands.

Placeholders use double braces with optional filters:

    {{ path }}                  -> value of data['path']
    {{ prompt | shq }}          -> shell-quoted value
    {{ args | join(" ") }}      -> list joined with a separator

Unknown keys and unknown filters raise TemplateError rather than rendering
an empty string, so a typo in config never runs a half-formed command.
"""

import re
from typing import Any, Callable, Dict, Mapping, Optional

from burrow.errors import TemplateError

_TOKEN_RE = re.compile(r"\{\{(.*?)\}\}", re.DOTALL)
_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)*$")
_FILTER_RE = re.compile(r"^([a-z_]+)(?:\((.*)\))?$", re.DOTALL)


def shell_quote(value: Any) -> str:
    """Single-quote value for POSIX sh, escaping embedded single quotes."""
    s = "" if value is None else str(value)
    if s == "":
        return "''"
    return "'" + s.replace("'", "'\\''") + "'"


def _join(value: Any, sep: str = " ") -> str:
    if isinstance(value, (list, tuple)):
        return sep.join(str(v) for v in value)
    return str(value)


FILTERS: Dict[str, Callable[..., str]] = {
    'shq': shell_quote,
    'join': _join,
    'upper': lambda v: str(v).upper(),
    'lower': lambda v: str(v).lower(),
}


def _parse_filter_arg(raw: Optional[str]) -> list:
    if raw is None or raw.strip() == "":
        return []
    raw = raw.strip()
    if len(raw) >= 2 and raw[0] == raw[-1] and raw[0] in ('"', "'"):
        return [raw[1:-1]]
    raise TemplateError(f"filter argument must be a quoted string, got {raw}")


def _split_filters(expr: str) -> list:
    """Split expr on pipes that aren't inside a quoted filter argument."""
    parts, current, quote = [], [], None
    for ch in expr:
        if quote:
            if ch == quote:
                quote = None
        elif ch in ('"', "'"):
            quote = ch
        elif ch == '|':
            parts.append("".join(current).strip())
            current = []
            continue
        current.append(ch)
    parts.append("".join(current).strip())
    return parts


def _lookup(name: str, data: Mapping[str, Any]) -> Any:
    current: Any = data
    for part in name.split('.'):
        if isinstance(current, Mapping) and part in current:
            current = current[part]
        else:
            raise TemplateError(f"undefined template variable {name!r}")
    return current


def render(template: str, data: Mapping[str, Any]) -> str:
    """Render template against data.

    Raises:
        TemplateError: on malformed placeholders, unknown keys or filters
    """
    if template.count("{{") != template.count("}}"):
        raise TemplateError(f"unbalanced braces in template {template!r}")

    def _replace(m: re.Match) -> str:
        expr = m.group(1).strip()
        if not expr:
            raise TemplateError("empty placeholder")

        parts = _split_filters(expr)
        name = parts[0].lstrip('.')
        if not _NAME_RE.match(name):
            raise TemplateError(f"invalid placeholder {expr!r}")

        value = _lookup(name, data)
        for spec in parts[1:]:
            fm = _FILTER_RE.match(spec)
            if not fm or fm.group(1) not in FILTERS:
                raise TemplateError(f"unknown filter {spec!r}")
            value = FILTERS[fm.group(1)](value, *_parse_filter_arg(fm.group(2)))

        return "" if value is None else str(value)

    return _TOKEN_RE.sub(_replace, template)
