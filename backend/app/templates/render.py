from __future__ import annotations

import json
import math
import re
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Mapping, Optional, Sequence

MERGE_FIELD_PATTERN = re.compile(r"\{\{\s*([\w.]+)\s*\}\}")

TODAY_FIELD = "today"


class _NotFound:
    def __repr__(self) -> str:
        return "<not found>"


NOT_FOUND = _NotFound()


@dataclass(frozen=True)
class RenderResult:
    content: str
    missing: list[str] = field(default_factory=list)


def _utc_today() -> date:
    return datetime.now(timezone.utc).date()


def resolve_path(data: Any, path: str) -> Any:
    """
    Walk `data` one dotted segment at a time.

    Returns NOT_FOUND when a segment is absent or the walk hits a value that
    can't be descended into. A present None is returned as None.
    """
    node = data
    for segment in path.split("."):
        if isinstance(node, Mapping):
            if segment not in node:
                return NOT_FOUND
            node = node[segment]
        elif isinstance(node, (list, tuple)) and segment.isdigit():
            index = int(segment)
            if index >= len(node):
                return NOT_FOUND
            node = node[index]
        else:
            return NOT_FOUND
    return node


def _format_number(value: float) -> str:
    """Number.prototype.toString: shortest round-trip digits, exponent only below 1e-6 or from 1e21."""
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "Infinity" if value > 0 else "-Infinity"
    if value == 0:
        return "0"

    sign = "-" if value < 0 else ""
    mantissa, _, exponent = repr(abs(value)).partition("e")
    int_part, _, frac_part = mantissa.partition(".")
    raw = int_part + frac_part
    digits = raw.lstrip("0")
    # value == 0.<digits> * 10**point
    point = len(int_part) + int(exponent or 0) - (len(raw) - len(digits))
    digits = digits.rstrip("0")
    k = len(digits)

    if k <= point <= 21:
        return sign + digits + "0" * (point - k)
    if 0 < point <= 21:
        return sign + digits[:point] + "." + digits[point:]
    if -6 < point <= 0:
        return sign + "0." + "0" * -point + digits
    exp = point - 1
    head = digits[0] + ("." + digits[1:] if k > 1 else "")
    return f"{sign}{head}e{'+' if exp >= 0 else '-'}{abs(exp)}"


def _to_json(value: Any) -> str:
    # JSON.stringify parity: compact separators, JS number text, non-finite floats become null
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, Decimal):
        value = float(value)
    if isinstance(value, float):
        return _format_number(value) if math.isfinite(value) else "null"
    if isinstance(value, str):
        return json.dumps(value, ensure_ascii=False)
    if isinstance(value, (datetime, date)):
        return json.dumps(value.isoformat())
    if isinstance(value, Mapping):
        items = (f"{json.dumps(str(k), ensure_ascii=False)}:{_to_json(v)}" for k, v in value.items())
        return "{" + ",".join(items) + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(_to_json(v) for v in value) + "]"
    return json.dumps(str(value), ensure_ascii=False)


def stringify_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return _format_number(value)
    if isinstance(value, Decimal):
        return _format_number(float(value))
    if isinstance(value, (Mapping, list, tuple)):
        return _to_json(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


def render_template(
    content: str,
    data: Optional[Mapping[str, Any]],
    *,
    today: Optional[date] = None,
) -> RenderResult:
    """
    Replace every {{path.to.field}} in `content` with its value from `data`.

    Unresolvable paths keep their placeholder text and are reported once each
    in `missing`, in first-seen order. `{{today}}` is always the current date.
    """
    source = data if data is not None else {}
    today_str = (today or _utc_today()).isoformat()
    missing: list[str] = []

    def _replace(match: re.Match) -> str:
        path = match.group(1)
        if path == TODAY_FIELD:
            return today_str
        value = resolve_path(source, path)
        if value is NOT_FOUND:
            if path not in missing:
                missing.append(path)
            return match.group(0)
        return stringify_value(value)

    rendered = MERGE_FIELD_PATTERN.sub(_replace, content)
    return RenderResult(content=rendered, missing=missing)


def extract_merge_fields(content: str) -> list[str]:
    fields: list[str] = []
    for match in MERGE_FIELD_PATTERN.finditer(content):
        path = match.group(1)
        if path not in fields:
            fields.append(path)
    return fields


def merge_field_schema(fields: Sequence[str]) -> dict[str, str]:
    return {path: "date" if path == TODAY_FIELD else "string" for path in fields}
