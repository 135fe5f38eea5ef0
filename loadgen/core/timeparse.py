from __future__ import annotations

import re

from loadgen.exceptions import ValidationError


_PART_RE = re.compile(r"(?P<value>\d+(?:\.\d+)?)(?P<unit>ms|s|m|h)")
_DURATION_RE = re.compile(r"^(?:\d+(?:\.\d+)?(?:ms|s|m|h))+$")

_UNIT_SECONDS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}


def parse_duration_to_seconds(raw: str | int | float) -> float:
    """Parse duration strings like '500ms', '10s', '5m', '1h' or '1m30s' into seconds.

    Bare numbers are taken as seconds.
    """
    if isinstance(raw, bool):
        raise ValidationError("INVALID_DURATION", "duration must be a string or number", {"provided": raw})
    if isinstance(raw, (int, float)):
        if raw < 0:
            raise ValidationError("INVALID_DURATION", "duration must be non-negative", {"provided": raw})
        return float(raw)

    text = raw.strip()
    if not _DURATION_RE.match(text):
        raise ValidationError(
            "INVALID_DURATION",
            "duration must match <number><unit>[<number><unit>...] where unit is ms|s|m|h",
            {"provided": raw},
        )

    return sum(float(m.group("value")) * _UNIT_SECONDS[m.group("unit")] for m in _PART_RE.finditer(text))


def format_seconds(seconds: float) -> str:
    """Render seconds back as a compact duration string (e.g. 90 -> '1m30s')."""
    if seconds < 1:
        return f"{int(round(seconds * 1000))}ms"
    minutes, secs = divmod(seconds, 60)
    secs = round(secs, 1)
    hours, minutes = divmod(int(minutes), 60)
    parts = []
    if hours:
        parts.append(f"{hours}h")
    if minutes:
        parts.append(f"{minutes}m")
    if secs or not parts:
        parts.append(f"{secs:g}s")
    return "".join(parts)
