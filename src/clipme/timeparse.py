from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation

_HMS_RE = re.compile(r"^(?:(\d+)h)?(?:(\d+)m)?(?:(\d+(?:\.\d+)?)s)?$")
_SECONDS_RE = re.compile(r"^\d+(?:\.\d+)?s?$")


def convert_time_token_to_seconds(token: str) -> float:
    token = token.strip().lower()
    if not token:
        raise ValueError("Empty time token")

    if ":" in token:
        parts = token.split(":")
        if len(parts) == 2:
            hours_text = "0"
            minutes_text, seconds_text = parts
        elif len(parts) == 3:
            hours_text, minutes_text, seconds_text = parts
        else:
            raise ValueError(f"Invalid time token: {token}")
        if not (hours_text.isdigit() and minutes_text.isdigit()):
            raise ValueError(f"Invalid time token: {token}")
        seconds_val = _parse_decimal_seconds(seconds_text)
        return _round_seconds(int(hours_text) * 3600 + int(minutes_text) * 60 + seconds_val)

    if _SECONDS_RE.match(token):
        return _round_seconds(_parse_decimal_seconds(token.rstrip("s")))

    match = _HMS_RE.match(token)
    if match and any(match.groups()):
        hours_val = int(match.group(1) or 0)
        minutes_val = int(match.group(2) or 0)
        seconds_val = float(match.group(3) or 0)
        return _round_seconds(hours_val * 3600 + minutes_val * 60 + seconds_val)

    raise ValueError(f"Invalid time token: {token}")


def parse_clock(value: str) -> float | None:
    """Parse an ffmpeg ``HH:MM:SS[.ff]`` timestamp, or return None."""
    parts = [part.strip() for part in value.strip().split(":")]
    if len(parts) != 3:
        return None
    # ffmpeg prints negative times such as -00:00:01.20 before the first frame.
    if any(part.startswith("-") for part in parts):
        return None
    try:
        hours, minutes, seconds = (float(part) for part in parts)
    except ValueError:
        return None
    return hours * 3600 + minutes * 60 + seconds


def format_seconds(value: float) -> str:
    if value != value:
        return "0"
    text = f"{_round_seconds(value):.3f}"
    text = text.rstrip("0").rstrip(".")
    return text or "0"


def format_clock(value: float) -> str:
    total = max(0, int(value))
    hours, remainder = divmod(total, 3600)
    minutes, seconds = divmod(remainder, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{seconds:02d}"
    return f"{minutes:02d}:{seconds:02d}"


def _parse_decimal_seconds(value: str) -> float:
    try:
        return float(Decimal(value))
    except (InvalidOperation, ValueError) as exc:
        raise ValueError(f"Invalid time token: {value}") from exc


def _round_seconds(value: float) -> float:
    return round(value, 3)
