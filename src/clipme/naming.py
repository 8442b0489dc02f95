from __future__ import annotations

_KEEP_CHARS = {"-", "_", " "}


def sanitize_title(title: str) -> str:
    cleaned = "".join(
        char if char.isalnum() or char in _KEEP_CHARS else "_" for char in title
    )
    cleaned = cleaned.strip()
    return cleaned or "clip"


def build_output_name(title: str, extension: str, timestamp: int) -> str:
    ext = extension.lower().lstrip(".") or "mp4"
    return f"{sanitize_title(title)}_clip_{timestamp}.{ext}"
