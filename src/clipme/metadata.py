from __future__ import annotations

import json
import logging
import os
import subprocess
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

from .errors import ProbeError
from .paths import ToolPaths
from .quality import DEFAULT_LOCAL_HEIGHT, QualityTier, resolve_qualities

logger = logging.getLogger(__name__)

Runner = Callable[[list[str]], subprocess.CompletedProcess[str]]

PREVIEW_PREFIX = "clipme_preview_"


@dataclass(frozen=True)
class VideoMetadata:
    title: str
    duration: float
    max_height: int
    qualities: list[QualityTier]
    preview_url: str | None


def probe_source(
    source: str,
    tools: ToolPaths,
    runner: Runner | None = None,
) -> VideoMetadata:
    runner = runner or _run_subprocess
    if os.path.isfile(source):
        return _probe_local(source, tools, runner)
    return _probe_remote(source, tools, runner)


def is_youtube_url(url: str) -> bool:
    return "youtube.com" in url or "youtu.be" in url


def _probe_local(source: str, tools: ToolPaths, runner: Runner) -> VideoMetadata:
    logger.info("Probing local file: %s", source)
    command = [
        *tools.ffprobe,
        "-v",
        "quiet",
        "-print_format",
        "json",
        "-show_format",
        "-show_streams",
        "-select_streams",
        "v:0",
        source,
    ]
    completed = _run(command, runner)
    if completed.returncode != 0:
        raise ProbeError("Failed to read video file metadata")
    data = _load_json(completed.stdout or "", "ffprobe")

    fmt = data.get("format") if isinstance(data.get("format"), dict) else {}
    streams = data.get("streams") if isinstance(data.get("streams"), list) else []
    stream = streams[0] if streams and isinstance(streams[0], dict) else {}
    height = _as_height(stream.get("height")) or DEFAULT_LOCAL_HEIGHT
    return VideoMetadata(
        title=Path(source).name,
        duration=_as_float(fmt.get("duration")),
        max_height=height,
        qualities=resolve_qualities(height),
        preview_url=source,
    )


def _probe_remote(url: str, tools: ToolPaths, runner: Runner) -> VideoMetadata:
    logger.info("Fetching metadata for: %s", url)
    downloads_preview = not is_youtube_url(url)
    if downloads_preview:
        # Non-YouTube sites rarely expose a playable direct URL, so fetch a local copy.
        template = Path(tempfile.gettempdir()) / f"{PREVIEW_PREFIX}%(id)s.%(ext)s"
        command = [
            *tools.ytdlp,
            "--print-json",
            "--no-warnings",
            "-o",
            str(template),
            "--force-overwrites",
            url,
        ]
    else:
        command = [*tools.ytdlp, "--dump-json", "--flat-playlist", "--no-warnings", url]

    completed = _run(command, runner)
    if completed.returncode != 0:
        raise ProbeError(f"yt-dlp error: {_summarize_error(completed)}")
    line = _last_non_empty_line(completed.stdout or "")
    if line is None:
        raise ProbeError("yt-dlp returned no metadata")
    data = _load_json(line, "yt-dlp")

    max_height = _max_format_height(data)
    logger.debug("Detected max video height: %sp", max_height)
    preview_url = None
    if downloads_preview:
        preview_url = _as_str(data.get("filename"))
    if preview_url is None:
        preview_url = _last_http_format_url(data) or _as_str(data.get("url"))
    return VideoMetadata(
        title=_as_str(data.get("title")) or "Unknown Title",
        duration=_as_float(data.get("duration")),
        max_height=max_height,
        qualities=resolve_qualities(max_height),
        preview_url=preview_url,
    )


def _max_format_height(data: dict[str, Any]) -> int:
    max_height = 0
    formats = data.get("formats")
    if isinstance(formats, list):
        for item in formats:
            if isinstance(item, dict):
                max_height = max(max_height, _as_height(item.get("height")))
    if max_height == 0:
        max_height = _as_height(data.get("height")) or DEFAULT_LOCAL_HEIGHT
    return max_height


def _last_http_format_url(data: dict[str, Any]) -> str | None:
    formats = data.get("formats")
    if not isinstance(formats, list):
        return None
    for item in reversed(formats):
        if not isinstance(item, dict):
            continue
        url = _as_str(item.get("url"))
        if url and url.startswith("http"):
            return url
    return None


def _run(command: list[str], runner: Runner) -> subprocess.CompletedProcess[str]:
    try:
        return runner(command)
    except OSError as exc:
        raise ProbeError(f"Failed to execute {command[0]}: {exc}") from exc


def _run_subprocess(command: list[str]) -> subprocess.CompletedProcess[str]:
    return subprocess.run(command, check=False, capture_output=True, text=True)


def _load_json(text: str, tool: str) -> dict[str, Any]:
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ProbeError(f"Failed to parse {tool} output") from exc
    if not isinstance(data, dict):
        raise ProbeError(f"Unexpected {tool} output")
    return data


def _summarize_error(completed: subprocess.CompletedProcess[str]) -> str:
    stderr = completed.stderr or ""
    stdout = completed.stdout or ""
    message = stderr.strip() or stdout.strip()
    if not message:
        return f"exit code {completed.returncode}"
    return message.splitlines()[-1]


def _last_non_empty_line(text: str) -> str | None:
    for line in reversed(text.splitlines()):
        if line.strip():
            return line.strip()
    return None


def _as_str(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _as_float(value: Any) -> float:
    if isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return 0.0
    return 0.0


def _as_height(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    if isinstance(value, int) and value > 0:
        return value
    if isinstance(value, float) and value > 0:
        return int(value)
    return 0
