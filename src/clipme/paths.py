from __future__ import annotations

import platform
import shutil
import sys
from dataclasses import dataclass
from pathlib import Path

from platformdirs import user_config_path, user_downloads_path

APP_NAME = "clipme"
OUTPUT_SUBFOLDER = "Clipme"

_TARGET_TRIPLES = {
    ("darwin", "arm64"): "aarch64-apple-darwin",
    ("darwin", "x86_64"): "x86_64-apple-darwin",
    ("win32", "amd64"): "x86_64-pc-windows-msvc",
    ("win32", "x86_64"): "x86_64-pc-windows-msvc",
    ("linux", "x86_64"): "x86_64-unknown-linux-gnu",
    ("linux", "aarch64"): "aarch64-unknown-linux-gnu",
    ("linux", "arm64"): "aarch64-unknown-linux-gnu",
}


@dataclass(frozen=True)
class ToolPaths:
    ytdlp: list[str]
    ffmpeg: list[str]
    ffprobe: list[str]


def config_root() -> Path:
    root = user_config_path(APP_NAME)
    root.mkdir(parents=True, exist_ok=True)
    return root


def config_path() -> Path:
    return config_root() / "config.json"


def license_path() -> Path:
    return config_root() / "license.json"


def default_output_dir() -> Path:
    return user_downloads_path() / OUTPUT_SUBFOLDER


def target_triple(system: str | None = None, machine: str | None = None) -> str | None:
    system = system or sys.platform
    machine = (machine or platform.machine()).lower()
    family = "linux" if system.startswith("linux") else system
    return _TARGET_TRIPLES.get((family, machine))


def sidecar_name(name: str, triple: str, system: str | None = None) -> str:
    system = system or sys.platform
    ext = ".exe" if system == "win32" else ""
    return f"{name}-{triple}{ext}"


def resolve_tool(name: str, resource_dir: Path | None = None) -> list[str]:
    triple = target_triple()
    if resource_dir is not None and triple is not None:
        bundled = resource_dir / "binaries" / sidecar_name(name, triple)
        if bundled.is_file():
            return [str(bundled)]
    found = shutil.which(name)
    return [found or name]


def resolve_tools(resource_dir: Path | None = None) -> ToolPaths:
    return ToolPaths(
        ytdlp=resolve_tool("yt-dlp", resource_dir),
        ffmpeg=resolve_tool("ffmpeg", resource_dir),
        ffprobe=resolve_tool("ffprobe", resource_dir),
    )
