from __future__ import annotations

import json
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any

from .paths import config_path, license_path
from .quality import ContainerFormat, QualityTier

CONFIG_VERSION = 1

SETTABLE_KEYS = ("output_dir", "output_format", "preferred_quality")


@dataclass
class AppConfig:
    version: int = CONFIG_VERSION
    output_dir: str | None = None
    output_format: str | None = None
    preferred_quality: str | None = None
    onboarding_complete: bool | None = None


def load_config(path: Path | None = None) -> tuple[AppConfig, str | None]:
    path = path or config_path()
    if not path.exists():
        return AppConfig(), None
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as exc:
        return AppConfig(), f"Failed to read config: {path} ({exc})"
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        return AppConfig(), f"Config file is not valid JSON: {path}"
    if not isinstance(data, dict):
        return AppConfig(), f"Config file must be a JSON object: {path}"
    return _parse_config_data(data), None


def save_config(config: AppConfig, path: Path | None = None) -> str | None:
    path = path or config_path()
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        return f"Failed to create config directory: {path.parent} ({exc})"
    payload = _config_to_dict(config)
    try:
        path.write_text(
            json.dumps(payload, ensure_ascii=True, indent=2),
            encoding="utf-8",
        )
    except OSError as exc:
        return f"Failed to write config: {path} ({exc})"
    return None


def update_config(config: AppConfig, key: str, value: str) -> AppConfig:
    """Return a copy of ``config`` with one user-settable key changed."""
    if key not in SETTABLE_KEYS:
        raise ValueError(f"Unknown config key: {key}")
    text = value.strip()
    if not text:
        return replace(config, **{key: None})
    if key == "output_format":
        text = ContainerFormat.parse(text).value
    elif key == "preferred_quality":
        text = QualityTier.parse(text).value
    elif key == "output_dir":
        text = str(Path(text).expanduser())
    return replace(config, **{key: text})


def reset_app_state(
    path: Path | None = None,
    license_file: Path | None = None,
) -> str | None:
    """Forget onboarding and drop any stored license; other settings stay."""
    config, error = load_config(path)
    if error is not None:
        return error
    error = save_config(replace(config, onboarding_complete=None), path)
    if error is not None:
        return error
    license_file = license_file or license_path()
    try:
        license_file.unlink()
    except FileNotFoundError:
        pass
    except OSError as exc:
        return f"Failed to remove license: {license_file} ({exc})"
    return None


def _parse_config_data(data: dict[str, Any]) -> AppConfig:
    return AppConfig(
        version=_as_int(data.get("version")) or CONFIG_VERSION,
        output_dir=_as_str(data.get("output_dir")),
        output_format=_as_str(data.get("output_format")),
        preferred_quality=_as_str(data.get("preferred_quality")),
        onboarding_complete=_as_bool(data.get("onboarding_complete")),
    )


def _config_to_dict(config: AppConfig) -> dict[str, Any]:
    data: dict[str, Any] = {"version": config.version}
    _set_if(data, "output_dir", config.output_dir)
    _set_if(data, "output_format", config.output_format)
    _set_if(data, "preferred_quality", config.preferred_quality)
    _set_if(data, "onboarding_complete", config.onboarding_complete)
    return data


def _set_if(data: dict[str, Any], key: str, value: Any) -> None:
    if value is not None:
        data[key] = value


def _as_str(value: Any) -> str | None:
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return None


def _as_bool(value: Any) -> bool | None:
    if isinstance(value, bool):
        return value
    return None


def _as_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return None
