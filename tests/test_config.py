from __future__ import annotations

import json

import pytest

from clipme.config import AppConfig, load_config, reset_app_state, save_config, update_config


def test_load_config_missing_file(tmp_path) -> None:
    path = tmp_path / "config.json"
    config, error = load_config(path)
    assert error is None
    assert config == AppConfig()


def test_save_and_load_config_roundtrip(tmp_path) -> None:
    path = tmp_path / "nested" / "config.json"
    config = AppConfig(
        output_dir="/tmp/clips",
        output_format="mkv",
        preferred_quality="1080p",
        onboarding_complete=True,
    )
    assert save_config(config, path) is None
    loaded, error = load_config(path)
    assert error is None
    assert loaded == config


def test_save_config_omits_unset_fields(tmp_path) -> None:
    path = tmp_path / "config.json"
    assert save_config(AppConfig(output_format="webm"), path) is None
    assert json.loads(path.read_text(encoding="utf-8")) == {"version": 1, "output_format": "webm"}


def test_load_config_invalid_json(tmp_path) -> None:
    path = tmp_path / "config.json"
    path.write_text("{invalid", encoding="utf-8")
    config, error = load_config(path)
    assert config == AppConfig()
    assert error is not None
    assert "not valid JSON" in error


def test_load_config_ignores_wrong_types(tmp_path) -> None:
    path = tmp_path / "config.json"
    path.write_text(
        json.dumps({"version": "x", "output_dir": 5, "onboarding_complete": "yes"}),
        encoding="utf-8",
    )
    config, error = load_config(path)
    assert error is None
    assert config == AppConfig()


def test_update_config_normalizes_values() -> None:
    config = AppConfig()
    config = update_config(config, "output_format", ".MKV")
    config = update_config(config, "preferred_quality", "audio only")
    assert config.output_format == "mkv"
    assert config.preferred_quality == "Audio Only"
    assert update_config(config, "output_format", "").output_format is None


def test_update_config_empty_value_clears_setting() -> None:
    config = AppConfig(output_dir="/clips", output_format="mkv", preferred_quality="720p")
    for key in ("output_dir", "output_format", "preferred_quality"):
        config = update_config(config, key, "  ")
    assert config == AppConfig()


def test_update_config_rejects_bad_input() -> None:
    with pytest.raises(ValueError, match="Unknown config key"):
        update_config(AppConfig(), "onboarding_complete", "true")
    with pytest.raises(ValueError, match="Unsupported output format"):
        update_config(AppConfig(), "output_format", "flv")
    with pytest.raises(ValueError, match="Unknown quality"):
        update_config(AppConfig(), "preferred_quality", "360p")


def test_reset_app_state_keeps_settings(tmp_path) -> None:
    path = tmp_path / "config.json"
    license_file = tmp_path / "license.json"
    license_file.write_text("{}", encoding="utf-8")
    save_config(AppConfig(output_format="mov", onboarding_complete=True), path)

    assert reset_app_state(path, license_file) is None

    config, _ = load_config(path)
    assert config.onboarding_complete is None
    assert config.output_format == "mov"
    assert not license_file.exists()
    assert reset_app_state(path, license_file) is None
