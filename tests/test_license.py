from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import httpx
import pytest

from clipme.errors import LicenseError
from clipme.license import (
    PRODUCT_ID,
    VERIFY_URL,
    LicenseInfo,
    clear_license,
    get_license_status,
    verify_license,
)


def _poster(payload: dict[str, Any]):
    calls: list[tuple[str, dict[str, str]]] = []

    def poster(url: str, form: dict[str, str]) -> dict[str, Any]:
        calls.append((url, form))
        return payload

    return poster, calls


def test_verify_license_stores_valid_key(tmp_path: Path) -> None:
    path = tmp_path / "license.json"
    poster, calls = _poster(
        {"success": True, "purchase": {"email": "buyer@example.com", "refunded": False}}
    )

    info = verify_license("  KEY-123  ", poster=poster, path=path)

    assert calls == [(VERIFY_URL, {"product_id": PRODUCT_ID, "license_key": "KEY-123"})]
    assert info == LicenseInfo(
        is_valid=True, is_pro=True, license_key="KEY-123", email="buyer@example.com"
    )
    assert json.loads(path.read_text(encoding="utf-8"))["license_key"] == "KEY-123"
    assert get_license_status(path) == info


def test_verify_license_refunded_is_not_stored(tmp_path: Path) -> None:
    path = tmp_path / "license.json"
    poster, _ = _poster({"success": True, "purchase": {"refunded": True}})

    info = verify_license("KEY", poster=poster, path=path)

    assert info.is_valid is False
    assert info.is_pro is False
    assert not path.exists()


def test_verify_license_ended_subscription(tmp_path: Path) -> None:
    purchase = {
        "subscription_cancelled_at": "2024-01-01T00:00:00Z",
        "subscription_ended_at": "2024-02-01T00:00:00Z",
    }
    poster, _ = _poster({"success": True, "purchase": purchase})
    assert verify_license("KEY", poster=poster, path=tmp_path / "l.json").is_valid is False


def test_verify_license_cancelled_but_running_is_valid(tmp_path: Path) -> None:
    poster, _ = _poster(
        {"success": True, "purchase": {"subscription_cancelled_at": "2024-01-01T00:00:00Z"}}
    )
    assert verify_license("KEY", poster=poster, path=tmp_path / "l.json").is_valid is True


def test_verify_license_rejected_by_server(tmp_path: Path) -> None:
    poster, _ = _poster({"success": False, "message": "That license does not exist."})
    with pytest.raises(LicenseError, match="does not exist"):
        verify_license("KEY", poster=poster, path=tmp_path / "l.json")


def test_verify_license_requires_key() -> None:
    with pytest.raises(LicenseError, match="Missing license key"):
        verify_license("   ")


def test_verify_license_network_error(tmp_path: Path) -> None:
    def poster(url: str, form: dict[str, str]) -> dict[str, Any]:
        raise httpx.ConnectError("offline")

    with pytest.raises(LicenseError, match="Failed to verify license"):
        verify_license("KEY", poster=poster, path=tmp_path / "l.json")


def test_license_status_and_clear(tmp_path: Path) -> None:
    path = tmp_path / "license.json"
    assert get_license_status(path) == LicenseInfo()
    path.write_text("not json", encoding="utf-8")
    with pytest.raises(LicenseError):
        get_license_status(path)
    clear_license(path)
    clear_license(path)
    assert not path.exists()
