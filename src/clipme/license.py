from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Callable

import httpx

from .errors import LicenseError
from .paths import license_path

logger = logging.getLogger(__name__)

Poster = Callable[[str, dict[str, str]], dict[str, Any]]

VERIFY_URL = "https://api.gumroad.com/v2/licenses/verify"
PRODUCT_ID = "VkMvNrW6QMqbIgvlt4L6xw=="


@dataclass(frozen=True)
class LicenseInfo:
    is_valid: bool = False
    is_pro: bool = False
    license_key: str | None = None
    email: str | None = None


def verify_license(
    license_key: str,
    poster: Poster | None = None,
    path: Path | None = None,
) -> LicenseInfo:
    key = license_key.strip()
    if not key:
        raise LicenseError("Missing license key")
    poster = poster or _http_post
    try:
        payload = poster(VERIFY_URL, {"product_id": PRODUCT_ID, "license_key": key})
    except httpx.HTTPError as exc:
        raise LicenseError(f"Failed to verify license: {exc}") from exc

    if not payload.get("success"):
        message = payload.get("message")
        raise LicenseError(message if isinstance(message, str) else "Invalid license key")

    purchase = payload.get("purchase")
    if not isinstance(purchase, dict):
        purchase = {}
    refunded = purchase.get("refunded") is True
    ended = isinstance(purchase.get("subscription_ended_at"), str)
    cancelled = isinstance(purchase.get("subscription_cancelled_at"), str) and ended
    is_valid = not refunded and not cancelled
    email = purchase.get("email")
    info = LicenseInfo(
        is_valid=is_valid,
        is_pro=is_valid,
        license_key=key,
        email=email if isinstance(email, str) else None,
    )
    if is_valid:
        _store_license(info, path or license_path())
    logger.info("License verified (valid=%s)", is_valid)
    return info


def get_license_status(path: Path | None = None) -> LicenseInfo:
    path = path or license_path()
    if not path.exists():
        return LicenseInfo()
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise LicenseError(f"Failed to read license: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise LicenseError(f"Failed to parse license: {path}") from exc
    if not isinstance(data, dict):
        raise LicenseError(f"Failed to parse license: {path}")
    return LicenseInfo(
        is_valid=data.get("is_valid") is True,
        is_pro=data.get("is_pro") is True,
        license_key=data.get("license_key") if isinstance(data.get("license_key"), str) else None,
        email=data.get("email") if isinstance(data.get("email"), str) else None,
    )


def clear_license(path: Path | None = None) -> None:
    path = path or license_path()
    try:
        path.unlink()
    except FileNotFoundError:
        return
    except OSError as exc:
        raise LicenseError(f"Failed to remove license: {exc}") from exc


def _store_license(info: LicenseInfo, path: Path) -> None:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(asdict(info)), encoding="utf-8")
    except OSError as exc:
        raise LicenseError(f"Failed to save license: {exc}") from exc


def _http_post(url: str, form: dict[str, str]) -> dict[str, Any]:
    with httpx.Client(follow_redirects=True, timeout=10.0) as client:
        response = client.post(url, data=form)
        try:
            data = response.json()
        except ValueError as exc:
            raise LicenseError("Failed to parse response") from exc
    if not isinstance(data, dict):
        raise LicenseError("Failed to parse response")
    return data
