from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

DEFAULT_LOCAL_HEIGHT = 1080


class QualityTier(Enum):
    BEST = "Best"
    UHD_8K = "8K"
    UHD_4K = "4K"
    QHD = "1440p"
    FHD = "1080p"
    HD = "720p"
    SD = "480p"
    AUDIO_ONLY = "Audio Only"

    @classmethod
    def parse(cls, value: str) -> QualityTier:
        key = value.strip().casefold().replace(" ", "")
        if key in {"audio", "audioonly"}:
            return cls.AUDIO_ONLY
        for tier in cls:
            if tier.value.casefold().replace(" ", "") == key:
                return tier
        raise ValueError(f"Unknown quality: {value}")


class ContainerFormat(Enum):
    MP4 = "mp4"
    MKV = "mkv"
    MOV = "mov"
    WEBM = "webm"
    AVI = "avi"

    @classmethod
    def parse(cls, value: str | None) -> ContainerFormat:
        key = (value or "").strip().lower().lstrip(".")
        if not key:
            return cls.MP4
        try:
            return cls(key)
        except ValueError:
            raise ValueError(f"Unsupported output format: {value}") from None

    @property
    def extension(self) -> str:
        return self.value


# Sized tiers, highest first. Thresholds are inclusive.
_TIER_HEIGHTS: list[tuple[QualityTier, int]] = [
    (QualityTier.UHD_8K, 4320),
    (QualityTier.UHD_4K, 2160),
    (QualityTier.QHD, 1440),
    (QualityTier.FHD, 1080),
    (QualityTier.HD, 720),
    (QualityTier.SD, 480),
]

_SELECTORS = {
    QualityTier.UHD_8K: "bestvideo[height>=4320]+bestaudio/bestvideo[height>=2160]+bestaudio/best",
    QualityTier.UHD_4K: "bestvideo[height=2160]+bestaudio/bestvideo[height>=2160]+bestaudio/best",
    QualityTier.QHD: "bestvideo[height=1440]+bestaudio/bestvideo[height<=1440]+bestaudio/best",
    QualityTier.AUDIO_ONLY: "bestaudio/best",
    QualityTier.BEST: "bestvideo+bestaudio/best",
}

# Fetched streams for these tiers are usually VP9/AV1 and get converted to HEVC.
_REENCODE_TIERS = {
    QualityTier.BEST,
    QualityTier.UHD_8K,
    QualityTier.UHD_4K,
    QualityTier.QHD,
}


@dataclass(frozen=True)
class QualityPlan:
    tier: QualityTier
    format_selector: str
    requires_reencode: bool
    video_filters: list[str]
    drop_video: bool


def tier_height(tier: QualityTier) -> int | None:
    for candidate, height in _TIER_HEIGHTS:
        if candidate is tier:
            return height
    return None


def resolve_qualities(max_height: int) -> list[QualityTier]:
    tiers = [QualityTier.BEST]
    height = max(0, int(max_height or 0))
    for tier, threshold in _TIER_HEIGHTS:
        if height >= threshold:
            tiers.append(tier)
    tiers.append(QualityTier.AUDIO_ONLY)
    return tiers


def format_selector(tier: QualityTier) -> str:
    selector = _SELECTORS.get(tier)
    if selector is not None:
        return selector
    height = tier_height(tier)
    return (
        f"bestvideo[height={height}][vcodec^=avc]+bestaudio[ext=m4a]"
        f"/bestvideo[height={height}]+bestaudio"
        f"/best[height<={height}]"
    )


def requires_reencode(tier: QualityTier) -> bool:
    return tier in _REENCODE_TIERS


def local_video_filters(tier: QualityTier) -> list[str]:
    height = tier_height(tier)
    if height is None:
        return []
    return [f"scale=-2:{height}"]


def drops_video(tier: QualityTier) -> bool:
    return tier is QualityTier.AUDIO_ONLY


def resolve_plan(tier: QualityTier) -> QualityPlan:
    return QualityPlan(
        tier=tier,
        format_selector=format_selector(tier),
        requires_reencode=requires_reencode(tier),
        video_filters=local_video_filters(tier),
        drop_video=drops_video(tier),
    )
