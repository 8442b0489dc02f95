"""
Removal of a job's output file and every partial variant left beside it.
"""

from __future__ import annotations

import logging
from pathlib import Path

logger = logging.getLogger(__name__)

PART_SUFFIX = ".part"


def temp_path_for(output_path: Path) -> Path:
    """Intermediate download target for two-phase jobs (clip.mp4 -> clip.temp.mp4)."""
    return output_path.with_name(f"{output_path.stem}.temp{output_path.suffix}")


def artifact_paths(output_path: Path, reencode: bool) -> list[Path]:
    candidates = [
        output_path,
        output_path.with_name(output_path.name + PART_SUFFIX),
    ]
    if reencode:
        temp_path = temp_path_for(output_path)
        candidates.append(temp_path)
        candidates.append(temp_path.with_name(temp_path.name + PART_SUFFIX))
    if output_path.suffix:
        candidates.append(output_path.with_suffix(output_path.suffix + PART_SUFFIX))

    paths: list[Path] = []
    for candidate in candidates:
        if candidate not in paths:
            paths.append(candidate)
    return paths


def remove_artifacts(output_path: Path, reencode: bool) -> list[Path]:
    """Delete every artifact of a job, best-effort.

    Each path is attempted on its own; a missing file or a failed unlink is
    logged and skipped so cleanup never blocks the next job.
    """
    removed: list[Path] = []
    for path in artifact_paths(output_path, reencode):
        try:
            path.unlink()
        except FileNotFoundError:
            continue
        except OSError as exc:
            logger.warning("Failed to delete %s: %s", path, exc)
            continue
        logger.debug("Deleted: %s", path)
        removed.append(path)
    return removed


def remove_quietly(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        return
    except OSError as exc:
        logger.warning("Failed to delete %s: %s", path, exc)
