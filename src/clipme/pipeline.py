from __future__ import annotations

import logging
import os
import sys
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from .cleanup import remove_artifacts, remove_quietly, temp_path_for
from .errors import ClipError, JobCancelled, Phase
from .job_slot import JobSlot, PipelineState
from .naming import build_output_name
from .paths import ToolPaths, default_output_dir
from .process import kill_pid, run_process
from .progress import (
    PROGRESS_TEMPLATE,
    ProgressAggregator,
    ProgressCallback,
    is_ffmpeg_status_line,
    parse_ffmpeg_line,
    parse_template_line,
)
from .quality import ContainerFormat, QualityPlan, QualityTier, resolve_plan
from .timeparse import format_seconds

logger = logging.getLogger(__name__)

CONCURRENT_FRAGMENTS = 8


@dataclass(frozen=True)
class ClipRequest:
    source: str
    title: str
    start: float
    end: float
    quality: QualityTier = QualityTier.BEST
    container: ContainerFormat = ContainerFormat.MP4
    job_id: int = 0

    def __post_init__(self) -> None:
        if self.start < 0:
            raise ValueError("Clip start must be non-negative")
        if self.end <= self.start:
            raise ValueError("Clip end must be greater than start")

    @property
    def duration(self) -> float:
        return self.end - self.start


@dataclass(frozen=True)
class EncoderProfile:
    video: list[str]
    audio: list[str]

    def args(self) -> list[str]:
        return [*self.video, *self.audio]


TRANSCODE_PROFILES = {
    "darwin": EncoderProfile(
        video=["-c:v", "hevc_videotoolbox", "-tag:v", "hvc1", "-b:v", "12M"],
        audio=["-c:a", "aac"],
    ),
    "default": EncoderProfile(
        video=["-c:v", "libx265", "-crf", "23", "-preset", "medium", "-tag:v", "hvc1"],
        audio=["-c:a", "aac"],
    ),
}

LOCAL_PROFILES = {
    ContainerFormat.WEBM: EncoderProfile(
        video=["-c:v", "libvpx-vp9", "-b:v", "0", "-crf", "30"],
        audio=["-c:a", "libopus"],
    ),
}
DEFAULT_LOCAL_PROFILE = EncoderProfile(
    video=["-c:v", "libx264", "-preset", "fast", "-crf", "23"],
    audio=["-c:a", "aac", "-b:a", "192k"],
)


def transcode_profile(system: str | None = None) -> EncoderProfile:
    system = system or sys.platform
    return TRANSCODE_PROFILES.get(system, TRANSCODE_PROFILES["default"])


TRANSCODE_PROFILE = transcode_profile()


def local_profile(container: ContainerFormat) -> EncoderProfile:
    return LOCAL_PROFILES.get(container, DEFAULT_LOCAL_PROFILE)


def is_local_source(source: str) -> bool:
    return os.path.exists(source)


def build_local_command(
    ffmpeg: list[str],
    request: ClipRequest,
    output_path: Path,
    plan: QualityPlan,
) -> list[str]:
    command = [
        *ffmpeg,
        "-hide_banner",
        "-y",
        "-i",
        request.source,
        "-ss",
        format_seconds(request.start),
        "-t",
        format_seconds(request.duration),
    ]
    if plan.drop_video:
        command.append("-vn")
    elif plan.video_filters:
        command.extend(["-vf", ",".join(plan.video_filters)])
    if not plan.drop_video:
        command.extend(local_profile(request.container).args())
    command.append(str(output_path))
    return command


def build_fetch_command(
    ytdlp: list[str],
    request: ClipRequest,
    download_path: Path,
    plan: QualityPlan,
) -> list[str]:
    section = f"*{format_seconds(request.start)}-{format_seconds(request.end)}"
    return [
        *ytdlp,
        "--download-sections",
        section,
        "-o",
        str(download_path),
        "-f",
        plan.format_selector,
        "--merge-output-format",
        request.container.extension,
        "--newline",
        "--no-playlist",
        "--concurrent-fragments",
        str(CONCURRENT_FRAGMENTS),
        "--progress-template",
        f"download:{PROGRESS_TEMPLATE}",
        request.source,
    ]


def build_transcode_command(
    ffmpeg: list[str],
    source_path: Path,
    output_path: Path,
    profile: EncoderProfile,
) -> list[str]:
    return [
        *ffmpeg,
        "-hide_banner",
        "-y",
        "-i",
        str(source_path),
        *profile.args(),
        str(output_path),
    ]


class ClipPipeline:
    """Acquire one clip at a time, from a local file or a remote URL.

    ``start_clip`` blocks until the job finishes and is meant to run on a
    worker thread; ``cancel_active_job`` may be called from any other thread.
    """

    def __init__(
        self,
        tools: ToolPaths,
        *,
        slot: JobSlot | None = None,
        profile: EncoderProfile | None = None,
        default_output: Path | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._tools = tools
        self._slot = slot or JobSlot()
        self._profile = profile or TRANSCODE_PROFILE
        self._default_output = default_output
        self._clock = clock

    @property
    def state(self) -> PipelineState:
        return self._slot.state

    @property
    def is_active(self) -> bool:
        return self._slot.active_job is not None

    def output_dir(self) -> Path:
        configured = self._slot.output_dir
        if configured is not None:
            return configured
        return self._default_output or default_output_dir()

    def set_output_dir(self, path: Path | None) -> None:
        self._slot.output_dir = path

    def start_clip(
        self,
        request: ClipRequest,
        on_progress: ProgressCallback | None = None,
    ) -> Path:
        cancel_event = self._slot.claim(request.job_id)
        logger.info(
            "Processing clip: %s (%s-%s) quality=%s format=%s id=%s",
            request.source,
            format_seconds(request.start),
            format_seconds(request.end),
            request.quality.value,
            request.container.value,
            request.job_id,
        )
        final_state = PipelineState.FAILED
        try:
            output_path = self._prepare_output_path(request)
            plan = resolve_plan(request.quality)
            if is_local_source(request.source):
                self._slot.record_output(cancel_event, output_path, False)
                self._run_local(request, plan, output_path, cancel_event, on_progress)
            else:
                self._slot.record_output(cancel_event, output_path, plan.requires_reencode)
                self._run_remote(request, plan, output_path, cancel_event, on_progress)
            _raise_if_cancelled(cancel_event)
            final_state = PipelineState.SUCCEEDED
        except JobCancelled:
            final_state = PipelineState.CANCELLED
            logger.info("Clip %s cancelled", request.job_id)
            raise
        except ClipError as exc:
            logger.warning("Clip %s failed: %s", request.job_id, exc)
            raise
        finally:
            still_owned = self._slot.release(cancel_event, final_state)
        if not still_owned:
            # Cancelled after the last process exited; the output is already gone.
            logger.info("Clip %s cancelled", request.job_id)
            raise JobCancelled("Cancelled")
        logger.info("Clip %s written to %s", request.job_id, output_path)
        return output_path

    def cancel_active_job(self) -> None:
        target = self._slot.take_for_cancel()
        if target is None:
            logger.debug("No active job to cancel")
            return
        logger.info("Cancelling job %s", target.job_id)
        if target.pid is not None:
            kill_pid(target.pid)
        if target.output_path is not None:
            remove_artifacts(target.output_path, target.reencode)

    def _prepare_output_path(self, request: ClipRequest) -> Path:
        output_dir = self.output_dir()
        try:
            output_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise ClipError(f"Failed to create output directory {output_dir}: {exc}") from exc
        name = build_output_name(request.title, request.container.extension, int(self._clock()))
        return output_dir / name

    def _run_local(
        self,
        request: ClipRequest,
        plan: QualityPlan,
        output_path: Path,
        cancel_event: threading.Event,
        on_progress: ProgressCallback | None,
    ) -> None:
        aggregator = ProgressAggregator(request.job_id, 1, on_progress)
        aggregator.start("Processing", "Starting")
        command = build_local_command(self._tools.ffmpeg, request, output_path, plan)
        run_process(
            command,
            phase=Phase.ENCODE,
            slot=self._slot,
            cancel_event=cancel_event,
            on_stderr=self._ffmpeg_listener(aggregator, request.duration, 1),
        )
        _raise_if_cancelled(cancel_event)
        self._slot.transition(cancel_event, PipelineState.PHASE1_DONE)
        aggregator.mark_phase_done(1)

    def _run_remote(
        self,
        request: ClipRequest,
        plan: QualityPlan,
        output_path: Path,
        cancel_event: threading.Event,
        on_progress: ProgressCallback | None,
    ) -> None:
        reencode = plan.requires_reencode
        aggregator = ProgressAggregator(request.job_id, 2 if reencode else 1, on_progress)
        download_path = temp_path_for(output_path) if reencode else output_path

        def on_stdout(line: str) -> None:
            record = parse_template_line(line)
            if record is not None:
                aggregator.report(record, 1)

        command = build_fetch_command(self._tools.ytdlp, request, download_path, plan)
        run_process(
            command,
            phase=Phase.FETCH,
            slot=self._slot,
            cancel_event=cancel_event,
            on_stdout=on_stdout,
            on_stderr=self._ffmpeg_listener(aggregator, request.duration, 1),
        )
        _raise_if_cancelled(cancel_event)
        self._slot.transition(cancel_event, PipelineState.PHASE1_DONE)
        aggregator.mark_phase_done(1)
        if not reencode:
            return

        _raise_if_cancelled(cancel_event)
        self._slot.transition(cancel_event, PipelineState.PHASE2_RUNNING)
        command = build_transcode_command(
            self._tools.ffmpeg, download_path, output_path, self._profile
        )
        try:
            run_process(
                command,
                phase=Phase.ENCODE,
                slot=self._slot,
                cancel_event=cancel_event,
                on_stderr=self._ffmpeg_listener(aggregator, request.duration, 2),
            )
        finally:
            remove_quietly(download_path)
        _raise_if_cancelled(cancel_event)
        aggregator.mark_phase_done(2)

    @staticmethod
    def _ffmpeg_listener(
        aggregator: ProgressAggregator,
        duration: float,
        phase: int,
    ) -> Callable[[str], None]:
        def on_line(line: str) -> None:
            if not is_ffmpeg_status_line(line):
                return
            record = parse_ffmpeg_line(line, duration)
            if record is not None:
                aggregator.report(record, phase)

        return on_line


def _raise_if_cancelled(cancel_event: threading.Event) -> None:
    if cancel_event.is_set():
        raise JobCancelled("Cancelled")
