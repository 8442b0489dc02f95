from __future__ import annotations

import re
import threading
from dataclasses import dataclass, replace
from typing import BinaryIO, Callable, Iterator

from .timeparse import parse_clock

ProgressCallback = Callable[["ProgressRecord"], None]

TEMPLATE_PREFIX = "PROGRESS|"
PROGRESS_TEMPLATE = (
    "PROGRESS|%(progress._percent_str)s|%(progress._speed_str)s"
    "|%(progress._eta_str)s|%(progress._total_bytes_estimate_str)s"
)
RATE_PLACEHOLDER = "Calculating..."
ETA_PLACEHOLDER = "--:--"

_DELIMITER_RE = re.compile(rb"[\r\n]")
_CHUNK_SIZE = 4096


@dataclass(frozen=True)
class ProgressRecord:
    percent: float
    rate: str
    eta: str
    downloaded: str
    total: str
    job_id: int = 0


def iter_lines(stream: BinaryIO) -> Iterator[str]:
    """Yield non-empty lines split on either ``\\r`` or ``\\n``.

    ffmpeg rewrites its status line with bare carriage returns while yt-dlp
    writes one record per line, so both count as terminators. Whatever is
    buffered when the stream closes is yielded as a final line.
    """
    read = getattr(stream, "read1", stream.read)
    buffer = b""
    while True:
        chunk = read(_CHUNK_SIZE)
        if not chunk:
            break
        buffer += chunk
        *segments, buffer = _DELIMITER_RE.split(buffer)
        for segment in segments:
            line = _decode(segment)
            if line:
                yield line
    line = _decode(buffer)
    if line:
        yield line


def parse_template_line(line: str, job_id: int = 0) -> ProgressRecord | None:
    """Decode a ``PROGRESS|percent|rate|eta|total`` record from yt-dlp.

    Any other line yields None; ``errors.ParseFailure`` is never raised.
    """
    if not line.startswith(TEMPLATE_PREFIX):
        return None
    parts = line.split("|")
    if len(parts) < 5:
        return None

    percent = _clamp_percent(_parse_float(parts[1].strip().rstrip("%")))
    rate = parts[2].strip()
    eta = parts[3].strip()
    total = parts[4].strip()
    return ProgressRecord(
        percent=percent,
        rate=RATE_PLACEHOLDER if rate == "NA" else rate,
        eta=ETA_PLACEHOLDER if eta == "NA" else eta,
        downloaded=f"{format_percent(percent)}%",
        total=total,
        job_id=job_id,
    )


def parse_ffmpeg_line(
    line: str,
    total_duration: float,
    job_id: int = 0,
) -> ProgressRecord | None:
    """Decode ``time=`` and ``bitrate=`` tokens from an ffmpeg status line.

    Returns None, not ``errors.ParseFailure``, when no usable time is found.
    """
    if total_duration <= 0:
        return None
    current_time: float | None = None
    bitrate = "0 kbits/s"
    for token in line.split():
        if token.startswith("time="):
            current_time = parse_clock(token[len("time=") :])
        elif token.startswith("bitrate="):
            bitrate = token[len("bitrate=") :]
    if current_time is None:
        return None

    percent = _clamp_percent(current_time / total_duration * 100)
    return ProgressRecord(
        percent=percent,
        rate=bitrate,
        eta="Encoding",
        downloaded=f"{current_time:.1f}s",
        total=f"{total_duration:.1f}s",
        job_id=job_id,
    )


def is_ffmpeg_status_line(line: str) -> bool:
    return "time=" in line and "bitrate=" in line


def format_percent(value: float) -> str:
    text = f"{value:.1f}"
    if text.endswith(".0"):
        text = text[:-2]
    return text


class ProgressAggregator:
    """Map per-phase progress onto one 0-100 scale for a job.

    Two-phase jobs spend [0, 50) on the fetch and [50, 100] on the re-encode.
    Records may arrive from several listener threads, so the reported value
    is a high-water mark. Records for a phase already marked done are
    dropped, and emission happens under the lock, so nothing is reported
    after a phase marker that belongs before it.
    """

    def __init__(
        self,
        job_id: int,
        phases: int,
        on_progress: ProgressCallback | None = None,
    ) -> None:
        if phases not in {1, 2}:
            raise ValueError("A job has one or two phases")
        self.job_id = job_id
        self.phases = phases
        self._on_progress = on_progress
        # Reentrant so a callback may read ``percent``.
        self._lock = threading.RLock()
        self._high_water = 0.0
        self._completed_phase = 0

    @property
    def percent(self) -> float:
        with self._lock:
            return self._high_water

    def scale(self, percent: float, phase: int) -> float:
        if self.phases == 1:
            return percent
        if phase == 1:
            return min(percent * 0.5, 50.0)
        return 50.0 + percent * 0.5

    def report(self, record: ProgressRecord, phase: int) -> None:
        scaled = self.scale(record.percent, phase)
        with self._lock:
            if phase <= self._completed_phase:
                return
            if scaled < self._high_water:
                scaled = self._high_water
            self._high_water = scaled
            self._emit(replace(record, percent=scaled, job_id=self.job_id))

    def start(self, rate: str, eta: str) -> None:
        self._emit(
            ProgressRecord(
                percent=0.0,
                rate=rate,
                eta=eta,
                downloaded="0%",
                total="",
                job_id=self.job_id,
            )
        )

    def mark_phase_done(self, phase: int) -> None:
        if phase >= self.phases:
            record = ProgressRecord(
                percent=100.0,
                rate="Done",
                eta="00:00",
                downloaded="100%",
                total="",
                job_id=self.job_id,
            )
        else:
            record = ProgressRecord(
                percent=50.0,
                rate="Encoding",
                eta="Transcoding",
                downloaded="50%",
                total="",
                job_id=self.job_id,
            )
        with self._lock:
            self._completed_phase = max(self._completed_phase, phase)
            self._high_water = max(self._high_water, record.percent)
            self._emit(record)

    def _emit(self, record: ProgressRecord) -> None:
        if self._on_progress is not None:
            self._on_progress(record)


def _decode(segment: bytes) -> str:
    return segment.decode("utf-8", errors="replace").strip()


def _parse_float(value: str) -> float:
    try:
        number = float(value)
    except ValueError:
        return 0.0
    if number != number:
        return 0.0
    return number


def _clamp_percent(percent: float) -> float:
    return max(0.0, min(100.0, percent))
