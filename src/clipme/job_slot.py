from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Iterator

from .errors import LockFailure, StateConflict

logger = logging.getLogger(__name__)

LOCK_TIMEOUT = 5.0


class PipelineState(Enum):
    IDLE = "idle"
    PHASE1_RUNNING = "phase1_running"
    PHASE1_DONE = "phase1_done"
    PHASE2_RUNNING = "phase2_running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATES = {PipelineState.SUCCEEDED, PipelineState.FAILED, PipelineState.CANCELLED}


@dataclass(frozen=True)
class CancelTarget:
    job_id: int
    pid: int | None
    output_path: Path | None
    reencode: bool
    cancel_event: threading.Event


class JobSlot:
    """Process-wide record of the one job allowed to run at a time.

    The pipeline writes it, cancellation reads and clears it. Every access
    goes through one lock; failing to get that lock is a ``LockFailure``.
    """

    def __init__(self, output_dir: Path | None = None) -> None:
        self._lock = threading.Lock()
        self._job_id: int | None = None
        self._pid: int | None = None
        self._output_path: Path | None = None
        self._reencode = False
        self._cancel_event: threading.Event | None = None
        self._state = PipelineState.IDLE
        self._output_dir = output_dir

    @contextmanager
    def _locked(self) -> Iterator[None]:
        if not self._lock.acquire(timeout=LOCK_TIMEOUT):
            raise LockFailure("Failed to lock shared job state")
        try:
            yield
        finally:
            self._lock.release()

    @property
    def state(self) -> PipelineState:
        with self._locked():
            return self._state

    @property
    def active_job(self) -> int | None:
        with self._locked():
            return self._job_id

    @property
    def pid(self) -> int | None:
        with self._locked():
            return self._pid

    @property
    def output_path(self) -> Path | None:
        with self._locked():
            return self._output_path

    @property
    def output_dir(self) -> Path | None:
        with self._locked():
            return self._output_dir

    @output_dir.setter
    def output_dir(self, value: Path | None) -> None:
        with self._locked():
            self._output_dir = value

    def claim(self, job_id: int) -> threading.Event:
        with self._locked():
            if self._job_id is not None:
                raise StateConflict(
                    f"Job {self._job_id} is still running; cancel it before starting another"
                )
            self._job_id = job_id
            self._pid = None
            self._output_path = None
            self._reencode = False
            self._cancel_event = threading.Event()
            self._state = PipelineState.PHASE1_RUNNING
            return self._cancel_event

    def record_output(
        self,
        cancel_event: threading.Event,
        output_path: Path,
        reencode: bool,
    ) -> None:
        with self._locked():
            if cancel_event is not self._cancel_event:
                return
            self._output_path = output_path
            self._reencode = reencode

    def transition(self, cancel_event: threading.Event, state: PipelineState) -> None:
        with self._locked():
            if cancel_event is not self._cancel_event:
                return
            logger.debug("Job %s: %s -> %s", self._job_id, self._state.value, state.value)
            self._state = state

    def register_process(self, pid: int, cancel_event: threading.Event) -> bool:
        """Record ``pid`` as the active process.

        Returns False when the owning job was cancelled before the process
        could be registered, in which case the caller must kill it.
        """
        with self._locked():
            if cancel_event.is_set() or cancel_event is not self._cancel_event:
                return False
            self._pid = pid
            return True

    def clear_process(self, pid: int) -> None:
        with self._locked():
            if self._pid == pid:
                self._pid = None

    def release(self, cancel_event: threading.Event, state: PipelineState) -> bool:
        """Free the slot for the job that claimed ``cancel_event``.

        Returns False when cancellation already took the claim. The slot is
        then left alone: it is either empty and marked CANCELLED, or held by a
        newer job, which may reuse the same job id.
        """
        with self._locked():
            if cancel_event is not self._cancel_event:
                return False
            self._reset()
            self._state = state
            return True

    def take_for_cancel(self) -> CancelTarget | None:
        with self._locked():
            if self._job_id is None or self._cancel_event is None:
                return None
            target = CancelTarget(
                job_id=self._job_id,
                pid=self._pid,
                output_path=self._output_path,
                reencode=self._reencode,
                cancel_event=self._cancel_event,
            )
            target.cancel_event.set()
            self._reset()
            self._state = PipelineState.CANCELLED
            return target

    def _reset(self) -> None:
        self._job_id = None
        self._pid = None
        self._output_path = None
        self._reencode = False
        self._cancel_event = None
