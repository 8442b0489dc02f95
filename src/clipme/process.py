from __future__ import annotations

import logging
import os
import shlex
import signal
import subprocess
import threading
from collections import deque
from typing import BinaryIO, Callable

from .errors import ExecutionFailure, JobCancelled, Phase, SpawnFailure
from .job_slot import JobSlot
from .progress import iter_lines

logger = logging.getLogger(__name__)

LineHandler = Callable[[str], None]

_DIAGNOSTIC_LINES = 20
_LISTENER_JOIN_TIMEOUT = 1.0


def run_process(
    command: list[str],
    *,
    phase: Phase,
    slot: JobSlot,
    cancel_event: threading.Event,
    on_stdout: LineHandler | None = None,
    on_stderr: LineHandler | None = None,
) -> None:
    """Run one external tool to completion as the job's active process.

    stdout and stderr are each drained by their own listener thread. Raises
    ``SpawnFailure`` if the tool cannot start, ``JobCancelled`` if the job was
    cancelled while it ran and ``ExecutionFailure`` on a non-zero exit.
    """
    logger.info("Running %s phase: %s", phase.value, shlex.join(command))
    try:
        process = subprocess.Popen(
            command,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE if on_stdout is not None else subprocess.DEVNULL,
            stderr=subprocess.PIPE,
            **_spawn_options(),
        )
    except OSError as exc:
        raise SpawnFailure(command[0], str(exc)) from exc

    if not slot.register_process(process.pid, cancel_event):
        kill_pid(process.pid)

    diagnostics: deque[str] = deque(maxlen=_DIAGNOSTIC_LINES)

    def handle_stderr(line: str) -> None:
        diagnostics.append(line)
        if on_stderr is not None:
            on_stderr(line)

    listeners: list[threading.Thread] = []
    if process.stdout is not None and on_stdout is not None:
        listeners.append(_start_listener(process.stdout, on_stdout))
    if process.stderr is not None:
        listeners.append(_start_listener(process.stderr, handle_stderr))

    try:
        returncode = process.wait()
    finally:
        slot.clear_process(process.pid)
    for listener in listeners:
        listener.join(timeout=_LISTENER_JOIN_TIMEOUT)

    logger.debug("%s exited with %s", command[0], returncode)
    if cancel_event.is_set():
        raise JobCancelled("Cancelled")
    if returncode != 0:
        raise ExecutionFailure(phase, returncode, "\n".join(diagnostics))


def kill_pid(pid: int) -> None:
    logger.info("Killing process %s", pid)
    if os.name == "nt":
        subprocess.run(
            ["taskkill", "/F", "/T", "/PID", str(pid)],
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            check=False,
        )
        return
    try:
        # Tools run in their own session, so this also reaches yt-dlp's ffmpeg child.
        os.killpg(pid, signal.SIGTERM)
    except ProcessLookupError:
        logger.debug("Process %s already exited", pid)
    except OSError as exc:
        logger.warning("Failed to kill process %s: %s", pid, exc)


def _spawn_options() -> dict[str, object]:
    if os.name == "nt":
        return {"creationflags": getattr(subprocess, "CREATE_NO_WINDOW", 0)}
    return {"start_new_session": True}


def _start_listener(stream: BinaryIO, handler: LineHandler) -> threading.Thread:
    def read_output() -> None:
        with stream:
            for line in iter_lines(stream):
                try:
                    handler(line)
                except Exception:
                    logger.exception("Progress handler failed")

    listener = threading.Thread(target=read_output, daemon=True)
    listener.start()
    return listener
