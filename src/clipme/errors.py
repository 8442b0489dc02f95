from __future__ import annotations

from enum import Enum


class Phase(Enum):
    FETCH = "fetch"
    ENCODE = "encode"


class ClipError(Exception):
    pass


class SpawnFailure(ClipError):
    def __init__(self, executable: str, reason: str) -> None:
        super().__init__(f"Failed to start {executable}: {reason}")
        self.executable = executable
        self.reason = reason


class ExecutionFailure(ClipError):
    def __init__(self, phase: Phase, returncode: int, diagnostics: str = "") -> None:
        label = "Download failed" if phase is Phase.FETCH else "Encoding failed"
        message = f"{label} (exit code {returncode})"
        last_line = _last_line(diagnostics)
        if last_line:
            message = f"{message}: {last_line}"
        super().__init__(message)
        self.phase = phase
        self.returncode = returncode
        self.diagnostics = diagnostics


class ParseFailure(ClipError):
    """Malformed progress output. Parsers drop such lines instead of raising."""


class StateConflict(ClipError):
    pass


class LockFailure(ClipError):
    pass


class JobCancelled(ClipError):
    pass


class ProbeError(ClipError):
    pass


class LicenseError(ClipError):
    pass


def _last_line(text: str) -> str:
    for line in reversed(text.splitlines()):
        if line.strip():
            return line.strip()
    return ""
