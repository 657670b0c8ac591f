"""Custom exceptions for the timeline export engine.

Fatal errors derive from ExportError and carry a machine-readable code.
Nothing at this layer is retried: engine failures are assumed to be
deterministic for the same inputs, so every error reports retryable=False.

Non-fatal conditions (probe failures, scratch cleanup failures) are
warning categories instead; they are logged and emitted via ``warnings``
but never abort a job.
"""

from typing import Any


class ExportError(Exception):
    """Base exception for all export errors."""

    code: str = "EXPORT_FAILED"
    status_code: int = 500
    message: str = "Export failed"

    def __init__(
        self,
        message: str | None = None,
        *,
        code: str | None = None,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.message = message or self.__class__.message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)

    @property
    def retryable(self) -> bool:
        return False

    def to_dict(self) -> dict[str, Any]:
        """Serialize for API error bodies and progress channel messages."""
        return {
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
            "details": self.details,
        }


class ValidationError(ExportError):
    """The timeline cannot be rendered; raised before any transcoding."""

    code = "INVALID_TIMELINE"
    status_code = 422
    message = "Timeline is not renderable"


class NoRenderableClipsError(ValidationError):
    """No clip on the timeline resolves to a renderable asset."""

    code = "NO_RENDERABLE_CLIPS"
    message = "No clips found on timeline"


class SpawnError(ExportError):
    """The external engine binary could not be started."""

    code = "ENGINE_NOT_FOUND"
    message = "Transcoding engine could not be started"

    def __init__(self, binary: str, reason: str | None = None):
        self.binary = binary
        message = f"Transcoding engine not executable: {binary}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message, details={"binary": binary})


class EncodeError(ExportError):
    """The external engine exited with a non-zero status."""

    code = "ENGINE_FAILED"
    message = "Transcoding engine failed"

    def __init__(self, phase: str, returncode: int, stderr_tail: str = ""):
        self.phase = phase
        self.returncode = returncode
        self.stderr_tail = stderr_tail
        message = f"FFmpeg {phase} failed with exit code {returncode}"
        if stderr_tail.strip():
            message = f"{message}: {stderr_tail.strip().splitlines()[-1]}"
        super().__init__(
            message,
            details={"phase": phase, "returncode": returncode, "stderr": stderr_tail},
        )


class ProbeDegradation(UserWarning):
    """Stream inspection failed; the segment is treated as silent."""


class CleanupWarning(UserWarning):
    """The scratch directory could not be removed."""
