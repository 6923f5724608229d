"""
Exception taxonomy for the replica pipeline
"""

from typing import Optional, Any


class ReplicaError(Exception):
    """Base class for every error raised by the pipeline"""


class ValidationError(ReplicaError):
    """Malformed or disallowed URL, or an invalid option combination"""


class RateLimitError(ReplicaError):
    """Caller exceeded the allowed clone rate"""

    def __init__(self, message: str, retry_after: float = 0.0):
        super().__init__(message)
        self.retry_after = retry_after


class AcquisitionError(ReplicaError):
    """Every fetch/acquisition strategy was exhausted"""

    def __init__(self, message: str, attempts: int = 0, last_error: Optional[str] = None):
        super().__init__(message)
        self.attempts = attempts
        self.last_error = last_error


class StructuredContentError(ReplicaError):
    """Structured (REST API) acquisition failed; callers fall back to markup"""


class PartialAssetFailure(ReplicaError):
    """A single asset could not be downloaded. Logged, never raised past the asset stage."""

    def __init__(self, url: str, reason: str):
        super().__init__(f"{url}: {reason}")
        self.url = url
        self.reason = reason


class InvalidTransition(ReplicaError):
    """Attempted a status change the run lifecycle does not allow"""


class StageError(ReplicaError):
    """Any other uncaught exception raised inside a pipeline stage"""

    def __init__(self, stage: str, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.stage = stage
        self.cause = cause


def attach_run(error: ReplicaError, run: Any) -> ReplicaError:
    """Attach the failed run to the error so the caller can inspect its terminal state"""
    error.run = run
    return error
