from __future__ import annotations

from typing import Optional


class BalloonPipelineError(Exception):
    """Base class for every error raised by the balloon pipeline."""


class ModelUnavailable(BalloonPipelineError):
    """The local detector model could not be found or loaded."""


class DetectionFailed(BalloonPipelineError):
    def __init__(self, cause: BaseException) -> None:
        super().__init__(f"balloon detection failed: {cause}")
        self.cause = cause


class RemoteServiceError(BalloonPipelineError):
    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RemoteServiceTransient(RemoteServiceError):
    """Upstream overload that survived every retry attempt."""


class RemoteServiceTerminal(RemoteServiceError):
    """Auth, quota or format errors. Never retried."""
