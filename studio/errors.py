"""
Error taxonomy shared by the generation client, storage, ledger and wizard.

Only `describe_failure` decides what the user reads; everything else raises
the most specific class it can.
"""

from typing import Optional

import httpx


class StudioError(Exception):
    """Base class for every failure the studio knows how to report."""


class ValidationError(StudioError):
    """Missing or invalid input. `fields` maps field name → message."""

    def __init__(self, message: str, fields: Optional[dict[str, str]] = None):
        super().__init__(message)
        self.fields = fields or {}


class InsufficientCredits(ValidationError):
    def __init__(self, message: str, required: float, available: float):
        super().__init__(message)
        self.required = required
        self.available = available


class AuthorizationRequired(StudioError):
    """The billed video capability has not been granted for this user."""


class GenerationError(StudioError):
    """Provider returned an error or no usable payload."""


class ResponseShapeError(GenerationError):
    """Provider finished but none of the known result fields were present."""


class VideoTimeoutError(StudioError, TimeoutError):
    pass


class UploadError(StudioError):
    """Object storage write failed. Never surfaced; callers fall back."""


class PersistenceError(StudioError):
    """Database write failed. `asset` is the optimistic record, if any."""

    def __init__(self, message: str, asset=None):
        super().__init__(message)
        self.asset = asset


def describe_failure(exc: BaseException) -> str:
    """Map any failure to the single message shown in the wizard."""
    if isinstance(exc, VideoTimeoutError):
        return "Video generation timed out after 5 minutes. Please try again."
    if isinstance(exc, StudioError):
        return str(exc) or exc.__class__.__name__
    if isinstance(exc, httpx.TimeoutException):
        return "The generation service did not respond in time. Please try again."
    if isinstance(exc, httpx.HTTPError):
        return f"Network error: {exc}"
    return str(exc) or "Unexpected error"
