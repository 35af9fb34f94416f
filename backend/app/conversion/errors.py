"""Conversion failure taxonomy. Every terminal error carries a user-facing message."""
from pathlib import Path
from typing import Optional


class ConversionError(Exception):
    """Base for terminal pipeline failures."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InputError(ConversionError):
    status_code = 400


class ResolutionError(ConversionError):
    status_code = 422


class NoMatchingStreamError(ConversionError):
    status_code = 422


class TransientTransferError(ConversionError):
    """Download failed after all attempts; ``last_error`` is the final attempt's exception."""

    status_code = 502

    def __init__(self, message: str, last_error: Optional[BaseException] = None, attempts: int = 0):
        super().__init__(message)
        self.last_error = last_error
        self.attempts = attempts


class ArtifactIntegrityError(ConversionError):
    status_code = 500


class TranscodeError(ConversionError):
    status_code = 500


class CleanupWarning(UserWarning):
    """A scratch file could not be removed. Logged and recorded, never raised to callers."""

    def __init__(self, path: Path, error: OSError):
        super().__init__(f"Could not remove {path}: {error}")
        self.path = path
        self.error = error
