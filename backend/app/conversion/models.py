"""Conversion job state and results."""
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Optional, Union

from app.conversion.errors import CleanupWarning, ConversionError


class JobStage(str, Enum):
    PENDING = "pending"
    RESOLVE_METADATA = "resolve_metadata"
    SELECT_STREAM = "select_stream"
    DOWNLOAD = "download"
    VALIDATE_TEMP = "validate_temp"
    TRANSCODE = "transcode"
    CLEANUP_TEMP = "cleanup_temp"
    VALIDATE_OUTPUT = "validate_output"
    SERVE = "serve"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class StreamDescriptor:
    format_id: str
    container: str
    bitrate: Optional[float] = None  # kbps
    audio_only: bool = False
    filesize: Optional[int] = None  # bytes


@dataclass
class MediaMetadata:
    video_id: str
    title: str
    webpage_url: str
    streams: list[StreamDescriptor] = field(default_factory=list)
    raw: dict[str, Any] = field(default_factory=dict, repr=False)


class ConversionJob:
    """In-memory state for one conversion request."""

    def __init__(self, job_id: str, source_url: str, group_id: str):
        self.job_id = job_id
        self.source_url = source_url
        self.group_id = group_id
        self.stage = JobStage.PENDING
        self.title: Optional[str] = None
        self.stream: Optional[StreamDescriptor] = None
        self.temp_path: Optional[Path] = None
        self.output_path: Optional[Path] = None
        self.attempts = 0
        self.error: Optional[str] = None
        self.warnings: list[CleanupWarning] = []


@dataclass
class Succeeded:
    content: bytes
    filename: str
    media_type: str = "audio/mpeg"


@dataclass
class Failed:
    message: str
    error: Optional[ConversionError] = None

    @property
    def status_code(self) -> int:
        return self.error.status_code if self.error is not None else 500


ConversionResult = Union[Succeeded, Failed]
