"""URL to MP3 conversion pipeline with retrying download and progress publishing."""
import logging
import time
import uuid
from pathlib import Path
from typing import Callable, Optional, Protocol

from app.config import (
    DOWNLOAD_DIR,
    DOWNLOAD_MAX_ATTEMPTS,
    DOWNLOAD_RETRY_DELAY_SECONDS,
    INTERMEDIATE_CONTAINER,
    INTERMEDIATE_EXTENSION,
    OUTPUT_MEDIA_TYPE,
)
from app.conversion.errors import (
    ArtifactIntegrityError,
    CleanupWarning,
    ConversionError,
    NoMatchingStreamError,
    ResolutionError,
    TranscodeError,
    TransientTransferError,
)
from app.conversion.models import (
    ConversionJob,
    ConversionResult,
    Failed,
    JobStage,
    MediaMetadata,
    StreamDescriptor,
    Succeeded,
)

logger = logging.getLogger("converter.service")

# Linux caps a file name at 255 bytes; leave room for the job suffix and extension
MAX_TITLE_BYTES = 200


class ProgressPublisher(Protocol):
    def publish(self, group_id: str, percent: int) -> None: ...


class MediaResolver(Protocol):
    def resolve(self, url: str) -> MediaMetadata: ...

    def list_streams(self, metadata: MediaMetadata) -> list[StreamDescriptor]: ...

    def download(
        self,
        metadata: MediaMetadata,
        stream: StreamDescriptor,
        dest: Path,
        on_progress: Optional[Callable[[float], None]] = None,
    ) -> None: ...


class Transcoder(Protocol):
    def transcode(self, src: Path, dest: Path) -> None: ...


def sanitize_title(title: str) -> str:
    """Filesystem-safe name: every char outside [A-Za-z0-9._-] becomes '_'."""
    safe = "".join(c if c.isalnum() or c in "._-" else "_" for c in (title or "").strip())
    safe = safe.encode("utf-8")[:MAX_TITLE_BYTES].decode("utf-8", "ignore").strip(".")
    return safe or "audio"


def select_stream(streams: list[StreamDescriptor], container: str = INTERMEDIATE_CONTAINER) -> Optional[StreamDescriptor]:
    """First audio-only stream in ``container``; no bitrate ranking."""
    for stream in streams:
        if stream.audio_only and stream.container == container:
            return stream
    return None


class ConversionPipeline:
    """Runs one conversion per call: resolve, select, download, transcode, serve, clean up."""

    def __init__(
        self,
        resolver: MediaResolver,
        transcoder: Transcoder,
        progress: ProgressPublisher,
        work_dir: Path = DOWNLOAD_DIR,
        max_attempts: int = DOWNLOAD_MAX_ATTEMPTS,
        retry_delay: float = DOWNLOAD_RETRY_DELAY_SECONDS,
        container: str = INTERMEDIATE_CONTAINER,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.resolver = resolver
        self.transcoder = transcoder
        self.progress = progress
        self.work_dir = Path(work_dir)
        self.max_attempts = max(1, max_attempts)
        self.retry_delay = retry_delay
        self.container = container
        self._sleep = sleep

    def run(self, url: str, group_id: str) -> ConversionResult:
        job = ConversionJob(job_id=str(uuid.uuid4()), source_url=url, group_id=group_id)
        logger.info("Starting conversion %s for URL: %s", job.job_id[:8], url)
        try:
            result = self._execute(job)
            job.stage = JobStage.SUCCEEDED
            return result
        except ConversionError as e:
            job.stage = JobStage.FAILED
            job.error = e.message
            logger.error("Conversion %s failed: %s", job.job_id[:8], e.message)
            return Failed(e.message, e)
        except Exception as e:
            job.stage = JobStage.FAILED
            job.error = f"An error occurred: {e}"
            logger.exception("Conversion failed for URL: %s", url)
            return Failed(job.error, ConversionError(job.error))
        finally:
            self._cleanup(job)

    def _execute(self, job: ConversionJob) -> Succeeded:
        job.stage = JobStage.RESOLVE_METADATA
        try:
            metadata = self.resolver.resolve(job.source_url)
        except Exception as e:
            logger.warning("Metadata lookup failed for %s: %s", job.source_url, e)
            raise ResolutionError(str(e)) from e
        job.title = metadata.title
        logger.info("Video title: %s, ID: %s", metadata.title, metadata.video_id)

        job.stage = JobStage.SELECT_STREAM
        try:
            streams = self.resolver.list_streams(metadata)
        except Exception as e:
            raise ResolutionError(str(e)) from e
        stream = select_stream(streams, self.container)
        if stream is None:
            logger.warning("No %s audio stream found for video ID: %s", self.container, metadata.video_id)
            raise NoMatchingStreamError(f"No {self.container.upper()} audio stream available for this video.")
        job.stream = stream
        logger.info(
            "Selected stream: Container=%s, Bitrate=%skbps", stream.container,
            f"{stream.bitrate:.1f}" if stream.bitrate else "?",
        )

        safe_name = sanitize_title(metadata.title)
        self.work_dir.mkdir(parents=True, exist_ok=True)
        job.temp_path = self.work_dir / f"{uuid.uuid4()}{INTERMEDIATE_EXTENSION}"
        job.output_path = self.work_dir / f"{safe_name}_{job.job_id[:8]}.mp3"

        job.stage = JobStage.DOWNLOAD
        self._download_with_retry(job, metadata, stream)

        job.stage = JobStage.VALIDATE_TEMP
        if not job.temp_path.is_file():
            raise ArtifactIntegrityError("Temporary file was not created.")
        size = job.temp_path.stat().st_size
        if size == 0:
            raise ArtifactIntegrityError("Temporary file is empty.")
        logger.info("Temporary file created: %s, Size: %s bytes", job.temp_path.name, size)

        job.stage = JobStage.TRANSCODE
        logger.info("Converting to MP3: %s", job.output_path.name)
        try:
            self.transcoder.transcode(job.temp_path, job.output_path)
        except Exception as e:
            raise TranscodeError(f"FFmpeg conversion failed: {e}") from e

        job.stage = JobStage.CLEANUP_TEMP
        self._remove(job, job.temp_path)

        job.stage = JobStage.VALIDATE_OUTPUT
        if not job.output_path.is_file():
            raise ArtifactIntegrityError("MP3 file was not created.")

        job.stage = JobStage.SERVE
        content = job.output_path.read_bytes()
        logger.info("Serving MP3 file: %s (%s bytes)", job.output_path.name, len(content))
        self._remove(job, job.output_path)
        return Succeeded(content=content, filename=f"{safe_name}.mp3", media_type=OUTPUT_MEDIA_TYPE)

    def _download_with_retry(self, job: ConversionJob, metadata: MediaMetadata, stream: StreamDescriptor) -> None:
        last_error: Optional[BaseException] = None
        for attempt in range(1, self.max_attempts + 1):
            job.attempts = attempt
            last_sent = -1

            def on_progress(fraction: float) -> None:
                nonlocal last_sent
                percent = max(0, min(100, int(fraction * 100)))
                if percent > last_sent:
                    last_sent = percent
                    self._publish(job.group_id, percent)

            try:
                logger.info("Download attempt %s for %s", attempt, job.temp_path.name)
                self.resolver.download(metadata, stream, job.temp_path, on_progress)
                if last_sent < 100:
                    on_progress(1.0)
                logger.info("Download completed: %s", job.temp_path.name)
                return
            except Exception as e:
                last_error = e
                logger.error("Download attempt %s failed for %s: %s", attempt, job.temp_path.name, e)
                if attempt < self.max_attempts:
                    self._sleep(self.retry_delay * attempt)
        raise TransientTransferError(str(last_error), last_error=last_error, attempts=self.max_attempts)

    def _publish(self, group_id: str, percent: int) -> None:
        try:
            self.progress.publish(group_id, percent)
        except Exception:
            logger.exception("Failed to send progress: %s%%", percent)

    def _remove(self, job: ConversionJob, path: Optional[Path]) -> None:
        if path is None:
            return
        try:
            path.unlink(missing_ok=True)
            logger.debug("Deleted %s", path.name)
        except OSError as e:
            warning = CleanupWarning(path, e)
            job.warnings.append(warning)
            logger.warning("%s", warning)

    def _cleanup(self, job: ConversionJob) -> None:
        """Remove whatever scratch files the job left behind."""
        paths = [job.temp_path, job.output_path]
        if job.temp_path is not None:
            # yt-dlp side files: <name>.part, <name>.ytdl, <name>.part-Frag*
            paths.extend(job.temp_path.parent.glob(job.temp_path.name + ".*"))
        for path in paths:
            self._remove(job, path)
