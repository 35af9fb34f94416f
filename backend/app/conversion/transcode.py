"""Audio transcoding through the ffmpeg executable."""
import logging
import subprocess
from pathlib import Path
from typing import Optional

from app.config import MP3_QUALITY, TRANSCODE_TIMEOUT, resolve_ffmpeg_binary

logger = logging.getLogger("converter.transcode")


class FfmpegTranscoder:
    def __init__(self, binary: Optional[str] = None, quality: str = MP3_QUALITY, timeout: int = TRANSCODE_TIMEOUT):
        self.binary = binary or resolve_ffmpeg_binary()
        self.quality = quality
        self.timeout = timeout

    def build_command(self, src: Path, dest: Path) -> list[str]:
        return [
            self.binary, "-y", "-i", str(src),
            "-vn",
            "-codec:a", "libmp3lame",
            "-q:a", str(self.quality),
            str(dest),
        ]

    def transcode(self, src: Path, dest: Path) -> None:
        try:
            result = subprocess.run(
                self.build_command(src, dest),
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except FileNotFoundError:
            logger.error("ffmpeg not found at %s. Install ffmpeg or set FFMPEG_PATH.", self.binary)
            raise RuntimeError("ffmpeg not installed")
        if result.returncode != 0:
            # ffmpeg prints the actual cause on its last stderr line
            lines = (result.stderr or result.stdout or "").strip().splitlines()
            raise RuntimeError(lines[-1] if lines else f"ffmpeg exited with code {result.returncode}")
        logger.info("Transcoded %s -> %s", src.name, dest.name)
