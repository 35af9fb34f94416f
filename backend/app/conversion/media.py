"""Media resolution and stream download backed by yt-dlp."""
import logging
from pathlib import Path
from typing import Any, Callable, Optional

import yt_dlp

from app.config import DOWNLOAD_SOCKET_TIMEOUT
from app.conversion.models import MediaMetadata, StreamDescriptor

logger = logging.getLogger("converter.media")

CODEC_NONE = "none"

# yt-dlp reports the file extension; audio-only MP4 streams come through as m4a
_CONTAINER_ALIASES = {"m4a": "mp4", "mp4": "mp4", "weba": "webm", "webm": "webm"}


def normalize_container(ext: Optional[str]) -> str:
    ext = (ext or "").strip().lower()
    return _CONTAINER_ALIASES.get(ext, ext)


def stream_from_format(fmt: dict[str, Any]) -> StreamDescriptor:
    vcodec = fmt.get("vcodec") or CODEC_NONE
    acodec = fmt.get("acodec") or CODEC_NONE
    bitrate = fmt.get("abr") or fmt.get("tbr")
    return StreamDescriptor(
        format_id=str(fmt.get("format_id") or ""),
        container=normalize_container(fmt.get("ext")),
        bitrate=float(bitrate) if bitrate else None,
        audio_only=vcodec == CODEC_NONE and acodec != CODEC_NONE,
        filesize=fmt.get("filesize") or fmt.get("filesize_approx"),
    )


class YtDlpResolver:
    """Resolves URLs to metadata and downloads a single selected stream."""

    def __init__(self, socket_timeout: int = DOWNLOAD_SOCKET_TIMEOUT):
        self.socket_timeout = socket_timeout

    def _base_opts(self) -> dict[str, Any]:
        return {
            "quiet": True,
            "no_warnings": True,
            "noplaylist": True,
            "socket_timeout": self.socket_timeout,
        }

    def _extract(self, url: str) -> dict[str, Any]:
        with yt_dlp.YoutubeDL(self._base_opts()) as ydl:
            info = ydl.extract_info(url, download=False)
        if not info:
            raise ValueError(f"No media found at {url}")
        return ydl.sanitize_info(info)

    def resolve(self, url: str) -> MediaMetadata:
        info = self._extract(url)
        return MediaMetadata(
            video_id=str(info.get("id") or ""),
            title=str(info.get("title") or ""),
            webpage_url=info.get("webpage_url") or url,
            streams=[stream_from_format(f) for f in info.get("formats") or []],
            raw=info,
        )

    def list_streams(self, metadata: MediaMetadata) -> list[StreamDescriptor]:
        if metadata.streams:
            return list(metadata.streams)
        info = self._extract(metadata.webpage_url)
        return [stream_from_format(f) for f in info.get("formats") or []]

    def download(
        self,
        metadata: MediaMetadata,
        stream: StreamDescriptor,
        dest: Path,
        on_progress: Optional[Callable[[float], None]] = None,
    ) -> None:
        """Download one stream to ``dest``. ``on_progress`` receives fractions in [0, 1]."""

        def progress_hook(d: dict[str, Any]) -> None:
            if on_progress is None:
                return
            if d.get("status") == "downloading":
                total = d.get("total_bytes") or d.get("total_bytes_estimate")
                done = d.get("downloaded_bytes") or 0
                if total:
                    on_progress(min(1.0, done / total))
            elif d.get("status") == "finished":
                on_progress(1.0)

        opts = self._base_opts()
        opts.update({
            "format": stream.format_id,
            "outtmpl": str(dest),
            "overwrites": True,
            "noprogress": True,
            "progress_hooks": [progress_hook],
        })
        logger.debug("yt-dlp download format=%s -> %s", stream.format_id, dest)
        with yt_dlp.YoutubeDL(opts) as ydl:
            ydl.download([metadata.webpage_url])
