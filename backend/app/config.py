"""Application configuration. Loads from environment and .env file."""
import logging
import os
from pathlib import Path

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent.parent
# Load .env from cwd, then backend/.env, then project root .env
load_dotenv()
load_dotenv(BASE_DIR / ".env")
load_dotenv(BASE_DIR.parent / ".env")

# Scratch directory for temporary downloads and MP3 outputs (override with env)
DOWNLOAD_DIR = Path(os.getenv("DOWNLOAD_DIR", str(BASE_DIR / "downloads")))
DOWNLOAD_DIR.mkdir(parents=True, exist_ok=True)

# Page and static assets
WEB_DIR = Path(__file__).resolve().parent / "web"

# Sessions: idle expiry window and capacity of the in-memory store
SESSION_IDLE_MINUTES = int(os.getenv("SESSION_IDLE_MINUTES", "20"))
SESSION_IDLE_SECONDS = SESSION_IDLE_MINUTES * 60
SESSION_MAX_ENTRIES = int(os.getenv("SESSION_MAX_ENTRIES", "10000"))
SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "session_id")

# Download (yt-dlp)
DOWNLOAD_MAX_ATTEMPTS = int(os.getenv("DOWNLOAD_MAX_ATTEMPTS", "3"))
DOWNLOAD_RETRY_DELAY_SECONDS = float(os.getenv("DOWNLOAD_RETRY_DELAY_SECONDS", "1"))
DOWNLOAD_SOCKET_TIMEOUT = int(os.getenv("DOWNLOAD_SOCKET_TIMEOUT", "30"))
# Audio-only stream container picked for the intermediate download
INTERMEDIATE_CONTAINER = os.getenv("INTERMEDIATE_CONTAINER", "mp4").strip().lower()
INTERMEDIATE_EXTENSION = ".m4a"

# Transcode (ffmpeg). FFMPEG_PATH may be the directory holding ffmpeg or the binary itself.
FFMPEG_PATH = os.getenv("FFMPEG_PATH", "").strip()
MP3_QUALITY = os.getenv("MP3_QUALITY", "2")
TRANSCODE_TIMEOUT = int(os.getenv("TRANSCODE_TIMEOUT", "600"))
OUTPUT_MEDIA_TYPE = "audio/mpeg"

# Server (for uvicorn)
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "8000"))
# CORS: comma-separated origins, e.g. "http://localhost:5173,http://127.0.0.1:5173"
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173").split(",") if o.strip()]

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("converter")


def resolve_ffmpeg_binary() -> str:
    """Return the ffmpeg executable to run, honouring FFMPEG_PATH when it exists."""
    if not FFMPEG_PATH:
        return "ffmpeg"
    path = Path(FFMPEG_PATH)
    if path.is_dir():
        logger.info("FFmpeg path set to: %s", path)
        exe = "ffmpeg.exe" if os.name == "nt" else "ffmpeg"
        return str(path / exe)
    if path.is_file():
        logger.info("FFmpeg binary set to: %s", path)
        return str(path)
    logger.error("FFmpeg path does not exist: %s", path)
    return "ffmpeg"
