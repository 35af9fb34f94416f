"""FastAPI application entry point."""
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from app.api.routes import page_router, router
from app.config import CORS_ORIGINS, SESSION_COOKIE_NAME, WEB_DIR, logger as config_logger
from app.conversion.media import YtDlpResolver
from app.conversion.service import ConversionPipeline
from app.conversion.transcode import FfmpegTranscoder
from app.progress import ProgressChannel
from app.session import SessionStore

logging.getLogger("uvicorn").setLevel(logging.INFO)


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.progress.bind_loop(asyncio.get_running_loop())
    config_logger.info("Converter started")
    yield
    config_logger.info("Converter shutting down")


async def session_cookie_middleware(request, call_next):
    """Persist a session id issued during the request as a cookie and X-Session-ID header.

    The cookie lives for the browser session; SessionStore enforces the idle expiry.
    """
    response = await call_next(request)
    if hasattr(request.state, "session_id"):
        response.headers["X-Session-ID"] = request.state.session_id
        response.set_cookie(
            SESSION_COOKIE_NAME,
            request.state.session_id,
            httponly=True,
            samesite="lax",
        )
    return response


def create_app(
    pipeline: Optional[ConversionPipeline] = None,
    sessions: Optional[SessionStore] = None,
    progress: Optional[ProgressChannel] = None,
) -> FastAPI:
    app = FastAPI(
        title="YouTube to MP3 Converter",
        description="Convert a media URL to MP3 with real-time progress over WebSocket.",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.progress = progress or ProgressChannel()
    app.state.sessions = sessions or SessionStore()
    app.state.pipeline = pipeline or ConversionPipeline(YtDlpResolver(), FfmpegTranscoder(), app.state.progress)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS if CORS_ORIGINS else ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.middleware("http")(session_cookie_middleware)
    app.include_router(router)
    app.include_router(page_router)
    app.mount("/static", StaticFiles(directory=WEB_DIR), name="static")
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    from app.config import HOST, PORT
    uvicorn.run("app.main:app", host=HOST, port=PORT, reload=True)
