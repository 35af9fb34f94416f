"""HTTP and WebSocket routes: the page, URL conversion, group id lookup and progress subscription."""
import asyncio
import html
import logging
import uuid
from string import Template
from urllib.parse import quote

from fastapi import APIRouter, Form, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import HTMLResponse, PlainTextResponse, Response

from app.config import SESSION_COOKIE_NAME, WEB_DIR
from app.conversion.errors import InputError
from app.conversion.models import Succeeded
from app.conversion.service import ConversionPipeline
from app.progress import ProgressChannel, ProgressConnection
from app.session import SessionStore

logger = logging.getLogger("converter.api")
router = APIRouter(prefix="/api", tags=["converter"])
page_router = APIRouter(tags=["page"])

INDEX_TEMPLATE = Template((WEB_DIR / "index.html").read_text(encoding="utf-8"))
TEST_PROGRESS_PERCENT = 50


def get_or_create_session_id(request: Request) -> str:
    """Use the session cookie or X-Session-ID header, else generate one and attach it for the response."""
    sid = (request.cookies.get(SESSION_COOKIE_NAME) or request.headers.get("X-Session-ID") or "").strip()
    if sid:
        return sid
    sid = getattr(request.state, "session_id", None) or str(uuid.uuid4())
    request.state.session_id = sid
    return sid


def _sessions(request: Request) -> SessionStore:
    return request.app.state.sessions


def _progress(request: Request) -> ProgressChannel:
    return request.app.state.progress


def _pipeline(request: Request) -> ConversionPipeline:
    return request.app.state.pipeline


def render_page(message: str = "", url: str = "", status_code: int = 200) -> HTMLResponse:
    body = INDEX_TEMPLATE.safe_substitute(message=html.escape(message), url=html.escape(url, quote=True))
    return HTMLResponse(body, status_code=status_code)


def _content_disposition(filename: str) -> str:
    ascii_name = filename.encode("ascii", "replace").decode("ascii").replace("?", "_").replace('"', "_")
    if ascii_name == filename:
        return f'attachment; filename="{filename}"'
    return f"attachment; filename=\"{ascii_name}\"; filename*=UTF-8''{quote(filename)}"


@page_router.get("/", response_class=HTMLResponse)
def index():
    return render_page()


@page_router.post("/convert")
async def convert(request: Request, url: str = Form("")):
    """Convert the submitted URL to MP3. Returns the file, or the page with an error message."""
    url = (url or "").strip()
    if not url:
        error = InputError("Please enter a valid YouTube URL.")
        logger.warning("YouTube URL is empty.")
        return render_page(error.message, status_code=error.status_code)

    session_id = get_or_create_session_id(request)
    group_id = _sessions(request).group_id_for(session_id)
    result = await asyncio.to_thread(_pipeline(request).run, url, group_id)

    if isinstance(result, Succeeded):
        return Response(
            content=result.content,
            media_type=result.media_type,
            headers={"Content-Disposition": _content_disposition(result.filename)},
        )
    return render_page(result.message, url=url, status_code=result.status_code)


@page_router.websocket("/ws/progress")
async def progress_socket(websocket: WebSocket):
    """Real-time progress. Clients send {"type": "subscribe", "groupId": ...} and receive progressTick frames."""
    channel: ProgressChannel = websocket.app.state.progress
    sessions: SessionStore = websocket.app.state.sessions
    await websocket.accept()
    connection = ProgressConnection(websocket)
    try:
        while True:
            try:
                data = await websocket.receive_json()
            except ValueError:
                await websocket.send_json({"type": "error", "message": "Invalid JSON"})
                continue
            kind = data.get("type") if isinstance(data, dict) else None
            if kind == "subscribe":
                group_id = str(data.get("groupId") or "").strip()
                if not group_id:
                    token = websocket.cookies.get(SESSION_COOKIE_NAME)
                    if not token:
                        await websocket.send_json({"type": "error", "message": "groupId is required"})
                        continue
                    group_id = sessions.group_id_for(token)
                channel.subscribe(connection, group_id)
                await websocket.send_json({"type": "subscribed", "groupId": group_id})
            elif kind == "ping":
                await websocket.send_json({"type": "pong"})
            else:
                await websocket.send_json({"type": "error", "message": f"Unsupported message type: {kind}"})
    except WebSocketDisconnect:
        pass
    finally:
        channel.unsubscribe(connection)
        logger.debug("Connection %s closed", connection.connection_id[:8])


@router.get("/health")
def health():
    return {"status": "ok"}


@router.get("/group-id", response_class=PlainTextResponse)
def group_id(request: Request):
    """Return the caller's progress group id, creating one if the session has none."""
    return _sessions(request).group_id_for(get_or_create_session_id(request))


@router.get("/test-progress", response_class=HTMLResponse)
def test_progress(request: Request):
    """Publish a synthetic 50% tick to the caller's group to check the WebSocket path."""
    try:
        group_id = _sessions(request).group_id_for(get_or_create_session_id(request))
        _progress(request).publish(group_id, TEST_PROGRESS_PERCENT)
        message = f"Sent test progress: {TEST_PROGRESS_PERCENT}%"
        logger.info("Sent test progress: %s%% to group %s", TEST_PROGRESS_PERCENT, group_id)
    except Exception as e:
        message = f"Test failed: {e}"
        logger.exception("Test progress failed")
    return render_page(message)
