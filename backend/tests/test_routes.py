from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from app.conversion.models import Failed
from app.conversion.errors import ResolutionError
from app.conversion.service import ConversionPipeline
from app.main import create_app
from app.progress import ProgressChannel
from app.session import SessionStore
from fakes import FakeResolver, FakeTranscoder, RecordingProgress


class _StubPipeline:
    def __init__(self, result):
        self.result = result
        self.calls = []

    def run(self, url, group_id):
        self.calls.append((url, group_id))
        return self.result


def _real_pipeline(tmp_path, progress):
    return ConversionPipeline(
        FakeResolver(title="Test & Song"),
        FakeTranscoder(output=b"ID3-mp3"),
        progress,
        work_dir=tmp_path,
        sleep=lambda _s: None,
    )


@pytest.mark.parametrize("url", ["", "   ", "\t\n"])
def test_blank_url_is_rejected_without_running_pipeline(url) -> None:
    pipeline = _StubPipeline(Failed("unused"))
    with TestClient(create_app(pipeline=pipeline)) as client:
        response = client.post("/convert", data={"url": url})

    assert response.status_code == 400
    assert "Please enter a valid YouTube URL." in response.text
    assert pipeline.calls == []
    assert "session_id" not in response.cookies


def test_successful_conversion_streams_mp3_and_leaves_no_files(tmp_path) -> None:
    progress = RecordingProgress()
    with TestClient(create_app(pipeline=_real_pipeline(tmp_path, progress), progress=progress)) as client:
        response = client.post("/convert", data={"url": "https://youtu.be/abc123"})

    assert response.status_code == 200
    assert response.headers["content-type"] == "audio/mpeg"
    assert 'filename="Test___Song.mp3"' in response.headers["content-disposition"]
    assert response.content == b"ID3-mp3"
    assert list(tmp_path.iterdir()) == []
    assert progress.published[-1][1] == 100


def test_failure_re_renders_page_with_message() -> None:
    pipeline = _StubPipeline(Failed("Video unavailable", ResolutionError("Video unavailable")))
    with TestClient(create_app(pipeline=pipeline)) as client:
        response = client.post("/convert", data={"url": "https://youtu.be/missing"})

    assert response.status_code == 422
    assert "text/html" in response.headers["content-type"]
    assert "Video unavailable" in response.text
    assert pipeline.calls[0][0] == "https://youtu.be/missing"


def test_group_id_is_stable_per_session_and_used_for_conversion() -> None:
    pipeline = _StubPipeline(Failed("nope"))
    app = create_app(pipeline=pipeline)
    other = TestClient(app)
    with TestClient(app) as client:
        first = client.get("/api/group-id")
        second = client.get("/api/group-id")
        assert first.headers["content-type"].startswith("text/plain")
        assert first.text == second.text
        assert other.get("/api/group-id").text != first.text

        client.post("/convert", data={"url": "https://youtu.be/abc123"})
    assert pipeline.calls == [("https://youtu.be/abc123", first.text)]


def test_session_header_is_accepted_when_cookie_is_absent() -> None:
    with TestClient(create_app(pipeline=_StubPipeline(Failed("nope")))) as client:
        a = client.get("/api/group-id", headers={"X-Session-ID": "header-session"})
        client.cookies.clear()
        b = client.get("/api/group-id", headers={"X-Session-ID": "header-session"})
    assert a.text == b.text


def test_test_progress_publishes_one_tick_of_50() -> None:
    progress = RecordingProgress()
    with TestClient(create_app(pipeline=_StubPipeline(Failed("nope")), progress=progress)) as client:
        group_id = client.get("/api/group-id").text
        response = client.get("/api/test-progress")

    assert response.status_code == 200
    assert "Sent test progress: 50%" in response.text
    assert progress.published == [(group_id, 50)]


def test_websocket_subscriber_receives_ticks_for_its_group() -> None:
    progress = ProgressChannel()
    with TestClient(create_app(pipeline=_StubPipeline(Failed("nope")), progress=progress)) as client:
        group_id = client.get("/api/group-id").text
        with client.websocket_connect("/ws/progress") as ws:
            ws.send_json({"type": "subscribe", "groupId": group_id})
            assert ws.receive_json() == {"type": "subscribed", "groupId": group_id}
            assert progress.group_size(group_id) == 1

            client.get("/api/test-progress")
            assert ws.receive_json() == {"type": "progressTick", "groupId": group_id, "percent": 50}

            ws.send_json({"type": "ping"})
            assert ws.receive_json() == {"type": "pong"}
            ws.send_json({"type": "bogus"})
            assert ws.receive_json()["type"] == "error"


def test_health() -> None:
    with TestClient(create_app(pipeline=_StubPipeline(Failed("nope")))) as client:
        assert client.get("/api/health").json() == {"status": "ok"}


def test_index_page_renders_form() -> None:
    with TestClient(create_app(pipeline=_StubPipeline(Failed("nope")))) as client:
        response = client.get("/")
    assert response.status_code == 200
    assert 'action="/convert"' in response.text
    assert "$message" not in response.text


def test_active_session_outlives_the_idle_window_of_first_contact() -> None:
    clock = {"now": 0.0}
    sessions = SessionStore(idle_timeout=1200, maxsize=10, timer=lambda: clock["now"])
    with TestClient(create_app(pipeline=_StubPipeline(Failed("nope")), sessions=sessions)) as client:
        first = client.get("/api/group-id")
        set_cookie = first.headers["set-cookie"].lower()
        assert "session_id=" in set_cookie
        assert "max-age" not in set_cookie
        assert "expires" not in set_cookie

        clock["now"] = 1000
        assert client.get("/api/group-id").text == first.text
        clock["now"] = 2100
        assert client.get("/api/group-id").text == first.text

        clock["now"] = 3400
        assert client.get("/api/group-id").text != first.text
