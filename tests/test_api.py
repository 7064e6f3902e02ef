from __future__ import annotations

import threading
import time

import cv2
import numpy as np
import pytest
import requests
from fastapi.testclient import TestClient

from incident_lens.analysis.clients import IncidentReport, RegionAnswer
from incident_lens.api.app import app
from incident_lens.api.routes import (
    ViewerRegistry,
    get_analysis_client,
    get_ingestor,
    get_region_client,
    get_registry,
)
from incident_lens.core.errors import AnalysisParseError, SourceUnreadable
from incident_lens.events.handlers import event_journal
from incident_lens.ingest.case import CaseIngestor
from incident_lens.vision.frame_sampler import FrameSampler

from conftest import FakeVideo


class FakeAudio:
    def extract(self, source):
        return None


class FakeRegionClient:
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.asked: list[tuple[str, str]] = []

    def ask(self, roi, question):
        if self.error is not None:
            raise self.error
        self.asked.append((roi.id, question))
        return RegionAnswer(question=question, answer="Red", confidence="High", details="clear view")


class FakeAnalysisClient:
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.calls: list[tuple[int, str | None]] = []

    def analyze(self, case, user_prompt=None):
        if self.error is not None:
            raise self.error
        self.calls.append((case.generation, user_prompt))
        return IncidentReport(report={"summary": "Rear-end collision"}, raw_text="```json{}```")


def _open_video(resource: str) -> FakeVideo:
    if "corrupt" in resource:
        raise SourceUnreadable(resource, "failed to open video")
    return FakeVideo()


@pytest.fixture
def region_client() -> FakeRegionClient:
    return FakeRegionClient()


@pytest.fixture
def analysis_client() -> FakeAnalysisClient:
    return FakeAnalysisClient()


@pytest.fixture
def registry() -> ViewerRegistry:
    return ViewerRegistry(open_video=_open_video)


@pytest.fixture
def client(region_client, analysis_client, registry):
    ingestor = CaseIngestor(sampler=FrameSampler(open_video=_open_video), audio=FakeAudio())

    app.dependency_overrides[get_registry] = lambda: registry
    app.dependency_overrides[get_ingestor] = lambda: ingestor
    app.dependency_overrides[get_region_client] = lambda: region_client
    app.dependency_overrides[get_analysis_client] = lambda: analysis_client
    yield TestClient(app)
    app.dependency_overrides.clear()
    registry.close_all()


def _session(client: TestClient, resource: str = "/evidence/cam1.mp4") -> dict:
    return client.post("/api/v1/sessions", json={
        "source": {"id": "cam-1", "resource": resource, "display_name": "Dashcam"},
        "container": {"left": 0, "top": 0, "width": 320, "height": 180},
    })


def _drag(client: TestClient, sid: str, a: tuple, b: tuple, distance: str | None = None) -> dict:
    url = f"/api/v1/sessions/{sid}/pointer"
    client.post(url, json={"phase": "down", "x": a[0], "y": a[1]})
    client.post(url, json={"phase": "move", "x": b[0], "y": b[1]})
    res = client.post(url, json={"phase": "up", "x": b[0], "y": b[1], "distance": distance})
    assert res.status_code == 200
    return res.json()


def test_health(client) -> None:
    assert client.get("/api/v1/health").json() == {"status": "ok"}


def test_create_case_returns_frames(client) -> None:
    res = client.post("/api/v1/cases", json={
        "sources": [
            {"id": "dash", "resource": "/evidence/dash.mp4"},
            {"id": "cctv", "resource": "/evidence/cctv.mp4", "display_name": "CCTV"},
        ],
        "frame_count": 3,
    })
    assert res.status_code == 200
    body = res.json()

    assert body["audio"] is None
    assert [s["id"] for s in body["sources"]] == ["dash", "cctv"]
    assert body["sources"][0]["display_name"] == "dash"
    assert body["sources"][0]["timestamps"] == [1.0, 5.0, 9.0]
    assert len(body["sources"][1]["frames"]) == 3
    assert body["sources"][1]["frames"][0]["image_b64"].startswith("/9j/")


def test_create_case_without_images(client) -> None:
    res = client.post("/api/v1/cases?include_images=false", json={
        "sources": [{"id": "dash", "resource": "/evidence/dash.mp4"}],
    })
    assert "frames" not in res.json()["sources"][0]


def test_create_case_unreadable_source_is_422(client) -> None:
    res = client.post("/api/v1/cases", json={
        "sources": [{"id": "bad", "resource": "/evidence/corrupt.mp4"}],
    })
    assert res.status_code == 422
    assert "corrupt.mp4" in res.json()["detail"]


@pytest.mark.parametrize("body", [{"sources": []}, {"sources": [{"id": "a", "resource": "x"}], "frame_count": 1}])
def test_create_case_validates_request(client, body) -> None:
    assert client.post("/api/v1/cases", json=body).status_code == 422


def test_session_calibrate_and_measure_flow(client) -> None:
    res = _session(client)
    assert res.status_code == 200
    snap = res.json()
    sid = snap["session_id"]
    assert snap["mode"] == "view"
    assert snap["intrinsic"] == {"width": 640, "height": 360}

    client.post(f"/api/v1/sessions/{sid}/mode", json={"mode": "calibrate"})
    snap = _drag(client, sid, (10, 10), (110, 10), distance="5")
    assert snap["mode"] == "measure"
    assert snap["calibration"]["scale_factor"] == pytest.approx(40.0)

    client.post(f"/api/v1/sessions/{sid}/view", json={"time": 2.5})
    snap = _drag(client, sid, (0, 0), (0, 40))
    assert snap["measurements"][0]["label"] == "2.00 m"
    assert snap["measurements"][0]["source_timestamp"] == 2.5


def test_calibration_with_bad_distance_stays_in_calibrate(client) -> None:
    sid = _session(client).json()["session_id"]
    client.post(f"/api/v1/sessions/{sid}/mode", json={"mode": "calibrate"})
    snap = _drag(client, sid, (10, 10), (110, 10), distance="abc")
    assert snap["mode"] == "calibrate"
    assert snap["calibration"] is None


def test_mode_toggle_and_invalid_mode(client) -> None:
    sid = _session(client).json()["session_id"]
    url = f"/api/v1/sessions/{sid}/mode"
    assert client.post(url, json={"mode": "draw"}).json()["mode"] == "draw"
    assert client.post(url, json={"mode": "draw"}).json()["mode"] == "view"
    assert client.post(url, json={"mode": "laser"}).status_code == 422


def test_scan_region_then_query(client, region_client) -> None:
    sid = _session(client).json()["session_id"]
    client.post(f"/api/v1/sessions/{sid}/mode", json={"mode": "scan"})
    snap = _drag(client, sid, (10, 10), (60, 40))
    assert snap["mode"] == "view"

    roi = snap["regions"][0]
    assert roi["rect"] == {"x": 20.0, "y": 20.0, "width": 100.0, "height": 60.0}

    image = client.get(f"/api/v1/sessions/{sid}/regions/{roi['id']}/image")
    assert image.headers["content-type"] == "image/jpeg"
    decoded = cv2.imdecode(np.frombuffer(image.content, np.uint8), cv2.IMREAD_COLOR)
    assert decoded.shape == (60, 100, 3)

    res = client.post(f"/api/v1/sessions/{sid}/regions/{roi['id']}/query", json={"question": "Signal colour?"})
    assert res.status_code == 200
    assert res.json() == {
        "question": "Signal colour?",
        "answer": "Red",
        "confidence": "High",
        "details": "clear view",
    }
    assert region_client.asked == [(roi["id"], "Signal colour?")]


def test_region_query_collaborator_failure_is_502(client, region_client) -> None:
    sid = _session(client).json()["session_id"]
    client.post(f"/api/v1/sessions/{sid}/mode", json={"mode": "scan"})
    roi_id = _drag(client, sid, (10, 10), (60, 40))["regions"][0]["id"]

    region_client.error = requests.exceptions.ConnectionError("refused")
    res = client.post(f"/api/v1/sessions/{sid}/regions/{roi_id}/query", json={"question": "Plate?"})
    assert res.status_code == 502


def test_unknown_region_is_404(client) -> None:
    sid = _session(client).json()["session_id"]
    assert client.get(f"/api/v1/sessions/{sid}/regions/nope/image").status_code == 404
    res = client.post(f"/api/v1/sessions/{sid}/regions/nope/query", json={"question": "?"})
    assert res.status_code == 404


def test_color_and_reset(client) -> None:
    sid = _session(client).json()["session_id"]
    assert client.post(f"/api/v1/sessions/{sid}/color", json={"color": "#10b981"}).json()["annotation_color"] == "#10b981"
    assert client.post(f"/api/v1/sessions/{sid}/color", json={"color": "#abcdef"}).status_code == 400

    client.post(f"/api/v1/sessions/{sid}/mode", json={"mode": "draw"})
    assert len(_drag(client, sid, (0, 0), (50, 50))["strokes"]) == 1
    client.post(f"/api/v1/sessions/{sid}/view", json={"zoom": 2, "contrast": 150})

    snap = client.post(f"/api/v1/sessions/{sid}/reset").json()
    assert snap["strokes"] == []
    assert snap["mode"] == "view"
    assert (snap["zoom"], snap["contrast"]) == (1.0, 100.0)


def test_frame_endpoint_returns_native_jpeg(client) -> None:
    sid = _session(client).json()["session_id"]
    res = client.get(f"/api/v1/sessions/{sid}/frame")
    assert res.status_code == 200
    assert res.headers["content-type"] == "image/jpeg"
    decoded = cv2.imdecode(np.frombuffer(res.content, np.uint8), cv2.IMREAD_COLOR)
    assert decoded.shape == (360, 640, 3)


def test_unreadable_session_source_is_422(client) -> None:
    assert _session(client, resource="/evidence/corrupt.mp4").status_code == 422


def test_unknown_and_deleted_sessions_are_404(client) -> None:
    assert client.get("/api/v1/sessions/missing").status_code == 404

    sid = _session(client).json()["session_id"]
    assert client.delete(f"/api/v1/sessions/{sid}").json() == {"status": "closed"}
    assert client.get(f"/api/v1/sessions/{sid}").status_code == 404
    assert client.delete(f"/api/v1/sessions/{sid}").status_code == 404


def test_analysis_of_current_case(client, analysis_client) -> None:
    assert client.post("/api/v1/cases/current/analysis").status_code == 404

    client.post("/api/v1/cases", json={"sources": [{"id": "dash", "resource": "/evidence/dash.mp4"}]})
    res = client.post("/api/v1/cases/current/analysis", json={"prompt": "Who braked first?"})
    assert res.status_code == 200
    assert res.json() == {"generation": 1, "report": {"summary": "Rear-end collision"}}
    assert analysis_client.calls == [(1, "Who braked first?")]


@pytest.mark.parametrize("error", [
    requests.exceptions.ConnectionError("refused"),
    AnalysisParseError("no JSON block in response"),
])
def test_analysis_failure_is_502(client, analysis_client, error) -> None:
    client.post("/api/v1/cases", json={"sources": [{"id": "dash", "resource": "/evidence/dash.mp4"}]})
    analysis_client.error = error
    assert client.post("/api/v1/cases/current/analysis").status_code == 502


def test_speed_between_two_measurements(client) -> None:
    sid = _session(client).json()["session_id"]
    client.post(f"/api/v1/sessions/{sid}/mode", json={"mode": "calibrate"})
    _drag(client, sid, (10, 10), (110, 10), distance="5")

    client.post(f"/api/v1/sessions/{sid}/view", json={"time": 1.0})
    _drag(client, sid, (0, 0), (0, 40))
    client.post(f"/api/v1/sessions/{sid}/view", json={"time": 3.0})
    _drag(client, sid, (0, 0), (0, 60))

    res = client.get(f"/api/v1/sessions/{sid}/speed", params={"first": 0, "second": 1})
    assert res.status_code == 200
    body = res.json()
    assert body["distance_m"] == pytest.approx(1.0)
    assert body["elapsed_seconds"] == pytest.approx(2.0)
    assert body["meters_per_second"] == pytest.approx(0.5)
    assert body["kilometers_per_hour"] == pytest.approx(1.8)

    url = f"/api/v1/sessions/{sid}/speed"
    assert client.get(url, params={"first": 0, "second": 5}).status_code == 404
    assert client.get(url, params={"first": 1, "second": 1}).status_code == 400


def test_session_routes_wait_for_session_lock(client, registry) -> None:
    sid = _session(client).json()["session_id"]
    session = registry.get(sid)
    results = []

    session.lock.acquire()
    worker = threading.Thread(
        target=lambda: results.append(client.post(f"/api/v1/sessions/{sid}/view", json={"time": 4.0}))
    )
    worker.start()
    time.sleep(0.2)
    assert results == []
    assert session.playback_time == 0.0
    session.lock.release()

    worker.join(timeout=5)
    assert results[0].json()["playback_time"] == 4.0


def test_events_journal_records_published_events(client) -> None:
    event_journal.clear()
    client.post("/api/v1/cases", json={"sources": [{"id": "dash", "resource": "/evidence/dash.mp4"}]})
    sid = _session(client).json()["session_id"]
    client.post(f"/api/v1/sessions/{sid}/mode", json={"mode": "scan"})
    roi_id = _drag(client, sid, (10, 10), (60, 40))["regions"][0]["id"]

    events = client.get("/api/v1/events").json()["events"]
    assert [e["event_type"] for e in events] == ["case_ingested", "roi_captured"]
    assert events[1]["payload"]["id"] == roi_id

    only_roi = client.get("/api/v1/events", params={"event_type": "roi_captured"}).json()["events"]
    assert len(only_roi) == 1
