from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import Response
from pydantic import BaseModel, Field
from typing import Callable, Literal, Optional

import requests

from incident_lens.analysis.clients import IncidentAnalysisClient, RegionQueryClient
from incident_lens.core.errors import AnalysisParseError, SourceUnreadable
from incident_lens.events.handlers import EventJournal, event_journal
from incident_lens.core.logging import get_logger
from incident_lens.ingest.case import CaseIngestor
from incident_lens.tools.geometry import CanvasRect, ScreenPoint
from incident_lens.tools.modes import ToolMode
from incident_lens.tools.overlay import render_overlay
from incident_lens.tools.session import ViewerSession
from incident_lens.vision.frame_sampler import encode_jpeg
from incident_lens.vision.video_source import OpenCVVideo, SeekableVideo, VideoSource

router = APIRouter()
logger = get_logger()


# ── In-memory state (nothing survives a restart) ───────────────────────────────

class ViewerRegistry:
    """Live viewer sessions and the decoder each one reads frames from."""

    def __init__(self, open_video: Callable[[str], SeekableVideo] = OpenCVVideo):
        self.open_video = open_video
        self._sessions: dict[str, ViewerSession] = {}
        self._videos: dict[str, SeekableVideo] = {}

    def create(self, source: VideoSource, container: CanvasRect) -> ViewerSession:
        video = self.open_video(source.resource)
        try:
            metadata = video.metadata()
        except SourceUnreadable:
            video.close()
            raise
        session = ViewerSession(
            frame_provider=video.read_at,
            container=container,
            source=source,
            metadata=metadata,
        )
        self._sessions[session.id] = session
        self._videos[session.id] = video
        return session

    def get(self, session_id: str) -> Optional[ViewerSession]:
        return self._sessions.get(session_id)

    def close(self, session_id: str) -> bool:
        session = self._sessions.pop(session_id, None)
        video = self._videos.pop(session_id, None)
        if video is not None:
            video.close()
        return session is not None

    def close_all(self) -> None:
        for session_id in list(self._sessions):
            self.close(session_id)


viewer_registry = ViewerRegistry()
case_ingestor = CaseIngestor()


def get_registry() -> ViewerRegistry:
    return viewer_registry


def get_ingestor() -> CaseIngestor:
    return case_ingestor


def get_region_client() -> RegionQueryClient:
    return RegionQueryClient()


def get_analysis_client() -> IncidentAnalysisClient:
    return IncidentAnalysisClient()


def get_journal() -> EventJournal:
    return event_journal


def require_session(session_id: str, registry: ViewerRegistry = Depends(get_registry)) -> ViewerSession:
    session = registry.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Viewer session not found")
    return session


# ── Schemas ────────────────────────────────────────────────────────────────────

class SourceIn(BaseModel):
    id: str
    resource: str
    display_name: Optional[str] = None

    def to_source(self) -> VideoSource:
        return VideoSource(id=self.id, resource=self.resource, display_name=self.display_name or self.id)


class RectIn(BaseModel):
    left: float = 0.0
    top: float = 0.0
    width: float = Field(..., gt=0)
    height: float = Field(..., gt=0)

    def to_rect(self) -> CanvasRect:
        return CanvasRect(left=self.left, top=self.top, width=self.width, height=self.height)


class CaseRequest(BaseModel):
    sources: list[SourceIn] = Field(..., min_length=1)
    frame_count: Optional[int] = Field(None, ge=2)


class SessionRequest(BaseModel):
    source: SourceIn
    container: RectIn


class ModeRequest(BaseModel):
    mode: ToolMode


class PointerRequest(BaseModel):
    phase: Literal["down", "move", "up"]
    x: float
    y: float
    # Answer to the calibration distance prompt (decimal meters)
    distance: Optional[str] = None


class ViewRequest(BaseModel):
    zoom: Optional[float] = None
    pan_x: Optional[float] = None
    pan_y: Optional[float] = None
    contrast: Optional[float] = None
    time: Optional[float] = None
    container: Optional[RectIn] = None


class ColorRequest(BaseModel):
    color: str


class AnalysisRequest(BaseModel):
    prompt: Optional[str] = None


class RegionQueryRequest(BaseModel):
    question: str = Field(..., min_length=1)


class RegionAnswerResponse(BaseModel):
    question: str
    answer: str
    confidence: str
    details: str


# ── Health ─────────────────────────────────────────────────────────────────────

@router.get("/health")
def health():
    return {"status": "ok"}


# ── Case ingestion ─────────────────────────────────────────────────────────────

@router.post("/cases")
async def create_case(
    body: CaseRequest,
    include_images: bool = Query(True),
    ingestor: CaseIngestor = Depends(get_ingestor),
):
    """
    Sample frames for every source and extract audio from the first one.
    Returns 409 if a newer case replaced this one before it finished.
    """
    sources = [s.to_source() for s in body.sources]
    try:
        result = await ingestor.ingest(sources, body.frame_count)
    except SourceUnreadable as e:
        logger.error("case_ingestion_failed", resource=e.resource, error=e.reason)
        raise HTTPException(status_code=422, detail=str(e))

    if result is None:
        raise HTTPException(status_code=409, detail="Case superseded by a newer request")

    response = result.summary()
    if include_images:
        for entry, source_frames in zip(response["sources"], result.sources):
            entry["frames"] = [
                {"timestamp": f.timestamp_seconds, "image_b64": f.image_b64}
                for f in source_frames.frames
            ]
        if result.audio is not None:
            response["audio"]["wav_b64"] = result.audio.wav_b64
    return response


# ── Incident analysis ──────────────────────────────────────────────────────────

@router.post("/cases/current/analysis")
def analyze_current_case(
    body: Optional[AnalysisRequest] = None,
    ingestor: CaseIngestor = Depends(get_ingestor),
    client: IncidentAnalysisClient = Depends(get_analysis_client),
):
    """Send the most recent accepted case to the reasoning engine."""
    case = ingestor.current
    if case is None:
        raise HTTPException(status_code=404, detail="No case has been ingested yet")
    try:
        result = client.analyze(case, body.prompt if body else None)
    except requests.exceptions.RequestException as e:
        logger.error("incident_analysis_failed", generation=case.generation, error=str(e))
        raise HTTPException(status_code=502, detail="Reasoning engine unavailable")
    except AnalysisParseError as e:
        logger.error("incident_analysis_unparsable", generation=case.generation, error=str(e))
        raise HTTPException(status_code=502, detail=str(e))
    return {"generation": case.generation, "report": result.report}


# ── Events ─────────────────────────────────────────────────────────────────────

@router.get("/events")
def list_events(
    event_type: Optional[str] = Query(None),
    journal: EventJournal = Depends(get_journal),
):
    return {"events": journal.entries(event_type)}


# ── Viewer sessions ────────────────────────────────────────────────────────────

@router.post("/sessions")
def create_session(body: SessionRequest, registry: ViewerRegistry = Depends(get_registry)):
    try:
        session = registry.create(body.source.to_source(), body.container.to_rect())
    except SourceUnreadable as e:
        logger.error("viewer_source_unreadable", resource=e.resource, error=e.reason)
        raise HTTPException(status_code=422, detail=str(e))
    return session.snapshot()




# Sync routes run in the threadpool, so every handler that touches a session
# holds session.lock until its snapshot is built.

@router.get("/sessions/{session_id}")
def get_session(session: ViewerSession = Depends(require_session)):
    with session.lock:
        return session.snapshot()


@router.delete("/sessions/{session_id}")
def delete_session(session_id: str, registry: ViewerRegistry = Depends(get_registry)):
    if not registry.close(session_id):
        raise HTTPException(status_code=404, detail="Viewer session not found")
    return {"status": "closed"}


@router.post("/sessions/{session_id}/mode")
def select_mode(body: ModeRequest, session: ViewerSession = Depends(require_session)):
    with session.lock:
        session.select_tool(body.mode)
        return session.snapshot()


@router.post("/sessions/{session_id}/pointer")
def pointer_event(body: PointerRequest, session: ViewerSession = Depends(require_session)):
    point = ScreenPoint(body.x, body.y)
    with session.lock:
        try:
            if body.phase == "down":
                session.pointer_down(point)
            elif body.phase == "move":
                session.pointer_move(point)
            else:
                session.pointer_up(point, prompt=lambda _length: body.distance)
        except SourceUnreadable as e:
            raise HTTPException(status_code=422, detail=str(e))
        return session.snapshot()


@router.post("/sessions/{session_id}/view")
def update_view(body: ViewRequest, session: ViewerSession = Depends(require_session)):
    with session.lock:
        if body.container is not None:
            session.resize(body.container.to_rect())
        if body.zoom is not None:
            session.set_zoom(body.zoom)
        if body.pan_x is not None or body.pan_y is not None:
            session.set_pan(
                body.pan_x if body.pan_x is not None else session.geometry.pan_x,
                body.pan_y if body.pan_y is not None else session.geometry.pan_y,
            )
        if body.contrast is not None:
            session.set_contrast(body.contrast)
        if body.time is not None:
            session.set_playback_time(body.time)
        return session.snapshot()


@router.post("/sessions/{session_id}/color")
def set_color(body: ColorRequest, session: ViewerSession = Depends(require_session)):
    with session.lock:
        try:
            session.set_annotation_color(body.color)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return session.snapshot()


@router.post("/sessions/{session_id}/reset")
def reset_tools(session: ViewerSession = Depends(require_session)):
    with session.lock:
        session.reset_tools()
        return session.snapshot()


@router.get("/sessions/{session_id}/speed")
def measured_speed(
    first: int = Query(..., ge=0),
    second: int = Query(..., ge=0),
    session: ViewerSession = Depends(require_session),
):
    """
    Average speed between two measurements taken on different frames, each
    drawn from the same fixed reference to the moving object.
    """
    with session.lock:
        try:
            estimate = session.speed_between(first, second)
        except IndexError as e:
            raise HTTPException(status_code=404, detail=str(e))
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
    return {"first": first, "second": second, **estimate.to_dict()}


@router.get("/sessions/{session_id}/frame")
def current_frame(session: ViewerSession = Depends(require_session)):
    """JPEG of the frame at the current playback time with overlays drawn in."""
    with session.lock:
        try:
            frame = session.current_frame()
        except SourceUnreadable as e:
            raise HTTPException(status_code=422, detail=str(e))
        image = render_overlay(frame, session)
    return Response(content=encode_jpeg(image, 90), media_type="image/jpeg")


@router.get("/sessions/{session_id}/regions/{roi_id}/image")
def region_image(roi_id: str, session: ViewerSession = Depends(require_session)):
    with session.lock:
        roi = session.regions.get(roi_id)
    if roi is None:
        raise HTTPException(status_code=404, detail="Region not found")
    return Response(content=roi.cropped_image_bytes, media_type="image/jpeg")


@router.post("/sessions/{session_id}/regions/{roi_id}/query", response_model=RegionAnswerResponse)
def query_region(
    roi_id: str,
    body: RegionQueryRequest,
    session: ViewerSession = Depends(require_session),
    client: RegionQueryClient = Depends(get_region_client),
):
    with session.lock:
        roi = session.regions.get(roi_id)
    if roi is None:
        raise HTTPException(status_code=404, detail="Region not found")
    # The collaborator call runs outside the lock; the region itself is immutable
    try:
        answer = client.ask(roi, body.question)
    except requests.exceptions.RequestException as e:
        logger.error("region_query_failed", roi_id=roi_id, error=str(e))
        raise HTTPException(status_code=502, detail="Region query collaborator unavailable")
    return RegionAnswerResponse(**answer.to_dict())
