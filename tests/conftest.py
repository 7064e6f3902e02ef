from __future__ import annotations

import numpy as np
import pytest

from incident_lens.core.errors import SourceUnreadable
from incident_lens.core.event_bus import event_bus
from incident_lens.tools.geometry import CanvasRect
from incident_lens.tools.session import ViewerSession
from incident_lens.vision.video_source import VideoMetadata, VideoSource


class FakeVideo:
    """
    In-memory SeekableVideo. Each frame is a horizontal gradient whose green
    channel encodes the second it was read at, so tests can tell frames apart.
    """

    def __init__(
        self,
        duration: float = 10.0,
        width: int = 640,
        height: int = 360,
        fps: float = 30.0,
        snap_to: float | None = None,
        fail_metadata: bool = False,
    ) -> None:
        self.duration = duration
        self.width = width
        self.height = height
        self.fps = fps
        self.snap_to = snap_to
        self.fail_metadata = fail_metadata
        self.reads: list[float] = []
        self.closed = False

    def metadata(self) -> VideoMetadata:
        if self.fail_metadata:
            raise SourceUnreadable("fake://video", "corrupt header")
        return VideoMetadata(
            duration_seconds=self.duration,
            native_width=self.width,
            native_height=self.height,
            fps=self.fps,
        )

    def read_at(self, seconds: float) -> np.ndarray:
        self.reads.append(seconds)
        if self.snap_to:
            seconds = round(seconds / self.snap_to) * self.snap_to
        frame = np.zeros((self.height, self.width, 3), dtype=np.uint8)
        frame[:, :, 0] = np.linspace(0, 255, self.width, dtype=np.uint8)[None, :]
        frame[:, :, 1] = int(seconds * 10) % 256
        return frame

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def source() -> VideoSource:
    return VideoSource(id="cam-1", resource="/evidence/cam1.mp4", display_name="Dashcam")


@pytest.fixture
def fake_video() -> FakeVideo:
    return FakeVideo()


@pytest.fixture
def make_session(source, fake_video):
    def _make(
        container: CanvasRect | None = None,
        video: FakeVideo | None = None,
    ) -> ViewerSession:
        video = video or fake_video
        return ViewerSession(
            frame_provider=video.read_at,
            container=container or CanvasRect(left=0, top=0, width=320, height=180),
            source=source,
            metadata=video.metadata(),
        )

    return _make


@pytest.fixture
def published():
    """Collect payloads published on the event bus during a test."""
    seen: list[tuple[str, dict]] = []
    handlers = []

    def _watch(event_type: str):
        def handler(payload: dict) -> None:
            seen.append((event_type, payload))

        event_bus.subscribe(event_type, handler)
        handlers.append((event_type, handler))
        return seen

    yield _watch
    for event_type, handler in handlers:
        event_bus.unsubscribe(event_type, handler)
