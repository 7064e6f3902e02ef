import math
import threading
from dataclasses import dataclass
from typing import Optional, Protocol

import cv2
import numpy as np

from incident_lens.core.errors import SourceUnreadable


@dataclass(frozen=True)
class VideoSource:
    """
    One loaded evidence file.
    `resource` is a local path or an http(s) URL that OpenCV/ffmpeg can open.
    """
    id: str
    resource: str
    display_name: str


@dataclass(frozen=True)
class VideoMetadata:
    duration_seconds: float
    native_width: int
    native_height: int
    fps: float

    @property
    def last_frame_seconds(self) -> float:
        """Start time of the final frame; `duration_seconds` itself is past the end."""
        if self.fps <= 0:
            return max(0.0, self.duration_seconds)
        return max(0.0, self.duration_seconds - 1.0 / self.fps)


class SeekableVideo(Protocol):
    """What the sampler and region capture need from a decoder."""

    def metadata(self) -> VideoMetadata: ...

    def read_at(self, seconds: float) -> np.ndarray: ...

    def close(self) -> None: ...


class OpenCVVideo:
    """
    cv2.VideoCapture wrapper with seek-then-read semantics.

    Seeking by CAP_PROP_POS_MSEC lands on the nearest decodable frame, so the
    frame returned may sit slightly before or after the requested time.
    """

    def __init__(self, resource: str, capture=None):
        self.resource = resource
        # Seek + read must happen as one step; request threads share this reader
        self._lock = threading.Lock()
        self.cap = capture if capture is not None else cv2.VideoCapture(resource)

        if not self.cap.isOpened():
            raise SourceUnreadable(resource, "failed to open video")

        self._metadata: Optional[VideoMetadata] = None

    def metadata(self) -> VideoMetadata:
        if self._metadata is not None:
            return self._metadata

        fps = float(self.cap.get(cv2.CAP_PROP_FPS) or 0.0)
        frame_count = float(self.cap.get(cv2.CAP_PROP_FRAME_COUNT) or 0.0)
        width = int(self.cap.get(cv2.CAP_PROP_FRAME_WIDTH) or 0)
        height = int(self.cap.get(cv2.CAP_PROP_FRAME_HEIGHT) or 0)

        if not fps or fps <= 0 or not math.isfinite(fps):
            raise SourceUnreadable(self.resource, f"invalid fps {fps!r}")
        if frame_count <= 0:
            raise SourceUnreadable(self.resource, "unknown frame count")
        if width <= 0 or height <= 0:
            raise SourceUnreadable(self.resource, f"invalid size {width}x{height}")

        self._metadata = VideoMetadata(
            duration_seconds=frame_count / fps,
            native_width=width,
            native_height=height,
            fps=fps,
        )
        return self._metadata

    def read_at(self, seconds: float) -> np.ndarray:
        with self._lock:
            # Some backends report False here yet still seek, so only the read decides
            self.cap.set(cv2.CAP_PROP_POS_MSEC, max(0.0, seconds) * 1000.0)

            # read() blocks until the seek has settled and a frame is decoded
            ret, frame = self.cap.read()
            if (not ret or frame is None) and seconds > 0:
                # Seeking at or past the end: fall back to the last decodable frame
                ret, frame = self._read_last_frame()
        if not ret or frame is None:
            raise SourceUnreadable(self.resource, f"no frame decoded at {seconds:.3f}s")
        return frame

    def _read_last_frame(self):
        frame_count = int(self.cap.get(cv2.CAP_PROP_FRAME_COUNT) or 0)
        if frame_count <= 0:
            return False, None
        self.cap.set(cv2.CAP_PROP_POS_FRAMES, frame_count - 1)
        return self.cap.read()

    def close(self) -> None:
        cap = getattr(self, "cap", None)
        if cap is not None and cap.isOpened():
            cap.release()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def __del__(self):
        """Ensure the video capture is always released, even on exceptions."""
        self.close()
