"""
One analyst's viewing surface over a loaded evidence video.

The session owns every piece of interactive state: viewport geometry, the
tool-mode state machine and its engines, contrast, zoom/pan and the current
playback time. Gesture handlers receive it by reference; nothing lives in
module globals.

Overlay state (strokes, calibration, measurements, regions) is kept per
session, not per source: switching the session to another source keeps it.
"""

import threading
import uuid
from typing import Optional

import numpy as np

from incident_lens.core.config import get_settings
from incident_lens.core.logging import get_logger
from incident_lens.tools.annotation import AnnotationEngine
from incident_lens.tools.calibration import CalibrationEngine
from incident_lens.tools.geometry import CanvasRect, ScreenPoint, Size, ViewportGeometry
from incident_lens.tools.measurement import MeasurementEngine, SpeedEstimate, estimate_speed
from incident_lens.tools.modes import (
    DistancePrompt,
    GestureContext,
    ToolMode,
    ToolModeStateMachine,
    ViewHandler,
)
from incident_lens.tools.region_capture import FrameProvider, RegionCapture
from incident_lens.vision.filters import MAX_CONTRAST, MIN_CONTRAST
from incident_lens.vision.video_source import VideoMetadata, VideoSource


MIN_ZOOM = 1.0
MAX_ZOOM = 8.0
DEFAULT_CONTRAST = 100.0


class ViewerSession:

    def __init__(
        self,
        frame_provider: FrameProvider,
        container: CanvasRect,
        source: Optional[VideoSource] = None,
        metadata: Optional[VideoMetadata] = None,
        session_id: Optional[str] = None,
    ):
        self.settings = get_settings()
        self.logger = get_logger()
        self.id = session_id or uuid.uuid4().hex[:12]
        # Held by callers that drive the session from several threads (HTTP routes)
        self.lock = threading.Lock()

        self.source: Optional[VideoSource] = None
        self.metadata: Optional[VideoMetadata] = None
        self.playback_time = 0.0
        self.contrast = DEFAULT_CONTRAST
        self.geometry = ViewportGeometry(container=container, intrinsic=self._default_size())
        self._pan_anchor: Optional[ScreenPoint] = None

        self.annotations = AnnotationEngine()
        self.calibration = CalibrationEngine(min_line_pixels=self.settings.min_line_pixels)
        self.measurements = MeasurementEngine(
            self.calibration, min_line_pixels=self.settings.min_line_pixels
        )
        self.regions = RegionCapture(
            frame_provider,
            min_region_pixels=self.settings.min_region_pixels,
            jpeg_quality=self.settings.roi_jpeg_quality,
        )
        self.tools = ToolModeStateMachine({
            ToolMode.VIEW: ViewHandler(),
            ToolMode.DRAW: self.annotations,
            ToolMode.SCAN: self.regions,
            ToolMode.CALIBRATE: self.calibration,
            ToolMode.MEASURE: self.measurements,
        })

        if source is not None:
            self.load_source(source, metadata)

    def _default_size(self) -> Size:
        return Size(self.settings.default_native_width, self.settings.default_native_height)

    @property
    def mode(self) -> ToolMode:
        return self.tools.mode

    @property
    def zoom(self) -> float:
        return self.geometry.zoom

    # ── Source & geometry ──────────────────────────────────────────────────────

    def load_source(self, source: VideoSource, metadata: Optional[VideoMetadata]) -> None:
        """Intrinsic canvas size follows the source's native size (default if unknown)."""
        self.source = source
        self.metadata = metadata
        if metadata and metadata.native_width > 0 and metadata.native_height > 0:
            intrinsic = Size(metadata.native_width, metadata.native_height)
        else:
            intrinsic = self._default_size()
        self.geometry = self.geometry.with_intrinsic(intrinsic)
        self.playback_time = 0.0
        self.logger.info(
            "viewer_source_loaded",
            session=self.id,
            source=source.id,
            width=intrinsic.width,
            height=intrinsic.height,
        )

    def resize(self, container: CanvasRect) -> None:
        self.geometry = self.geometry.with_container(container)

    def set_zoom(self, zoom: float) -> None:
        zoom = min(MAX_ZOOM, max(MIN_ZOOM, float(zoom)))
        pan_x, pan_y = (self.geometry.pan_x, self.geometry.pan_y) if zoom > 1 else (0.0, 0.0)
        self.geometry = self.geometry.with_view(zoom, pan_x, pan_y)

    def set_pan(self, pan_x: float, pan_y: float) -> None:
        if self.geometry.zoom <= 1:
            return
        self.geometry = self.geometry.with_view(self.geometry.zoom, float(pan_x), float(pan_y))

    def set_contrast(self, percent: float) -> None:
        self.contrast = min(MAX_CONTRAST, max(MIN_CONTRAST, float(percent)))

    def set_playback_time(self, seconds: float) -> None:
        """Clamped to [0, start of the last frame]."""
        seconds = max(0.0, float(seconds))
        if self.metadata and self.metadata.duration_seconds > 0:
            seconds = min(seconds, self.metadata.last_frame_seconds)
        self.playback_time = seconds

    def set_annotation_color(self, color: str) -> None:
        self.annotations.set_color(color)

    # ── Tools ──────────────────────────────────────────────────────────────────

    def select_tool(self, mode: ToolMode) -> ToolMode:
        self._pan_anchor = None
        return self.tools.select(mode)

    def _context(self, prompt: Optional[DistancePrompt] = None) -> GestureContext:
        return GestureContext(
            playback_time=self.playback_time,
            contrast=self.contrast,
            prompt=prompt,
        )

    def pointer_down(self, screen: ScreenPoint) -> None:
        if self.mode == ToolMode.VIEW:
            if self.zoom > 1:
                self._pan_anchor = screen
            return
        self.tools.pointer_down(self.geometry.to_native(screen), self._context())

    def pointer_move(self, screen: ScreenPoint) -> None:
        if self.mode == ToolMode.VIEW:
            self._pan(screen)
            return
        self.tools.pointer_move(self.geometry.to_native(screen), self._context())

    def pointer_up(self, screen: ScreenPoint, prompt: Optional[DistancePrompt] = None) -> ToolMode:
        if self.mode == ToolMode.VIEW:
            self._pan(screen)
            self._pan_anchor = None
            return self.mode
        return self.tools.pointer_up(self.geometry.to_native(screen), self._context(prompt))

    def _pan(self, screen: ScreenPoint) -> None:
        if self._pan_anchor is None or self.zoom <= 1:
            return
        dx = (screen.x - self._pan_anchor.x) / self.zoom
        dy = (screen.y - self._pan_anchor.y) / self.zoom
        self._pan_anchor = screen
        self.set_pan(self.geometry.pan_x + dx, self.geometry.pan_y + dy)

    def reset_tools(self) -> None:
        """Clear every overlay and restore the default view."""
        self.tools.reset()
        self.annotations.clear()
        self.calibration.clear()
        self.measurements.clear()
        self.regions.clear()
        self.contrast = DEFAULT_CONTRAST
        self.geometry = self.geometry.with_view(1.0, 0.0, 0.0)
        self._pan_anchor = None
        self.logger.info("viewer_tools_reset", session=self.id)

    def current_frame(self) -> np.ndarray:
        return self.regions.frame_provider(self.playback_time)

    def speed_between(self, first: int, second: int) -> SpeedEstimate:
        """
        Average speed from two measurements taken on different frames.

        Both lines are expected to run from the same fixed reference (a kerb
        mark, a lamp post) to the moving object, so the change in real length
        is the distance it covered between the two source timestamps.
        Raises IndexError for an unknown measurement and ValueError when both
        were taken at the same timestamp.
        """
        measurements = self.measurements.measurements
        if not (0 <= first < len(measurements)) or not (0 <= second < len(measurements)):
            raise IndexError(f"no measurement at index {first} or {second}")

        a, b = measurements[first], measurements[second]
        estimate = estimate_speed(
            abs(b.real_length_m - a.real_length_m),
            abs(b.source_timestamp - a.source_timestamp),
        )
        self.logger.info(
            "speed_estimated",
            session=self.id,
            meters_per_second=round(estimate.meters_per_second, 3),
            elapsed_seconds=round(estimate.elapsed_seconds, 3),
        )
        return estimate

    # ── Serialisation ──────────────────────────────────────────────────────────

    def snapshot(self) -> dict:
        reference = self.calibration.reference
        return {
            "session_id": self.id,
            "source": self.source.id if self.source else None,
            "mode": self.mode.value,
            "playback_time": self.playback_time,
            "contrast": self.contrast,
            "zoom": self.geometry.zoom,
            "pan": {"x": self.geometry.pan_x, "y": self.geometry.pan_y},
            "intrinsic": {
                "width": self.geometry.intrinsic.width,
                "height": self.geometry.intrinsic.height,
            },
            "annotation_color": self.annotations.color,
            "strokes": [s.to_dict() for s in self.annotations.strokes],
            "calibration": reference.to_dict() if reference else None,
            "measurements": [m.to_dict() for m in self.measurements.measurements],
            "regions": [r.to_dict() for r in self.regions.regions],
        }
