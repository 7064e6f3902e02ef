import base64
import uuid
from dataclasses import dataclass, field
from typing import Callable, Optional

import numpy as np

from incident_lens.core.errors import DegenerateGesture
from incident_lens.core.event_bus import ROI_CAPTURED, event_bus
from incident_lens.core.logging import get_logger
from incident_lens.tools.geometry import NativePoint, NativeRect
from incident_lens.tools.modes import GestureContext, ToolMode
from incident_lens.vision.filters import apply_contrast
from incident_lens.vision.frame_sampler import encode_jpeg


# Returns the full-resolution frame shown at the given playback second
FrameProvider = Callable[[float], np.ndarray]


@dataclass(frozen=True)
class RegionOfInterest:
    rect: NativeRect
    source_timestamp: float
    cropped_image_bytes: bytes
    contrast: float = 100.0
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])

    @property
    def image_b64(self) -> str:
        return base64.b64encode(self.cropped_image_bytes).decode("utf-8")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "rect": self.rect.to_dict(),
            "source_timestamp": self.source_timestamp,
            "contrast": self.contrast,
            "image_size_bytes": len(self.cropped_image_bytes),
        }


def crop_region(frame: np.ndarray, rect: NativeRect) -> np.ndarray:
    """
    Crop exactly round(width) x round(height) pixels starting at (x, y).
    Any part of the rectangle outside the frame comes back black, the same
    way drawing an out-of-bounds source region onto a canvas does.
    """
    h, w = frame.shape[:2]
    x0 = int(round(rect.x))
    y0 = int(round(rect.y))
    cw = int(round(rect.width))
    ch = int(round(rect.height))

    out = np.zeros((ch, cw) + frame.shape[2:], dtype=frame.dtype)

    sx1, sy1 = max(0, x0), max(0, y0)
    sx2, sy2 = min(w, x0 + cw), min(h, y0 + ch)
    if sx2 > sx1 and sy2 > sy1:
        out[sy1 - y0:sy2 - y0, sx1 - x0:sx2 - x0] = frame[sy1:sy2, sx1:sx2]
    return out


def require_min_region(rect: NativeRect, minimum: float) -> NativeRect:
    if rect.width < minimum or rect.height < minimum:
        raise DegenerateGesture(
            f"region {rect.width:.1f}x{rect.height:.1f}px is smaller than {minimum}x{minimum}px"
        )
    return rect


class RegionCapture:
    """
    Full-resolution crops of the current frame (mode = scan).

    The crop is taken from the frame at the current playback time, not from
    a stored FrameSample, with the viewer's contrast filter baked in.
    """

    def __init__(
        self,
        frame_provider: FrameProvider,
        min_region_pixels: float = 10.0,
        jpeg_quality: int = 92,
    ):
        self.logger = get_logger()
        self.frame_provider = frame_provider
        self.min_region_pixels = min_region_pixels
        self.jpeg_quality = jpeg_quality
        self.start: Optional[NativePoint] = None
        self.end: Optional[NativePoint] = None
        self._regions: list[RegionOfInterest] = []

    @property
    def regions(self) -> tuple[RegionOfInterest, ...]:
        return tuple(self._regions)

    @property
    def in_progress(self) -> bool:
        return self.start is not None

    @property
    def preview(self) -> Optional[NativeRect]:
        if self.start is None or self.end is None:
            return None
        return NativeRect.from_corners(self.start, self.end)

    def get(self, roi_id: str) -> Optional[RegionOfInterest]:
        for roi in self._regions:
            if roi.id == roi_id:
                return roi
        return None

    def pointer_down(self, point: NativePoint, ctx: GestureContext) -> None:
        self.start = point
        self.end = point

    def pointer_move(self, point: NativePoint, ctx: GestureContext) -> None:
        if self.start is not None:
            self.end = point

    def pointer_up(self, point: NativePoint, ctx: GestureContext) -> Optional[ToolMode]:
        if self.start is None:
            return None
        rect = NativeRect.from_corners(self.start, point)
        self.cancel()

        try:
            require_min_region(rect, self.min_region_pixels)
        except DegenerateGesture as e:
            self.logger.debug("region_discarded", reason=str(e))
            return None

        self.capture(rect, ctx.playback_time, ctx.contrast)
        return ToolMode.VIEW

    def capture(self, rect: NativeRect, playback_time: float, contrast: float) -> RegionOfInterest:
        frame = self.frame_provider(playback_time)
        filtered = apply_contrast(frame, contrast)
        crop = crop_region(filtered, rect)

        roi = RegionOfInterest(
            rect=rect,
            source_timestamp=playback_time,
            cropped_image_bytes=encode_jpeg(crop, self.jpeg_quality),
            contrast=contrast,
        )
        self._regions.append(roi)
        self.logger.info(
            "region_captured",
            roi_id=roi.id,
            second=playback_time,
            width=crop.shape[1],
            height=crop.shape[0],
        )
        event_bus.publish(ROI_CAPTURED, roi.to_dict())
        return roi

    def cancel(self) -> None:
        self.start = None
        self.end = None

    def clear(self) -> None:
        self.cancel()
        self._regions.clear()
