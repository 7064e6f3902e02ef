"""
Screen-space to native-pixel mapping for the measurement overlay.

The overlay canvas has an intrinsic size equal to the video's native
resolution but is displayed at whatever size the container gives it (and is
further scaled/translated by zoom and pan). Every tool consumes points through
CoordinateMapper.to_native so that lines, strokes and crops are always
expressed in the video's own pixels.
"""

import math
from dataclasses import dataclass, replace


@dataclass(frozen=True)
class ScreenPoint:
    x: float
    y: float


@dataclass(frozen=True)
class NativePoint:
    x: float
    y: float

    def to_dict(self) -> dict:
        return {"x": round(self.x, 3), "y": round(self.y, 3)}


@dataclass(frozen=True)
class CanvasRect:
    """On-screen bounding rectangle (like getBoundingClientRect)."""
    left: float
    top: float
    width: float
    height: float


@dataclass(frozen=True)
class Size:
    width: int
    height: int


@dataclass(frozen=True)
class NativeRect:
    x: float
    y: float
    width: float
    height: float

    @classmethod
    def from_corners(cls, a: NativePoint, b: NativePoint) -> "NativeRect":
        return cls(
            x=min(a.x, b.x),
            y=min(a.y, b.y),
            width=abs(b.x - a.x),
            height=abs(b.y - a.y),
        )

    def to_dict(self) -> dict:
        return {
            "x": round(self.x, 3), "y": round(self.y, 3),
            "width": round(self.width, 3), "height": round(self.height, 3),
        }


def pixel_length(a: NativePoint, b: NativePoint) -> float:
    return math.hypot(b.x - a.x, b.y - a.y)


class CoordinateMapper:

    @staticmethod
    def to_native(screen: ScreenPoint, rect: CanvasRect, intrinsic: Size) -> NativePoint:
        if rect.width <= 0 or rect.height <= 0:
            raise ValueError(f"canvas has no display area: {rect.width}x{rect.height}")

        scale_x = intrinsic.width / rect.width
        scale_y = intrinsic.height / rect.height
        return NativePoint(
            x=(screen.x - rect.left) * scale_x,
            y=(screen.y - rect.top) * scale_y,
        )


@dataclass(frozen=True)
class ViewportGeometry:
    """
    Container rectangle + intrinsic canvas size + zoom/pan, recomputed as a
    value whenever the source or container changes.

    Zoom and pan behave like a CSS `scale(zoom) translate(pan)` transform
    about the container centre: a container-relative point p ends up at
    centre + zoom * (p - centre + pan).
    """
    container: CanvasRect
    intrinsic: Size
    zoom: float = 1.0
    pan_x: float = 0.0
    pan_y: float = 0.0

    @property
    def canvas_rect(self) -> CanvasRect:
        cx = self.container.left + self.container.width / 2
        cy = self.container.top + self.container.height / 2
        width = self.container.width * self.zoom
        height = self.container.height * self.zoom
        return CanvasRect(
            left=cx - width / 2 + self.pan_x * self.zoom,
            top=cy - height / 2 + self.pan_y * self.zoom,
            width=width,
            height=height,
        )

    def to_native(self, screen: ScreenPoint) -> NativePoint:
        return CoordinateMapper.to_native(screen, self.canvas_rect, self.intrinsic)

    def with_container(self, container: CanvasRect) -> "ViewportGeometry":
        return replace(self, container=container)

    def with_intrinsic(self, intrinsic: Size) -> "ViewportGeometry":
        return replace(self, intrinsic=intrinsic)

    def with_view(self, zoom: float, pan_x: float, pan_y: float) -> "ViewportGeometry":
        return replace(self, zoom=zoom, pan_x=pan_x, pan_y=pan_y)
