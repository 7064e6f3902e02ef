from dataclasses import dataclass
from typing import Optional

from incident_lens.core.logging import get_logger
from incident_lens.tools.geometry import NativePoint
from incident_lens.tools.modes import GestureContext, ToolMode


# Palette offered by the annotation toolbar
ANNOTATION_COLORS = ("#ef4444", "#f59e0b", "#10b981", "#3b82f6", "#ffffff")
DEFAULT_ANNOTATION_COLOR = ANNOTATION_COLORS[0]


@dataclass(frozen=True)
class AnnotationStroke:
    points: tuple[NativePoint, ...]
    color: str

    def to_dict(self) -> dict:
        return {"color": self.color, "points": [p.to_dict() for p in self.points]}


class AnnotationEngine:
    """
    Freehand strokes (mode = draw).

    A stroke is append-only while the drag is open and is committed on
    pointer-up only if it moved past its starting point. Cancelling (a mode
    switch mid-drag) drops the open stroke.
    """

    def __init__(self):
        self.logger = get_logger()
        self.color = DEFAULT_ANNOTATION_COLOR
        self._strokes: list[AnnotationStroke] = []
        self._current: Optional[list[NativePoint]] = None

    @property
    def strokes(self) -> tuple[AnnotationStroke, ...]:
        return tuple(self._strokes)

    @property
    def current_path(self) -> tuple[NativePoint, ...]:
        return tuple(self._current or ())

    @property
    def in_progress(self) -> bool:
        return self._current is not None

    def set_color(self, color: str) -> None:
        color = color.lower()
        if color not in ANNOTATION_COLORS:
            raise ValueError(f"unsupported annotation color {color!r}")
        self.color = color

    def pointer_down(self, point: NativePoint, ctx: GestureContext) -> None:
        self._current = [point]

    def pointer_move(self, point: NativePoint, ctx: GestureContext) -> None:
        if self._current is None:
            return
        self._current.append(point)

    def pointer_up(self, point: NativePoint, ctx: GestureContext) -> Optional[ToolMode]:
        if self._current is None:
            return None

        points = self._current
        if point != points[-1]:
            points.append(point)
        self._current = None

        if len(points) < 2:
            self.logger.debug("stroke_discarded", reason="no_movement")
            return None

        stroke = AnnotationStroke(points=tuple(points), color=self.color)
        self._strokes.append(stroke)
        self.logger.info("stroke_committed", points=len(stroke.points), color=stroke.color)
        return None

    def cancel(self) -> None:
        self._current = None

    def clear(self) -> None:
        self._strokes.clear()
        self._current = None
