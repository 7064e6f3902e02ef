"""
Scale calibration (mode = calibrate).

The analyst drags a line over something of known physical length (a lane
marking, a parked car) and types that length in meters. The ratio gives the
pixels-per-meter scale used by the measurement tool.

Only one reference is active at a time. A new one replaces the old; existing
measurements keep the scale they were taken with.
"""

import math
from dataclasses import dataclass
from typing import Optional, Union

from incident_lens.core.errors import DegenerateGesture, InvalidCalibrationInput
from incident_lens.core.event_bus import CALIBRATION_COMMITTED, event_bus
from incident_lens.core.logging import get_logger
from incident_lens.tools.geometry import NativePoint, pixel_length
from incident_lens.tools.modes import GestureContext, ToolMode


@dataclass(frozen=True)
class CalibrationReference:
    line_start: NativePoint
    line_end: NativePoint
    real_world_distance_m: float

    @property
    def pixel_length(self) -> float:
        return pixel_length(self.line_start, self.line_end)

    @property
    def scale_factor(self) -> float:
        """Pixels per meter."""
        return self.pixel_length / self.real_world_distance_m

    def to_dict(self) -> dict:
        return {
            "line_start": self.line_start.to_dict(),
            "line_end": self.line_end.to_dict(),
            "real_world_distance_m": self.real_world_distance_m,
            "pixel_length": round(self.pixel_length, 3),
            "scale_factor": self.scale_factor,
        }


def parse_distance(value: Union[str, float, int, None]) -> float:
    """Decimal meters from prompt input. Rejects empty, non-numeric, non-finite and <= 0."""
    if value is None:
        raise InvalidCalibrationInput("no distance entered")
    if isinstance(value, bool):
        raise InvalidCalibrationInput(f"not a number: {value!r}")
    try:
        distance = float(value.strip() if isinstance(value, str) else value)
    except (TypeError, ValueError) as e:
        raise InvalidCalibrationInput(f"not a number: {value!r}") from e
    if not math.isfinite(distance) or distance <= 0:
        raise InvalidCalibrationInput(f"distance must be a positive number, got {value!r}")
    return distance


def require_min_length(
    start: NativePoint, end: NativePoint, minimum: float, strict: bool = False
) -> float:
    """`strict` also rejects a line of exactly `minimum` pixels."""
    length = pixel_length(start, end)
    if length < minimum or (strict and length <= minimum):
        bound = "longer than" if strict else "at least"
        raise DegenerateGesture(f"line of {length:.2f}px must be {bound} {minimum}px")
    return length


class DragLine:
    """Press-drag-release line shared by calibration and measurement."""

    def __init__(self):
        self.start: Optional[NativePoint] = None
        self.end: Optional[NativePoint] = None

    @property
    def in_progress(self) -> bool:
        return self.start is not None

    @property
    def preview(self) -> Optional[tuple[NativePoint, NativePoint]]:
        if self.start is None or self.end is None:
            return None
        return self.start, self.end

    def pointer_down(self, point: NativePoint, ctx: GestureContext) -> None:
        self.start = point
        self.end = point

    def pointer_move(self, point: NativePoint, ctx: GestureContext) -> None:
        if self.start is not None:
            self.end = point

    def finish(self, point: NativePoint) -> Optional[tuple[NativePoint, NativePoint]]:
        if self.start is None:
            return None
        line = (self.start, point)
        self.cancel()
        return line

    def cancel(self) -> None:
        self.start = None
        self.end = None


class CalibrationEngine(DragLine):

    def __init__(self, min_line_pixels: float = 5.0):
        super().__init__()
        self.logger = get_logger()
        self.min_line_pixels = min_line_pixels
        self.reference: Optional[CalibrationReference] = None

    @property
    def scale_factor(self) -> Optional[float]:
        return self.reference.scale_factor if self.reference else None

    def pointer_up(self, point: NativePoint, ctx: GestureContext) -> Optional[ToolMode]:
        line = self.finish(point)
        if line is None:
            return None
        start, end = line

        try:
            length = require_min_length(start, end, self.min_line_pixels)
        except DegenerateGesture as e:
            self.logger.debug("calibration_line_discarded", reason=str(e))
            return None

        answer = ctx.prompt(length) if ctx.prompt else None
        try:
            distance = parse_distance(answer)
        except InvalidCalibrationInput as e:
            self.logger.info("calibration_input_rejected", reason=str(e))
            return None

        self.commit(start, end, distance)
        return ToolMode.MEASURE

    def commit(self, start: NativePoint, end: NativePoint, distance_m: float) -> CalibrationReference:
        previous = self.reference
        self.reference = CalibrationReference(
            line_start=start,
            line_end=end,
            real_world_distance_m=distance_m,
        )
        self.logger.info(
            "calibration_committed",
            pixel_length=round(self.reference.pixel_length, 3),
            distance_m=distance_m,
            scale_factor=self.reference.scale_factor,
            replaced=previous is not None,
        )
        event_bus.publish(CALIBRATION_COMMITTED, self.reference.to_dict())
        return self.reference

    def clear(self) -> None:
        self.cancel()
        self.reference = None
