from dataclasses import dataclass
from typing import Optional

from incident_lens.core.errors import DegenerateGesture
from incident_lens.core.logging import get_logger
from incident_lens.tools.calibration import CalibrationEngine, DragLine, require_min_length
from incident_lens.tools.geometry import NativePoint
from incident_lens.tools.modes import GestureContext, ToolMode


@dataclass(frozen=True)
class Measurement:
    line_start: NativePoint
    line_end: NativePoint
    pixel_length: float
    scale_factor: float            # px/m in force when the line was drawn
    source_timestamp: float

    @property
    def real_length_m(self) -> float:
        return self.pixel_length / self.scale_factor

    @property
    def label(self) -> str:
        return f"{self.real_length_m:.2f} m"

    def to_dict(self) -> dict:
        return {
            "line_start": self.line_start.to_dict(),
            "line_end": self.line_end.to_dict(),
            "pixel_length": round(self.pixel_length, 3),
            "scale_factor": self.scale_factor,
            "real_length_m": self.real_length_m,
            "source_timestamp": self.source_timestamp,
            "label": self.label,
        }


@dataclass(frozen=True)
class SpeedEstimate:
    distance_m: float
    elapsed_seconds: float

    @property
    def meters_per_second(self) -> float:
        return self.distance_m / self.elapsed_seconds

    @property
    def kilometers_per_hour(self) -> float:
        return self.meters_per_second * 3.6

    def to_dict(self) -> dict:
        return {
            "distance_m": self.distance_m,
            "elapsed_seconds": self.elapsed_seconds,
            "meters_per_second": self.meters_per_second,
            "kilometers_per_hour": self.kilometers_per_hour,
        }


def estimate_speed(distance_m: float, elapsed_seconds: float) -> SpeedEstimate:
    """
    Average speed over a measured displacement, e.g. a vehicle's position
    measured on two frames `elapsed_seconds` apart.
    """
    if elapsed_seconds <= 0:
        raise ValueError("elapsed_seconds must be greater than 0")
    if distance_m < 0:
        raise ValueError("distance_m must not be negative")
    return SpeedEstimate(distance_m=distance_m, elapsed_seconds=elapsed_seconds)


class MeasurementEngine(DragLine):
    """
    Real-world distances (mode = measure). Inert until a calibration exists.
    """

    def __init__(self, calibration: CalibrationEngine, min_line_pixels: float = 5.0):
        super().__init__()
        self.logger = get_logger()
        self.calibration = calibration
        self.min_line_pixels = min_line_pixels
        self._measurements: list[Measurement] = []

    @property
    def measurements(self) -> tuple[Measurement, ...]:
        return tuple(self._measurements)

    @property
    def active(self) -> bool:
        return self.calibration.reference is not None

    def pointer_down(self, point: NativePoint, ctx: GestureContext) -> None:
        if not self.active:
            self.logger.debug("measurement_ignored", reason="not_calibrated")
            return
        super().pointer_down(point, ctx)

    def pointer_up(self, point: NativePoint, ctx: GestureContext) -> Optional[ToolMode]:
        line = self.finish(point)
        if line is None or not self.active:
            return None
        start, end = line

        try:
            length = require_min_length(start, end, self.min_line_pixels, strict=True)
        except DegenerateGesture as e:
            self.logger.debug("measurement_line_discarded", reason=str(e))
            return None

        measurement = Measurement(
            line_start=start,
            line_end=end,
            pixel_length=length,
            scale_factor=self.calibration.scale_factor,
            source_timestamp=ctx.playback_time,
        )
        self._measurements.append(measurement)
        self.logger.info(
            "measurement_added",
            pixel_length=round(length, 3),
            real_length_m=round(measurement.real_length_m, 4),
            second=ctx.playback_time,
        )
        return None

    def clear(self) -> None:
        self.cancel()
        self._measurements.clear()
