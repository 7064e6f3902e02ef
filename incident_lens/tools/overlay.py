import cv2
import numpy as np

from incident_lens.tools.geometry import NativePoint
from incident_lens.tools.modes import ToolMode
from incident_lens.tools.session import ViewerSession
from incident_lens.vision.filters import apply_contrast


STROKE_WIDTH = 4
CALIBRATION_COLOR = "#facc15"   # yellow
MEASUREMENT_COLOR = "#22c55e"   # green
ROI_COLOR = "#06b6d4"           # cyan
ROI_CORNER = 10


def hex_to_bgr(color: str) -> tuple[int, int, int]:
    color = color.lstrip("#")
    if len(color) != 6:
        raise ValueError(f"expected #rrggbb, got {color!r}")
    r, g, b = (int(color[i:i + 2], 16) for i in (0, 2, 4))
    return b, g, r


def _pt(p: NativePoint) -> tuple[int, int]:
    return int(round(p.x)), int(round(p.y))


def _polyline(img, points, color: str, width: int = STROKE_WIDTH):
    if len(points) < 2:
        return
    pts = np.array([_pt(p) for p in points], dtype=np.int32).reshape(-1, 1, 2)
    cv2.polylines(img, [pts], False, hex_to_bgr(color), width, lineType=cv2.LINE_AA)


def _label(img, text: str, at: NativePoint, color: str):
    x, y = _pt(at)
    # dark outline keeps labels readable over bright footage
    cv2.putText(img, text, (x + 6, y - 6), cv2.FONT_HERSHEY_SIMPLEX, 0.8, (0, 0, 0), 4, cv2.LINE_AA)
    cv2.putText(img, text, (x + 6, y - 6), cv2.FONT_HERSHEY_SIMPLEX, 0.8, hex_to_bgr(color), 2, cv2.LINE_AA)


def _midpoint(a: NativePoint, b: NativePoint) -> NativePoint:
    return NativePoint((a.x + b.x) / 2, (a.y + b.y) / 2)


def _region_preview(img, rect):
    x1, y1 = int(round(rect.x)), int(round(rect.y))
    x2, y2 = int(round(rect.x + rect.width)), int(round(rect.y + rect.height))
    bgr = hex_to_bgr(ROI_COLOR)

    tint = img.copy()
    cv2.rectangle(tint, (x1, y1), (x2, y2), bgr, -1)
    cv2.addWeighted(tint, 0.2, img, 0.8, 0, dst=img)
    cv2.rectangle(img, (x1, y1), (x2, y2), bgr, 2, cv2.LINE_AA)

    s = ROI_CORNER
    for cx, cy, dx, dy in ((x1, y1, s, s), (x2, y1, -s, s), (x2, y2, -s, -s), (x1, y2, s, -s)):
        cv2.line(img, (cx, cy), (cx + dx, cy), bgr, 4, cv2.LINE_AA)
        cv2.line(img, (cx, cy), (cx, cy + dy), bgr, 4, cv2.LINE_AA)


def render_overlay(frame: np.ndarray, session: ViewerSession) -> np.ndarray:
    """
    Draw the session's overlays onto a copy of `frame` (native resolution),
    with the viewer's contrast applied to the footage underneath.
    """
    img = apply_contrast(frame, session.contrast)

    for stroke in session.annotations.strokes:
        _polyline(img, stroke.points, stroke.color)
    if session.mode == ToolMode.DRAW and session.annotations.in_progress:
        _polyline(img, session.annotations.current_path, session.annotations.color)

    reference = session.calibration.reference
    if reference is not None:
        _polyline(img, (reference.line_start, reference.line_end), CALIBRATION_COLOR, 3)
        _label(
            img,
            f"{reference.real_world_distance_m:g} m (ref)",
            _midpoint(reference.line_start, reference.line_end),
            CALIBRATION_COLOR,
        )
    if session.calibration.preview:
        _polyline(img, session.calibration.preview, CALIBRATION_COLOR, 2)

    for m in session.measurements.measurements:
        _polyline(img, (m.line_start, m.line_end), MEASUREMENT_COLOR, 3)
        _label(img, m.label, _midpoint(m.line_start, m.line_end), MEASUREMENT_COLOR)
    if session.measurements.preview:
        _polyline(img, session.measurements.preview, MEASUREMENT_COLOR, 2)

    if session.regions.preview is not None:
        _region_preview(img, session.regions.preview)

    return img
