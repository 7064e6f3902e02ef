from __future__ import annotations

import pytest

from incident_lens.tools.annotation import AnnotationEngine
from incident_lens.tools.calibration import CalibrationEngine
from incident_lens.tools.geometry import NativePoint
from incident_lens.tools.measurement import MeasurementEngine
from incident_lens.tools.modes import GestureContext, ToolMode, ToolModeStateMachine, ViewHandler
from incident_lens.tools.region_capture import RegionCapture

from conftest import FakeVideo


@pytest.fixture
def engines():
    annotations = AnnotationEngine()
    calibration = CalibrationEngine()
    measurements = MeasurementEngine(calibration)
    regions = RegionCapture(FakeVideo().read_at)
    machine = ToolModeStateMachine({
        ToolMode.VIEW: ViewHandler(),
        ToolMode.DRAW: annotations,
        ToolMode.SCAN: regions,
        ToolMode.CALIBRATE: calibration,
        ToolMode.MEASURE: measurements,
    })
    return machine, annotations, calibration, measurements, regions


def _drag(machine: ToolModeStateMachine, a: tuple, b: tuple, ctx: GestureContext | None = None) -> ToolMode:
    ctx = ctx or GestureContext()
    machine.pointer_down(NativePoint(*a), ctx)
    machine.pointer_move(NativePoint(*b), ctx)
    return machine.pointer_up(NativePoint(*b), ctx)


def test_starts_in_view(engines) -> None:
    machine = engines[0]
    assert machine.mode == ToolMode.VIEW


@pytest.mark.parametrize("mode", [ToolMode.DRAW, ToolMode.SCAN, ToolMode.CALIBRATE, ToolMode.MEASURE])
def test_selecting_active_tool_toggles_back_to_view(engines, mode: ToolMode) -> None:
    machine = engines[0]
    assert machine.select(mode) == mode
    assert machine.select(mode) == ToolMode.VIEW


def test_select_accepts_plain_string(engines) -> None:
    machine = engines[0]
    assert machine.select("draw") == ToolMode.DRAW


def test_select_rejects_unknown_mode(engines) -> None:
    machine = engines[0]
    with pytest.raises(ValueError):
        machine.select("laser")


def test_switching_mid_stroke_commits_nothing(engines) -> None:
    machine, annotations = engines[0], engines[1]
    machine.select(ToolMode.DRAW)
    ctx = GestureContext()
    machine.pointer_down(NativePoint(0, 0), ctx)
    machine.pointer_move(NativePoint(10, 10), ctx)
    assert annotations.in_progress

    machine.select(ToolMode.VIEW)
    assert not annotations.in_progress
    assert annotations.strokes == ()

    # A stray pointer-up after the switch reaches the view handler, not draw
    machine.pointer_up(NativePoint(20, 20), ctx)
    assert annotations.strokes == ()


def test_switching_mid_line_drops_calibration_preview(engines) -> None:
    machine, calibration = engines[0], engines[2]
    machine.select(ToolMode.CALIBRATE)
    machine.pointer_down(NativePoint(0, 0), GestureContext())
    machine.pointer_move(NativePoint(50, 0), GestureContext())
    assert calibration.preview is not None

    machine.select(ToolMode.DRAW)
    assert calibration.preview is None
    assert calibration.reference is None


def test_events_only_reach_active_handler(engines) -> None:
    machine, annotations, calibration, measurements, regions = engines
    machine.select(ToolMode.DRAW)
    _drag(machine, (0, 0), (40, 40))

    assert len(annotations.strokes) == 1
    assert calibration.reference is None
    assert measurements.measurements == ()
    assert regions.regions == ()


def test_scan_capture_returns_to_view(engines) -> None:
    machine, regions = engines[0], engines[4]
    machine.select(ToolMode.SCAN)
    assert _drag(machine, (10, 10), (60, 50)) == ToolMode.VIEW
    assert len(regions.regions) == 1


def test_rejected_scan_stays_in_scan(engines) -> None:
    machine, regions = engines[0], engines[4]
    machine.select(ToolMode.SCAN)
    assert _drag(machine, (10, 10), (15, 15)) == ToolMode.SCAN
    assert regions.regions == ()


def test_calibration_commit_moves_to_measure(engines) -> None:
    machine, calibration = engines[0], engines[2]
    machine.select(ToolMode.CALIBRATE)
    ctx = GestureContext(prompt=lambda length: "3.5")
    assert _drag(machine, (0, 0), (70, 0), ctx) == ToolMode.MEASURE
    assert calibration.reference.real_world_distance_m == 3.5


def test_cancelled_calibration_prompt_stays_in_calibrate(engines) -> None:
    machine, calibration = engines[0], engines[2]
    machine.select(ToolMode.CALIBRATE)
    ctx = GestureContext(prompt=lambda length: None)
    assert _drag(machine, (0, 0), (70, 0), ctx) == ToolMode.CALIBRATE
    assert calibration.reference is None


def test_draw_and_measure_stay_in_mode_after_gesture(engines) -> None:
    machine = engines[0]
    machine.select(ToolMode.DRAW)
    assert _drag(machine, (0, 0), (5, 5)) == ToolMode.DRAW

    machine.select(ToolMode.CALIBRATE)
    _drag(machine, (0, 0), (100, 0), GestureContext(prompt=lambda _: "10"))
    assert _drag(machine, (0, 0), (50, 0)) == ToolMode.MEASURE


def test_reset_returns_to_view_and_cancels(engines) -> None:
    machine, annotations = engines[0], engines[1]
    machine.select(ToolMode.DRAW)
    machine.pointer_down(NativePoint(1, 1), GestureContext())
    machine.reset()
    assert machine.mode == ToolMode.VIEW
    assert not annotations.in_progress


def test_missing_handler_is_rejected() -> None:
    with pytest.raises(ValueError) as e:
        ToolModeStateMachine({ToolMode.VIEW: ViewHandler()})
    assert "draw" in str(e.value)
