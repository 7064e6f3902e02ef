"""
Tool mode state machine for the measurement overlay.

Exactly one ToolMode is active. Each mode owns one handler object; pointer
events only ever reach the active handler, so a half-finished gesture in one
mode can never leak into another. Switching modes cancels the outgoing
handler's gesture without committing it.

Transitions:
    select(m) while m is active      -> view (toggle)
    select(m) otherwise              -> m
    scan capture completed           -> view
    calibration committed            -> measure
"""

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Optional, Protocol

from incident_lens.core.logging import get_logger
from incident_lens.tools.geometry import NativePoint


class ToolMode(str, Enum):
    VIEW = "view"
    DRAW = "draw"
    SCAN = "scan"
    CALIBRATE = "calibrate"
    MEASURE = "measure"


# Receives the drawn line's pixel length, returns the analyst's text answer
# (decimal meters) or None if the prompt was dismissed.
DistancePrompt = Callable[[float], Optional[str]]


@dataclass(frozen=True)
class GestureContext:
    """Viewer state a handler may read while finishing a gesture."""
    playback_time: float = 0.0
    contrast: float = 100.0
    prompt: Optional[DistancePrompt] = None


class ToolHandler(Protocol):

    @property
    def in_progress(self) -> bool: ...

    def pointer_down(self, point: NativePoint, ctx: GestureContext) -> None: ...

    def pointer_move(self, point: NativePoint, ctx: GestureContext) -> None: ...

    def pointer_up(self, point: NativePoint, ctx: GestureContext) -> Optional[ToolMode]:
        """Finish the gesture; return a mode to auto-transition to, if any."""
        ...

    def cancel(self) -> None: ...


class ViewHandler:
    """Plain viewing: pointer gestures create nothing (panning is handled by the viewer)."""

    @property
    def in_progress(self) -> bool:
        return False

    def pointer_down(self, point, ctx):
        pass

    def pointer_move(self, point, ctx):
        pass

    def pointer_up(self, point, ctx):
        return None

    def cancel(self):
        pass


class ToolModeStateMachine:

    def __init__(self, handlers: Dict[ToolMode, ToolHandler]):
        missing = set(ToolMode) - set(handlers)
        if missing:
            raise ValueError(f"no handler for modes: {sorted(m.value for m in missing)}")
        self.logger = get_logger()
        self._handlers = dict(handlers)
        self._mode = ToolMode.VIEW

    @property
    def mode(self) -> ToolMode:
        return self._mode

    @property
    def active_handler(self) -> ToolHandler:
        return self._handlers[self._mode]

    def handler(self, mode: ToolMode) -> ToolHandler:
        return self._handlers[mode]

    def select(self, mode: ToolMode) -> ToolMode:
        """User picked a tool. Picking the active tool again toggles back to view."""
        mode = ToolMode(mode)
        target = ToolMode.VIEW if mode == self._mode else mode
        self._transition(target, reason="user_selected")
        return self._mode

    def reset(self) -> None:
        self._transition(ToolMode.VIEW, reason="reset")

    def _transition(self, target: ToolMode, reason: str) -> None:
        previous = self._mode
        outgoing = self._handlers[previous]
        if outgoing.in_progress:
            self.logger.info("gesture_cancelled", mode=previous.value, reason=reason)
        outgoing.cancel()

        self._mode = target
        if previous != target:
            self.logger.info(
                "tool_mode_changed",
                previous=previous.value,
                mode=target.value,
                reason=reason,
            )

    # ── Pointer routing ────────────────────────────────────────────────────────

    def pointer_down(self, point: NativePoint, ctx: GestureContext) -> None:
        self.active_handler.pointer_down(point, ctx)

    def pointer_move(self, point: NativePoint, ctx: GestureContext) -> None:
        self.active_handler.pointer_move(point, ctx)

    def pointer_up(self, point: NativePoint, ctx: GestureContext) -> ToolMode:
        next_mode = self.active_handler.pointer_up(point, ctx)
        if next_mode is not None and next_mode != self._mode:
            self._transition(next_mode, reason=f"{self._mode.value}_completed")
        return self._mode
