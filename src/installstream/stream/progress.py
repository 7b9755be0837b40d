"""Displayed progress that only moves forward within a session."""

from dataclasses import dataclass
from typing import Callable

from ..core.constants import COLOR_ERROR, COLOR_NORMAL


@dataclass(frozen=True)
class ProgressState:
    percent: int
    color: str

    @property
    def is_error(self) -> bool:
        return self.color == COLOR_ERROR


class ProgressGate:
    """Holds the displayed percentage and colour.

    A lower candidate is ignored while the display is below 100. The error
    colour is sticky: once set it survives later non-error updates and is
    cleared only by reset().
    """

    def __init__(self, on_change: Callable[[ProgressState], None] | None = None):
        self._percent = 0
        self._color = COLOR_NORMAL
        self._on_change = on_change

    @property
    def percent(self) -> int:
        return self._percent

    @property
    def color(self) -> str:
        return self._color

    @property
    def state(self) -> ProgressState:
        return ProgressState(self._percent, self._color)

    def update(self, candidate: int, is_error: bool = False) -> None:
        before = self.state
        candidate = max(0, min(100, int(candidate)))
        if not (candidate < self._percent and self._percent < 100):
            self._percent = candidate
        if is_error:
            self._color = COLOR_ERROR
        self._notify(before)

    def flag_error(self) -> None:
        """Turn the bar red without moving it."""
        self.update(self._percent, True)

    def reset(self) -> None:
        before = self.state
        self._percent = 0
        self._color = COLOR_NORMAL
        self._notify(before)

    def _notify(self, before: ProgressState) -> None:
        after = self.state
        if self._on_change is not None and after != before:
            self._on_change(after)
