# execution.py
from __future__ import annotations

"""
Progress reporting and cancellation for long running loop phases.

``ExecutionMonitor`` stands in for KNIME's ExecutionContext: callers report a
fraction in [0, 1] plus an optional message and call ``check_canceled()`` at
row boundaries. Sub monitors map their own [0, 1] range onto a slice of the
parent, so phases can report progress without knowing about each other.
"""

import threading
from typing import Callable, Optional

from .errors import CanceledExecutionError

__all__ = ["ExecutionMonitor", "ProgressCallback"]

ProgressCallback = Callable[[float, Optional[str]], None]


class ExecutionMonitor:
    """
    Args:
        progress_callback: Called with (fraction, message) on every progress update.
        cancel_event: Shared event; setting it cancels this monitor and all sub monitors.
    """

    def __init__(
        self,
        progress_callback: Optional[ProgressCallback] = None,
        cancel_event: Optional[threading.Event] = None,
    ):
        self._callback = progress_callback
        self._cancel_event = cancel_event if cancel_event is not None else threading.Event()
        self._progress = 0.0
        self._message: Optional[str] = None

    @property
    def progress(self) -> float:
        return self._progress

    @property
    def message(self) -> Optional[str]:
        return self._message

    def set_message(self, message: str) -> None:
        self._report(self._progress, message)

    def set_progress(self, fraction: float, message: Optional[str] = None) -> None:
        fraction = min(1.0, max(0.0, float(fraction)))
        self._report(fraction, message if message is not None else self._message)

    def _report(self, fraction: float, message: Optional[str]) -> None:
        self._progress = fraction
        self._message = message
        if self._callback is not None:
            self._callback(fraction, message)

    def cancel(self) -> None:
        self._cancel_event.set()

    @property
    def canceled(self) -> bool:
        return self._cancel_event.is_set()

    def check_canceled(self) -> None:
        if self._cancel_event.is_set():
            raise CanceledExecutionError("Execution canceled")

    def create_sub_progress(self, fraction: float) -> "ExecutionMonitor":
        """
        Create a monitor that covers the next `fraction` of this monitor's progress range.

        The slice starts at the current progress of this monitor.
        """
        offset = self._progress
        width = max(0.0, min(float(fraction), 1.0 - offset))

        def _forward(sub_fraction: float, message: Optional[str]) -> None:
            self._report(offset + width * sub_fraction, message)

        return ExecutionMonitor(_forward, self._cancel_event)
