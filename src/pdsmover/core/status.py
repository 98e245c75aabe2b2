"""
Status sinks.

The orchestrator reports what it is doing through a StatusSink instead of a
bare callback, so frontends can render progress however they like and tests
can assert on it.
"""

import logging
import sys
from typing import Callable, List, Optional, Tuple, Union

from tqdm import tqdm


class StatusSink:
    """Receives human-readable status messages. The base class drops them."""

    def status(self, message: str) -> None:
        pass

    def progress(self, label: str, done: int, total: int) -> None:
        self.status(f"{label}: {done}/{total}")

    def close(self) -> None:
        pass


NullStatusSink = StatusSink


class CallbackStatusSink(StatusSink):
    """Adapts a plain ``fn(message)`` callable, e.g. a UI update function."""

    def __init__(self, callback: Callable[[str], None]) -> None:
        self._callback = callback

    def status(self, message: str) -> None:
        self._callback(message)


class LoggingStatusSink(StatusSink):
    def __init__(self, logger: Optional[logging.Logger] = None,
                 level: int = logging.INFO) -> None:
        self._logger = logger or logging.getLogger("pdsmover.status")
        self._level = level

    def status(self, message: str) -> None:
        self._logger.log(self._level, "%s", message)


class RecordingStatusSink(StatusSink):
    """Keeps everything it is told; handy in tests and for post-run reports."""

    def __init__(self) -> None:
        self.messages: List[str] = []
        self.progress_events: List[Tuple[str, int, int]] = []

    def status(self, message: str) -> None:
        self.messages.append(message)

    def progress(self, label: str, done: int, total: int) -> None:
        self.progress_events.append((label, done, total))
        super().progress(label, done, total)


class TqdmStatusSink(StatusSink):
    """
    Prints status lines and renders progress as a tqdm bar.
    Bars are only drawn when stdout is a TTY; otherwise progress is printed
    as plain ``label: done/total`` lines.
    """

    def __init__(self, use_bar: Optional[bool] = None) -> None:
        if use_bar is None:
            use_bar = sys.stdout.isatty()
        self._use_bar = use_bar
        self._bar: Optional[tqdm] = None
        self._label: Optional[str] = None

    def status(self, message: str) -> None:
        tqdm.write(message)

    def progress(self, label: str, done: int, total: int) -> None:
        if not self._use_bar:
            super().progress(label, done, total)
            return
        if self._bar is None or label != self._label:
            self.close()
            self._bar = tqdm(total=total or None, desc=label, unit="blob")
            self._label = label
        if total and self._bar.total != total:
            self._bar.total = total
        self._bar.n = done
        self._bar.refresh()

    def close(self) -> None:
        if self._bar is not None:
            self._bar.close()
            self._bar = None
            self._label = None


StatusLike = Union[StatusSink, Callable[[str], None], None]


def as_sink(status: StatusLike) -> StatusSink:
    """Accept a sink, a plain callback or None."""
    if status is None:
        return NullStatusSink()
    if isinstance(status, StatusSink):
        return status
    if callable(status):
        return CallbackStatusSink(status)
    raise TypeError(f"Not a status sink or callable: {status!r}")
