"""Progress events and sinks."""

import logging, sys
from dataclasses import dataclass
from typing import Callable

from tqdm import tqdm


log = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProgressEvent:
    """One progress update on a 0-100 scale."""

    percent: int
    message: str
    bytes_loaded: int | None = None


ProgressSink = Callable[[ProgressEvent], None]


class MonotonicProgress:
    """Forward events to a sink without ever lowering the reported percent."""

    def __init__(self, sink: ProgressSink | None = None):
        self.sink = sink
        self.percent = 0

    def __call__(self, event: ProgressEvent) -> None:
        self.percent = max(self.percent, min(100, int(event.percent)))
        log.debug(f"progress {self.percent:3d}% {event.message}")
        if self.sink is not None:
            self.sink(ProgressEvent(self.percent, event.message, event.bytes_loaded))

    def emit(self, percent: int, message: str, bytes_loaded: int | None = None) -> None:
        self(ProgressEvent(percent, message, bytes_loaded))


class TqdmProgressSink:
    """Render progress events as a terminal bar."""

    def __init__(self, disable: bool | None = None, desc: str = "wmerase"):
        if disable is None:
            disable = not sys.stderr.isatty()
        self.bar = tqdm(total=100, desc=desc, unit="%", disable=disable, bar_format="{l_bar}{bar}| {n_fmt}% {postfix}")

    def __call__(self, event: ProgressEvent) -> None:
        self.bar.update(max(0, event.percent - self.bar.n))
        self.bar.set_postfix_str(event.message, refresh=True)

    def close(self) -> None:
        self.bar.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False
