"""
Progress reporting for the batch loop.

The scheduler never draws anything itself. It is handed a reporter and posts
ProgressEvents to it from whichever thread is working; a TqdmReporter funnels
those events through a queue to a single rendering thread that owns all the
bars. NullReporter drops everything (tests, library use).
"""

import logging
import queue
import threading
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from tqdm import tqdm

logger = logging.getLogger(__name__)

RUN_START = "run_start"
DOCUMENT_START = "document_start"
UNIT_DONE = "unit_done"
DOCUMENT_DONE = "document_done"
BATCH_DONE = "batch_done"
RUN_DONE = "run_done"


@dataclass(frozen=True)
class ProgressEvent:
    """One progress message.

    ``total`` is the size of whatever the event starts (documents for
    run_start, units for document_start); ``count`` is how many items the
    event completes or, for run_start, how many were already done. ``device``
    is the index of the device working on the document, if any.
    """
    kind: str
    name: Optional[str] = None
    total: int = 0
    count: int = 0
    success: bool = True
    device: Optional[int] = None


class ProgressReporter:
    """Receives progress events. Subclasses decide what to do with them."""

    def post(self, event: ProgressEvent):
        raise NotImplementedError

    def start(self) -> "ProgressReporter":
        return self

    def close(self):
        pass

    def __enter__(self) -> "ProgressReporter":
        return self.start()

    def __exit__(self, exc_type, exc, tb):
        self.close()


class NullReporter(ProgressReporter):
    def post(self, event: ProgressEvent):
        pass


_STOP = object()


class TqdmReporter(ProgressReporter):
    """Renders progress with tqdm on a dedicated thread.

    One overall bar counts documents; each in-flight document gets its own
    bar counting prompt units, on the row of the device working on it. Bars
    are keyed by ``(device, name)`` so documents sharing a name stay apart.
    """

    def __init__(self, desc: str = "Processing", leave_document_bars: bool = False):
        self.desc = desc
        self.leave_document_bars = leave_document_bars
        self._events: "queue.Queue" = queue.Queue()
        self._thread: Optional[threading.Thread] = None
        self._overall: Optional[tqdm] = None
        self._documents: Dict[Tuple[Optional[int], Optional[str]], tqdm] = {}

    def start(self) -> "TqdmReporter":
        if self._thread is None:
            self._thread = threading.Thread(target=self._render, name="progress-renderer", daemon=True)
            self._thread.start()
        return self

    def post(self, event: ProgressEvent):
        self._events.put(event)

    def close(self):
        if self._thread is None:
            return
        self._events.put(_STOP)
        self._thread.join()
        self._thread = None

    def _render(self):
        while True:
            event = self._events.get()
            if event is _STOP:
                break
            try:
                self._apply(event)
            except Exception as e:
                logger.debug(f"Progress rendering failed for {event}: {e}")
        self._close_bars()

    def _apply(self, event: ProgressEvent):
        if event.kind == RUN_START:
            self._overall = tqdm(total=event.total, initial=event.count, desc=self.desc,
                                 position=0, colour="green")
        elif event.kind == DOCUMENT_START:
            key = (event.device, event.name)
            stale = self._documents.pop(key, None)
            if stale is not None:
                stale.close()
            position = event.device + 1 if event.device is not None else len(self._documents) + 1
            self._documents[key] = tqdm(
                total=event.total, desc=event.name, position=position,
                leave=self.leave_document_bars, colour="red",
            )
        elif event.kind == UNIT_DONE:
            bar = self._documents.get((event.device, event.name))
            if bar is not None:
                bar.update(1)
        elif event.kind == DOCUMENT_DONE:
            bar = self._documents.pop((event.device, event.name), None)
            if bar is not None:
                bar.close()
        elif event.kind == BATCH_DONE:
            if self._overall is not None:
                self._overall.update(event.count)
        elif event.kind == RUN_DONE:
            if self._overall is not None:
                self._overall.set_postfix_str("Processing complete!")

    def _close_bars(self):
        for bar in self._documents.values():
            bar.close()
        self._documents.clear()
        if self._overall is not None:
            self._overall.close()
            self._overall = None
