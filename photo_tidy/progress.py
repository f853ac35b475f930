"""Staged progress events and cooperative cancellation."""

import threading
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional
import logging

from tqdm import tqdm

from .errors import Cancelled

logger = logging.getLogger(__name__)

STAGE_SCAN = 'scan'
STAGE_DIFF = 'diff'
STAGE_HASH = 'hash'
STAGE_PLAN = 'plan'
STAGE_EXECUTE = 'execute'
STAGE_UNDO = 'undo'


@dataclass(frozen=True)
class ProgressEvent:
    stage: str
    processed: int
    total: int
    current: Optional[str] = None


ProgressCallback = Callable[[ProgressEvent], None]


class ProgressEmitter:
    """Fans progress events out to any number of subscribers.

    Stages push events with ``emit``; consumers register with ``subscribe``.
    A failing subscriber is logged and never interrupts the stage.
    """

    def __init__(self):
        self._subscribers: List[ProgressCallback] = []
        self._lock = threading.Lock()

    def subscribe(self, callback: ProgressCallback) -> Callable[[], None]:
        """Register a callback; returns a function that unsubscribes it."""
        with self._lock:
            self._subscribers.append(callback)

        def _unsubscribe():
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return _unsubscribe

    def emit(self, stage: str, processed: int, total: int, current: Optional[str] = None) -> None:
        event = ProgressEvent(stage, processed, total, current)
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(event)
            except Exception as e:
                logger.debug(f"Progress subscriber failed on {stage}: {e}")


class CancellationToken:
    """Cancellation signal checked by stages between work units."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise Cancelled("Operation cancelled")


class TqdmProgress:
    """Renders one tqdm bar per stage for events from an emitter."""

    def __init__(self, emitter: ProgressEmitter, unit: str = "files"):
        self.unit = unit
        self._bars: Dict[str, tqdm] = {}
        self._unsubscribe = emitter.subscribe(self._on_event)

    def _on_event(self, event: ProgressEvent) -> None:
        bar = self._bars.get(event.stage)
        if bar is None:
            bar = tqdm(total=event.total, desc=event.stage.capitalize(), unit=self.unit)
            self._bars[event.stage] = bar
        if event.total != bar.total:
            bar.total = event.total
        bar.n = event.processed
        bar.refresh()

    def close(self) -> None:
        self._unsubscribe()
        for bar in self._bars.values():
            bar.close()
        self._bars.clear()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False
