"""The four pipeline operations behind one object."""

import logging
from typing import Any, Dict, Optional, Union

from .config import TidyContext
from .executor import ExecutionEngine
from .models import ExecutionMode, ExecutionSummary, PlanSummary, ScanSummary, UndoSummary
from .oplog import OperationLog
from .planner import Planner
from .progress import CancellationToken, ProgressEmitter
from .scanner import MediaScanner
from .store import Store
from .undo import UndoEngine

logger = logging.getLogger(__name__)


class PhotoTidy:
    """Entry point for scanning, planning, executing and undoing.

    Owns the store unless one is passed in. Progress for every stage is pushed
    through ``emitter``.
    """

    def __init__(self, context: TidyContext, store: Optional[Store] = None,
                 emitter: Optional[ProgressEmitter] = None):
        self.context = context
        self._owns_store = store is None
        self.store = store or Store(context.database_path, context.schema_version)
        self.emitter = emitter or ProgressEmitter()

        self.scanner = MediaScanner(context, self.store, self.emitter)
        self.planner = Planner(context, self.store, self.emitter)
        self.executor = ExecutionEngine(context, self.store, self.emitter)
        self.undo_engine = UndoEngine(context, self.store, self.emitter)

    def scan_media(self, reindex: bool = False, cancel: Optional[CancellationToken] = None) -> ScanSummary:
        return self.scanner.scan(reindex=reindex, cancel=cancel)

    def plan_targets(self, cancel: Optional[CancellationToken] = None) -> PlanSummary:
        return self.planner.plan(cancel=cancel)

    def execute_plan(self, mode: Union[ExecutionMode, str], dry_run: bool,
                     cancel: Optional[CancellationToken] = None) -> ExecutionSummary:
        return self.executor.execute(mode, dry_run, cancel=cancel)

    def undo_moves(self, cancel: Optional[CancellationToken] = None) -> UndoSummary:
        return self.undo_engine.undo(cancel=cancel)

    def status(self) -> Dict[str, Any]:
        """Table counts, the current plan and operations left unfinished."""
        return {
            'counts': self.store.counts(),
            'plan': self.store.load_plan(),
            'incomplete': OperationLog(self.store).incomplete(),
        }

    def close(self) -> None:
        if self._owns_store:
            self.store.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False
