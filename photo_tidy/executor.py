"""Applies a plan to the filesystem, journaling every step."""

import errno
import logging
import os
import shutil
import threading
from collections import OrderedDict
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Dict, List, Optional, Union

from .config import TidyContext
from .errors import DryRunViolation, HashMismatch, TidyError
from .hasher import calculate_sha256
from .models import ExecutionMode, ExecutionSummary, LogStage, PlanItem, PlanSummary
from .oplog import ItemState, OperationLog
from .progress import STAGE_EXECUTE, CancellationToken, ProgressEmitter
from .store import OPERATION_LOG, PLAN, Store
from .utils import format_bytes

logger = logging.getLogger(__name__)

SUCCEEDED = 'succeeded'
FAILED = 'failed'
SKIPPED = 'skipped'


class _ExecutionRun:
    """Mutable state of one execute call, shared by the bucket workers."""

    def __init__(self, mode: ExecutionMode, dry_run: bool, plan: PlanSummary,
                 oplog: OperationLog, states: Dict[int, ItemState], cancel: CancellationToken):
        self.mode = mode
        self.dry_run = dry_run
        self.oplog = oplog
        self.states = states
        self.cancel = cancel
        self.aborted = threading.Event()
        self.lock = threading.Lock()
        self.summary = ExecutionSummary(
            mode=mode,
            dry_run=dry_run,
            total_entries=plan.total_entries,
            duplicate_entries=plan.duplicate_entries,
        )

    @property
    def stopping(self) -> bool:
        return self.cancel.is_cancelled or self.aborted.is_set()

    def guard(self, action: str) -> None:
        """Refuse a filesystem mutation under dry run."""
        if self.dry_run:
            raise DryRunViolation(f"Attempted {action} during dry run")


class ExecutionEngine:
    """Copies or moves planned files into place.

    Items sharing a destination bucket run serially on one worker; buckets run
    in parallel. Each item gets an ``intent`` log entry before anything on disk
    changes and a ``committed`` or ``failed`` entry afterwards.
    """

    def __init__(self, context: TidyContext, store: Store, emitter: Optional[ProgressEmitter] = None):
        self.context = context
        self.store = store
        self.emitter = emitter or ProgressEmitter()

    def execute(
        self,
        mode: Union[ExecutionMode, str],
        dry_run: bool,
        plan: Optional[PlanSummary] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> ExecutionSummary:
        """
        Execute the plan.

        Args:
            mode: ``copy`` or ``move``
            dry_run: Run every check without touching files or the log
            plan: Plan to execute (defaults to the persisted plan)
            cancel: Optional cancellation token

        Returns:
            ExecutionSummary for this run

        Raises:
            TidyError: If there is no plan to execute
            StoreError: If the log cannot be written
        """
        mode = ExecutionMode(mode)
        cancel = cancel or CancellationToken()

        with self.store.exclusive(PLAN, OPERATION_LOG):
            if plan is None:
                plan = self.store.load_plan()
            if plan is None:
                raise TidyError("No plan found. Run plan first.")

            oplog = OperationLog(self.store, dry_run=dry_run)
            run = _ExecutionRun(mode, dry_run, plan, oplog, oplog.replay(), cancel)
            prefix = 'DRY RUN: ' if dry_run else ''
            logger.info(f"{prefix}Executing plan ({mode.value}): {plan.total_entries} entries, "
                        f"{format_bytes(plan.total_bytes)}")

            buckets: Dict[str, List[PlanItem]] = OrderedDict()
            for item in plan.entries:
                buckets.setdefault(item.new_path, []).append(item)

            self.emitter.emit(STAGE_EXECUTE, 0, plan.total_entries)
            workers = max(1, min(self.context.parallel_jobs, len(buckets) or 1))
            with ThreadPoolExecutor(max_workers=workers) as executor:
                futures = [executor.submit(self._run_bucket, run, items) for items in buckets.values()]
                try:
                    for future in as_completed(futures):
                        future.result()
                except BaseException:
                    run.aborted.set()
                    raise

        summary = run.summary
        summary.cancelled = cancel.is_cancelled and summary.processed_entries < summary.total_entries
        if summary.cancelled:
            logger.warning(f"{prefix}Execution cancelled after {summary.processed_entries} entries")

        logger.info(
            f"{prefix}Execution complete: {summary.succeeded} succeeded, {summary.failed} failed, "
            f"{summary.skipped} skipped"
        )
        return summary

    def _run_bucket(self, run: _ExecutionRun, items: List[PlanItem]) -> None:
        for item in items:
            if run.stopping:
                return
            warnings: List[str] = []
            outcome, error = self._process_item(run, item, warnings)
            self._record_outcome(run, item, outcome, error, warnings)

    def _record_outcome(self, run: _ExecutionRun, item: PlanItem, outcome: str,
                        error: Optional[str], warnings: List[str]) -> None:
        with run.lock:
            summary = run.summary
            summary.processed_entries += 1
            if outcome == SUCCEEDED:
                summary.succeeded += 1
            elif outcome == SKIPPED:
                summary.skipped += 1
            else:
                summary.failed += 1
                summary.errors.append(error)
            summary.warnings.extend(warnings)
            processed = summary.processed_entries
        self.emitter.emit(STAGE_EXECUTE, processed, summary.total_entries, item.origin_full_path)

    def _process_item(self, run: _ExecutionRun, item: PlanItem, warnings: List[str]):
        """Run one plan item through intent, checks, mutation and commit."""
        state = run.states.get(item.entry_id)
        if state is not None and state.is_committed:
            logger.debug(f"Already committed: {item.origin_full_path}")
            return SKIPPED, None

        source = Path(item.origin_full_path)
        destination = Path(item.destination)
        operation = run.mode.value
        dangling = state is not None and state.stage == LogStage.INTENT

        # A file copied under an earlier plan keeps its name in the next one
        if run.mode == ExecutionMode.COPY and not dangling and self._already_applied(run, item):
            logger.debug(f"Already in place: {destination}")
            return SKIPPED, None

        if not run.dry_run:
            run.oplog.record_item(item, LogStage.INTENT, operation)

        try:
            if dangling and self._already_applied(run, item):
                logger.info(f"Recovered interrupted {operation}: {source} -> {destination}")
            else:
                partial = dangling and self._left_partial(state, item)
                if partial and not run.dry_run:
                    logger.warning(f"Removing partial file left by an interrupted {operation}: {destination}")
                    self._remove_partial(destination, warnings)
                self._check(item, source, destination, replacing=partial and run.dry_run)
                if run.dry_run:
                    logger.debug(f"DRY RUN: would {operation} {source} -> {destination}")
                    return SUCCEEDED, None
                if run.mode == ExecutionMode.COPY:
                    self._verified_copy(run, source, destination, item.file_hash, warnings)
                else:
                    self._move(run, source, destination, item.file_hash, warnings)
        except (OSError, HashMismatch) as e:
            message = f"Failed to {operation} {source}: {e}"
            logger.error(message)
            if not run.dry_run:
                run.oplog.record_item(item, LogStage.FAILED, operation, str(e))
            return FAILED, message

        if not run.dry_run:
            run.oplog.record_item(item, LogStage.COMMITTED, operation)
        return SUCCEEDED, None

    def _already_applied(self, run: _ExecutionRun, item: PlanItem) -> bool:
        """Whether the destination already holds the planned content."""
        source = Path(item.origin_full_path)
        destination = Path(item.destination)
        if not destination.is_file():
            return False
        if run.mode == ExecutionMode.MOVE and source.exists():
            return False
        try:
            return calculate_sha256(destination, self.context.chunk_size) == item.file_hash
        except OSError:
            return False

    @staticmethod
    def _left_partial(state: ItemState, item: PlanItem) -> bool:
        """Whether a crashed attempt at this item left a file at its destination.

        Only called once the destination is known not to hold the planned
        content. The origin must still be there, so nothing is lost by
        removing the destination.
        """
        return (
            state.destination_path == item.destination
            and Path(item.destination).is_file()
            and Path(item.origin_full_path).is_file()
        )

    def _check(self, item: PlanItem, source: Path, destination: Path, replacing: bool = False) -> None:
        if not source.is_file():
            raise FileNotFoundError(errno.ENOENT, "Origin file is missing", str(source))
        if destination.exists() and not replacing:
            raise FileExistsError(errno.EEXIST, "Destination already exists", str(destination))
        if self.context.verify_hash:
            actual = calculate_sha256(source, self.context.chunk_size)
            if actual != item.file_hash:
                raise HashMismatch(source, item.file_hash, actual)

    def _verified_copy(self, run: _ExecutionRun, source: Path, destination: Path,
                       expected_hash: str, warnings: List[str]) -> None:
        """Copy with metadata, then check the destination against the expected hash."""
        run.guard(f"copy of {source}")
        destination.parent.mkdir(parents=True, exist_ok=True)
        try:
            shutil.copy2(source, destination)
            actual = calculate_sha256(destination, self.context.chunk_size)
            if actual != expected_hash:
                raise HashMismatch(destination, expected_hash, actual)
        except (OSError, HashMismatch):
            self._remove_partial(destination, warnings)
            raise

    def _move(self, run: _ExecutionRun, source: Path, destination: Path,
              expected_hash: str, warnings: List[str]) -> None:
        run.guard(f"move of {source}")
        destination.parent.mkdir(parents=True, exist_ok=True)
        try:
            os.rename(source, destination)
            return
        except OSError as e:
            if e.errno != errno.EXDEV:
                raise

        logger.info(f"Cross-device move, copying {source} -> {destination}")
        self._verified_copy(run, source, destination, expected_hash, warnings)
        try:
            source.unlink()
        except OSError as e:
            warnings.append(f"Could not remove {source} after cross-device copy: {e}")
            self._remove_partial(destination, warnings)
            raise

    @staticmethod
    def _remove_partial(destination: Path, warnings: List[str]) -> None:
        try:
            if destination.exists():
                destination.unlink()
        except OSError as e:
            message = f"Partial file left at {destination}: {e}"
            logger.warning(message)
            warnings.append(message)
