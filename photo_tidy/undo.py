"""Reverses committed moves recorded in the operation log."""

import errno
import logging
import os
import shutil
from pathlib import Path
from typing import Optional, Set

from .config import TidyContext
from .errors import HashMismatch
from .hasher import calculate_sha256
from .models import UNDO_OPERATION, LogStage, UndoSummary
from .oplog import ItemState, OperationLog
from .progress import STAGE_UNDO, CancellationToken, ProgressEmitter
from .store import OPERATION_LOG, Store
from .utils import remove_empty_parents

logger = logging.getLogger(__name__)


class UndoEngine:
    """Moves files back to where they came from, newest move first."""

    def __init__(self, context: TidyContext, store: Store, emitter: Optional[ProgressEmitter] = None):
        self.context = context
        self.store = store
        self.emitter = emitter or ProgressEmitter()

    def undo(self, cancel: Optional[CancellationToken] = None) -> UndoSummary:
        """
        Restore every committed move that has not been rolled back yet.

        Copies are never undone. A restored file must still hash to the value
        logged when it was moved. Once every move is processed, bucket
        directories emptied by this run are removed up to the output root;
        a cancelled undo leaves directories alone.

        Args:
            cancel: Optional cancellation token

        Returns:
            UndoSummary for this run
        """
        cancel = cancel or CancellationToken()
        summary = UndoSummary()
        emptied: Set[Path] = set()

        with self.store.exclusive(OPERATION_LOG):
            oplog = OperationLog(self.store)
            pending = [state for state in oplog.replay().values() if state.is_undoable]
            pending.sort(key=lambda state: state.forward_entry_id or 0, reverse=True)
            total = len(pending)
            logger.info(f"Undoing {total} committed moves")
            self.emitter.emit(STAGE_UNDO, 0, total)

            for state in pending:
                if cancel.is_cancelled:
                    summary.cancelled = True
                    logger.warning(f"Undo cancelled after {summary.processed_entries} entries")
                    break

                summary.processed_entries += 1
                if self._undo_item(oplog, state, summary):
                    emptied.add(Path(state.destination_path).parent)
                self.emitter.emit(STAGE_UNDO, summary.processed_entries, total, state.destination_path)

        if not summary.cancelled:
            self._remove_emptied(emptied)

        logger.info(
            f"Undo complete: {summary.restored} restored, {summary.missing} missing, "
            f"{summary.failed} failed"
        )
        return summary

    def _undo_item(self, oplog: OperationLog, state: ItemState, summary: UndoSummary) -> bool:
        """Restore one moved file; True when it is back at its origin."""
        origin = Path(state.original_path)
        destination = Path(state.destination_path)

        if not destination.is_file():
            if state.undo_pending and self._already_restored(origin, state.content_hash):
                logger.info(f"Recovered interrupted undo: {destination} -> {origin}")
                self._record(oplog, state, LogStage.ROLLED_BACK)
                summary.restored += 1
                return True
            logger.warning(f"Cannot undo, file no longer at destination: {destination}")
            summary.missing += 1
            return False

        try:
            actual = calculate_sha256(destination, self.context.chunk_size)
            if actual != state.content_hash:
                raise HashMismatch(destination, state.content_hash, actual)
            if origin.exists():
                raise FileExistsError(errno.EEXIST, "Origin path is occupied", str(origin))

            self._record(oplog, state, LogStage.INTENT)
            origin.parent.mkdir(parents=True, exist_ok=True)
            self._move_back(destination, origin, state.content_hash)
        except (OSError, HashMismatch) as e:
            message = f"Failed to restore {destination}: {e}"
            logger.error(message)
            summary.failed += 1
            summary.errors.append(message)
            self._record(oplog, state, LogStage.FAILED, str(e))
            return False

        self._record(oplog, state, LogStage.ROLLED_BACK)
        logger.debug(f"Restored {destination} -> {origin}")
        summary.restored += 1
        return True

    def _already_restored(self, origin: Path, expected_hash: str) -> bool:
        if not origin.is_file():
            return False
        try:
            return calculate_sha256(origin, self.context.chunk_size) == expected_hash
        except OSError:
            return False

    def _move_back(self, destination: Path, origin: Path, expected_hash: str) -> None:
        try:
            os.rename(destination, origin)
            return
        except OSError as e:
            if e.errno != errno.EXDEV:
                raise

        try:
            shutil.copy2(destination, origin)
            actual = calculate_sha256(origin, self.context.chunk_size)
            if actual != expected_hash:
                raise HashMismatch(origin, expected_hash, actual)
        except (OSError, HashMismatch):
            if origin.exists():
                origin.unlink()
            raise
        destination.unlink()

    @staticmethod
    def _record(oplog: OperationLog, state: ItemState, stage: LogStage, error: Optional[str] = None) -> None:
        oplog.record(
            state.plan_item_ref, stage, UNDO_OPERATION, state.original_path,
            state.destination_path, state.content_hash, error,
        )

    def _remove_emptied(self, directories: Set[Path]) -> None:
        output_root = Path(self.context.output_root)
        removed = 0
        # Deepest first so a parent is only tried once its children are gone
        for directory in sorted(directories, key=lambda path: len(path.parts), reverse=True):
            removed += remove_empty_parents(directory, output_root)
        if removed:
            logger.info(f"Removed {removed} empty directories under {output_root}")
