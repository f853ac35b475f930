"""Append-only operation log and its reduction to per-item state."""

from dataclasses import dataclass, replace
from typing import Dict, Iterable, List, Optional
import logging

from .errors import DryRunViolation
from .models import UNDO_OPERATION, LogStage, OperationLogEntry, PlanItem
from .store import Store
from .utils import now_iso

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ItemState:
    """Latest known state of one plan item, derived from the log.

    ``stage`` tracks the forward operation (copy or move). An undo in flight
    sets ``undo_pending`` without changing ``stage``; a finished undo moves
    ``stage`` to rolled_back.
    """
    plan_item_ref: int
    operation: str
    stage: LogStage
    original_path: str
    destination_path: str
    content_hash: str
    error: Optional[str] = None
    undo_pending: bool = False
    forward_entry_id: Optional[int] = None
    last_entry_id: Optional[int] = None

    @property
    def is_committed(self) -> bool:
        return self.stage == LogStage.COMMITTED

    @property
    def is_undoable(self) -> bool:
        return self.stage == LogStage.COMMITTED and self.operation == 'move'


def reduce_log(entries: Iterable[OperationLogEntry]) -> Dict[int, ItemState]:
    """
    Fold log entries, in write order, into the current state of every item.

    Args:
        entries: Log entries ordered oldest first

    Returns:
        Mapping of plan item ref to its ItemState
    """
    states: Dict[int, ItemState] = {}

    for entry in entries:
        ref = entry.plan_item_ref
        state = states.get(ref)

        if entry.operation == UNDO_OPERATION or entry.stage == LogStage.ROLLED_BACK:
            if state is None:
                logger.debug(f"Ignoring undo entry for unknown item {ref}")
                continue
            if entry.stage == LogStage.INTENT:
                state = replace(state, undo_pending=True)
            elif entry.stage == LogStage.ROLLED_BACK:
                state = replace(state, stage=LogStage.ROLLED_BACK, undo_pending=False, error=None)
            elif entry.stage == LogStage.FAILED:
                state = replace(state, undo_pending=False, error=entry.error)
            states[ref] = replace(state, last_entry_id=entry.entry_id)
            continue

        states[ref] = ItemState(
            plan_item_ref=ref,
            operation=entry.operation,
            stage=entry.stage,
            original_path=entry.original_path,
            destination_path=entry.destination_path,
            content_hash=entry.content_hash,
            error=entry.error,
            forward_entry_id=entry.entry_id,
            last_entry_id=entry.entry_id,
        )

    return states


class OperationLog:
    """Writes and replays the operation log kept in the store."""

    def __init__(self, store: Store, dry_run: bool = False):
        self.store = store
        self.dry_run = dry_run

    def record(
        self,
        plan_item_ref: int,
        stage: LogStage,
        operation: str,
        original_path: str,
        destination_path: str,
        content_hash: str,
        error: Optional[str] = None,
    ) -> OperationLogEntry:
        """Durably append one entry. Returns once the write is committed."""
        if self.dry_run:
            raise DryRunViolation(f"Log write for item {plan_item_ref} during dry run")

        entry = OperationLogEntry(
            plan_item_ref=plan_item_ref,
            stage=stage,
            operation=operation,
            original_path=original_path,
            destination_path=destination_path,
            content_hash=content_hash,
            timestamp=now_iso(),
            error=error,
        )
        return self.store.append_log(entry)

    def record_item(
        self, item: PlanItem, stage: LogStage, operation: str, error: Optional[str] = None
    ) -> OperationLogEntry:
        return self.record(
            item.entry_id, stage, operation, item.origin_full_path,
            item.destination, item.file_hash, error,
        )

    def entries(self) -> List[OperationLogEntry]:
        return self.store.log_entries()

    def replay(self) -> Dict[int, ItemState]:
        return reduce_log(self.entries())

    def incomplete(self) -> List[ItemState]:
        """Items with an intent that never reached a terminal entry."""
        return [
            state for state in self.replay().values()
            if state.stage == LogStage.INTENT or state.undo_pending
        ]
