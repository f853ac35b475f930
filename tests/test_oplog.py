"""Tests for the operation log and its reduction."""

import pytest

from photo_tidy.errors import DryRunViolation
from photo_tidy.models import UNDO_OPERATION, LogStage, OperationLogEntry
from photo_tidy.oplog import OperationLog, reduce_log


def _entry(ref, stage, operation='move', entry_id=None, error=None):
    return OperationLogEntry(
        plan_item_ref=ref,
        stage=stage,
        operation=operation,
        original_path=f'/in/{ref}.jpg',
        destination_path=f'/out/{ref}.jpg',
        content_hash='a' * 64,
        timestamp='2024-01-01T00:00:00+00:00',
        error=error,
        entry_id=entry_id,
    )


class TestReduceLog:
    """Test the pure fold from log entries to item state."""

    def test_empty_log_has_no_state(self):
        assert reduce_log([]) == {}

    def test_latest_forward_stage_wins(self):
        states = reduce_log([
            _entry(1, LogStage.INTENT, entry_id=1),
            _entry(1, LogStage.COMMITTED, entry_id=2),
            _entry(2, LogStage.INTENT, entry_id=3),
            _entry(2, LogStage.FAILED, entry_id=4, error='disk full'),
        ])

        assert states[1].stage == LogStage.COMMITTED
        assert states[1].is_undoable
        assert states[1].forward_entry_id == 2
        assert states[2].stage == LogStage.FAILED
        assert states[2].error == 'disk full'

    def test_copy_is_never_undoable(self):
        states = reduce_log([_entry(1, LogStage.INTENT, 'copy'), _entry(1, LogStage.COMMITTED, 'copy')])

        assert states[1].is_committed
        assert not states[1].is_undoable

    def test_undo_intent_marks_pending_without_changing_stage(self):
        states = reduce_log([
            _entry(1, LogStage.COMMITTED, entry_id=1),
            _entry(1, LogStage.INTENT, UNDO_OPERATION, entry_id=2),
        ])

        assert states[1].stage == LogStage.COMMITTED
        assert states[1].undo_pending
        assert states[1].forward_entry_id == 1
        assert states[1].last_entry_id == 2

    def test_rolled_back_ends_undo(self):
        states = reduce_log([
            _entry(1, LogStage.COMMITTED),
            _entry(1, LogStage.INTENT, UNDO_OPERATION),
            _entry(1, LogStage.ROLLED_BACK, UNDO_OPERATION),
        ])

        assert states[1].stage == LogStage.ROLLED_BACK
        assert not states[1].undo_pending
        assert not states[1].is_undoable

    def test_failed_undo_keeps_item_committed_for_retry(self):
        states = reduce_log([
            _entry(1, LogStage.COMMITTED),
            _entry(1, LogStage.INTENT, UNDO_OPERATION),
            _entry(1, LogStage.FAILED, UNDO_OPERATION, error='origin occupied'),
        ])

        assert states[1].is_undoable
        assert not states[1].undo_pending
        assert states[1].error == 'origin occupied'

    def test_undo_entry_for_unknown_item_is_ignored(self):
        assert reduce_log([_entry(9, LogStage.INTENT, UNDO_OPERATION)]) == {}

    def test_reduction_is_deterministic(self):
        entries = [_entry(1, LogStage.INTENT), _entry(1, LogStage.COMMITTED), _entry(2, LogStage.INTENT)]
        assert reduce_log(entries) == reduce_log(list(entries))


class TestOperationLog:
    """Test writing and replaying through the store."""

    def test_record_and_replay(self, store):
        oplog = OperationLog(store)
        oplog.record(1, LogStage.INTENT, 'move', '/in/a.jpg', '/out/a.jpg', 'a' * 64)
        oplog.record(1, LogStage.COMMITTED, 'move', '/in/a.jpg', '/out/a.jpg', 'a' * 64)

        states = oplog.replay()

        assert states[1].is_committed
        assert oplog.incomplete() == []

    def test_dangling_intents_are_incomplete(self, store):
        oplog = OperationLog(store)
        oplog.record(1, LogStage.INTENT, 'copy', '/in/a.jpg', '/out/a.jpg', 'a' * 64)
        oplog.record(2, LogStage.COMMITTED, 'move', '/in/b.jpg', '/out/b.jpg', 'b' * 64)
        oplog.record(2, LogStage.INTENT, UNDO_OPERATION, '/in/b.jpg', '/out/b.jpg', 'b' * 64)

        incomplete = {state.plan_item_ref for state in oplog.incomplete()}

        assert incomplete == {1, 2}

    def test_dry_run_log_refuses_writes(self, store):
        oplog = OperationLog(store, dry_run=True)

        with pytest.raises(DryRunViolation):
            oplog.record(1, LogStage.INTENT, 'copy', '/in/a.jpg', '/out/a.jpg', 'a' * 64)

        assert store.log_entries() == []
