"""Tests for report generation."""

import json

import pytest

from photo_tidy.models import ExecutionMode, ExecutionSummary, ScanSummary, UndoSummary
from photo_tidy.reporter import MAX_LISTED_ERRORS, TidyReporter


@pytest.fixture
def reporter(tidy_context):
    return TidyReporter(tidy_context)


class TestReports:

    def test_scan_report(self, reporter):
        summary = ScanSummary(total_files=1200, hashed_files=10, skipped_files=1190, duplicate_files=3)

        report = reporter.generate_scan_report(summary)

        assert "PHOTO TIDY SCAN REPORT" in report
        assert "Total files: 1,200" in report
        assert "Duplicate files: 3" in report
        assert report.endswith("STATUS: COMPLETE")

    def test_plan_report_lists_buckets(self, reporter, store, make_record, tidy):
        store.upsert_inventory([
            make_record('/in/a.jpg', content_hash='1' * 64),
            make_record('/in/b.jpg', content_hash='1' * 64),
        ])
        plan = tidy.plan_targets()

        report = reporter.generate_plan_report(plan)

        assert "Duplicate entries: 1" in report
        assert "=== DESTINATION BUCKETS ===" in report
        assert report.count(": 1 files") == 2

    def test_dry_run_execution_report(self, reporter):
        summary = ExecutionSummary(mode=ExecutionMode.MOVE, dry_run=True, total_entries=2,
                                   processed_entries=2, succeeded=2)

        report = reporter.generate_execution_report(summary)

        assert "Mode: MOVE (DRY RUN)" in report
        assert "--no-dry-run" in report

    def test_errors_truncated(self, reporter):
        errors = [f"error {i}" for i in range(MAX_LISTED_ERRORS + 5)]
        summary = UndoSummary(processed_entries=25, failed=25, errors=errors)

        report = reporter.generate_undo_report(summary)

        assert "... and 5 more" in report
        assert f"error {MAX_LISTED_ERRORS}" not in report
        assert report.endswith("STATUS: COMPLETED WITH ISSUES")

    def test_cancelled_status(self, reporter):
        report = reporter.generate_scan_report(ScanSummary(cancelled=True))
        assert report.endswith("STATUS: CANCELLED")


class TestSaving:

    def test_save_report(self, reporter, tidy_context):
        saved = reporter.save_report("content", 'scan')

        with open(saved) as f:
            assert f.read() == "content"
        assert saved.startswith(str(tidy_context.log_dir))

    def test_export_plan_as_json(self, reporter, store, make_record, tidy, tmp_path):
        store.upsert_inventory([make_record('/in/a.jpg')])
        plan = tidy.plan_targets()

        target = reporter.export_plan(plan, tmp_path / 'exports' / 'plan.json')

        with open(target) as f:
            exported = json.load(f)
        assert exported['totalEntries'] == 1
        assert exported['entries'][0]['originFullPath'] == '/in/a.jpg'
