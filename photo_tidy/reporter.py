"""Reporting for scan, plan, execution and undo runs."""

import json
import logging
from pathlib import Path
from typing import Dict, List, Optional

from .config import TidyContext
from .models import ExecutionSummary, PlanSummary, ScanSummary, UndoSummary
from .oplog import ItemState
from .utils import format_bytes, now_iso

logger = logging.getLogger(__name__)

MAX_LISTED_ERRORS = 20


class TidyReporter:
    """Generates human-readable reports and plan exports."""

    def __init__(self, context: TidyContext):
        """Initialize reporter with resolved settings."""
        self.context = context
        self.log_dir = context.log_dir

    @staticmethod
    def _header(title: str) -> List[str]:
        return ["=" * 50, title, "=" * 50, f"Generated: {now_iso()}", ""]

    @staticmethod
    def _errors(errors: List[str]) -> List[str]:
        if not errors:
            return []
        lines = ["=== ERRORS ENCOUNTERED ==="]
        for error in errors[:MAX_LISTED_ERRORS]:
            lines.append(f"- {error}")
        if len(errors) > MAX_LISTED_ERRORS:
            lines.append(f"... and {len(errors) - MAX_LISTED_ERRORS} more")
        lines.append("")
        return lines

    def generate_scan_report(self, summary: ScanSummary) -> str:
        report = self._header("PHOTO TIDY SCAN REPORT")
        report.append(f"Image root: {self.context.image_root}")
        report.append("")
        report.append("=== FILE STATISTICS ===")
        report.append(f"Total files: {summary.total_files:,}")
        report.append(f"Hashed (new or changed): {summary.hashed_files:,}")
        report.append(f"Unchanged: {summary.skipped_files:,}")
        report.append(f"Failed: {summary.failed_files:,}")
        report.append(f"Removed from inventory: {summary.removed_files:,}")
        report.append(f"Duplicate files: {summary.duplicate_files:,}")
        report.append("")
        report.extend(self._errors(summary.errors))
        report.append(f"STATUS: {self._status(summary.cancelled, summary.errors)}")
        return "\n".join(report)

    def generate_plan_report(self, plan: PlanSummary) -> str:
        """
        Generate a plan overview with per-bucket counts.

        Args:
            plan: Plan to describe

        Returns:
            Formatted report
        """
        report = self._header("PHOTO TIDY PLAN REPORT")
        report.append(f"Plan generated: {plan.generated_at}")
        report.append(f"Output root: {self.context.output_root}")
        report.append("")
        report.append("=== PLAN STATISTICS ===")
        report.append(f"Total entries: {plan.total_entries:,}")
        report.append(f"Unique entries: {plan.unique_entries:,}")
        report.append(f"Duplicate entries: {plan.duplicate_entries:,}")
        report.append(f"Destination buckets: {plan.destination_buckets:,}")
        report.append(f"Total size: {format_bytes(plan.total_bytes)}")
        report.append("")

        buckets: Dict[str, int] = {}
        for item in plan.entries:
            buckets[item.new_path] = buckets.get(item.new_path, 0) + 1
        if buckets:
            report.append("=== DESTINATION BUCKETS ===")
            for bucket, count in sorted(buckets.items()):
                report.append(f"{bucket}: {count:,} files")
            report.append("")

        return "\n".join(report)

    def generate_execution_report(self, summary: ExecutionSummary) -> str:
        report = self._header("PHOTO TIDY EXECUTION REPORT")
        report.append(f"Mode: {summary.mode.value.upper()}{' (DRY RUN)' if summary.dry_run else ''}")
        report.append("")
        report.append("=== FILE STATISTICS ===")
        report.append(f"Plan entries: {summary.total_entries:,}")
        report.append(f"Processed: {summary.processed_entries:,}")
        report.append(f"Succeeded: {summary.succeeded:,}")
        report.append(f"Failed: {summary.failed:,}")
        report.append(f"Skipped (already done): {summary.skipped:,}")
        report.append(f"Duplicates routed: {summary.duplicate_entries:,}")
        report.append("")

        if summary.warnings:
            report.append("=== WARNINGS ===")
            for warning in summary.warnings:
                report.append(f"- {warning}")
            report.append("")

        report.extend(self._errors(summary.errors))

        report.append("=== NEXT STEPS ===")
        if summary.dry_run:
            report.append("Review this dry run, then run execute with --no-dry-run")
        elif summary.mode.value == 'move' and summary.succeeded:
            report.append("Moves can be reverted with the undo command")
        else:
            report.append(f"Review the organized library in {self.context.output_root}")
        report.append("")
        report.append(f"STATUS: {self._status(summary.cancelled, summary.errors)}")
        return "\n".join(report)

    def generate_undo_report(self, summary: UndoSummary) -> str:
        report = self._header("PHOTO TIDY UNDO REPORT")
        report.append(f"Processed: {summary.processed_entries:,}")
        report.append(f"Restored: {summary.restored:,}")
        report.append(f"Missing at destination: {summary.missing:,}")
        report.append(f"Failed: {summary.failed:,}")
        report.append("")
        report.extend(self._errors(summary.errors))
        report.append(f"STATUS: {self._status(summary.cancelled, summary.errors)}")
        return "\n".join(report)

    def generate_status_report(self, counts: Dict[str, int], plan: Optional[PlanSummary],
                               incomplete: List[ItemState]) -> str:
        report = self._header("PHOTO TIDY STATUS")
        report.append(f"Database: {self.context.database_path}")
        report.append(f"Inventory records: {counts.get('inventory', 0):,}")
        report.append(f"Plan entries: {counts.get('plan', 0):,}")
        report.append(f"Log entries: {counts.get('operation_log', 0):,}")
        if plan is not None:
            report.append(f"Plan generated: {plan.generated_at} ({format_bytes(plan.total_bytes)})")
        report.append("")
        if incomplete:
            report.append("=== UNFINISHED OPERATIONS ===")
            for state in incomplete:
                action = 'undo' if state.undo_pending else state.operation
                report.append(f"- {action}: {state.original_path} -> {state.destination_path}")
            report.append("")
        return "\n".join(report)

    @staticmethod
    def _status(cancelled: bool, errors: List[str]) -> str:
        if cancelled:
            return "CANCELLED"
        return "COMPLETE" if not errors else "COMPLETED WITH ISSUES"

    def save_report(self, content: str, name: str) -> str:
        """
        Save a report under the log directory.

        Args:
            content: Report text
            name: Report kind, used in the file name

        Returns:
            Path to saved report file
        """
        timestamp = now_iso().replace(':', '-')
        report_file = self.log_dir / f"{name}_report_{timestamp}.txt"
        report_file.parent.mkdir(parents=True, exist_ok=True)

        try:
            with open(report_file, 'w') as f:
                f.write(content)
        except OSError as e:
            logger.error(f"Failed to save report: {e}")
            raise

        logger.info(f"Report saved: {report_file}")
        return str(report_file)

    def export_plan(self, plan: PlanSummary, target: Path) -> str:
        """Write the plan as camelCase JSON to ``target``."""
        target = Path(target)
        target.parent.mkdir(parents=True, exist_ok=True)
        with open(target, 'w') as f:
            json.dump(plan.to_payload(), f, indent=2)
        logger.info(f"Plan exported: {target}")
        return str(target)
