"""
Audit trail for prune operations.

Every decision is appended to a daily JSON-lines file, and each run produces
a JSON report with its summary and warnings.
"""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from .models import DecisionRecord, PruneSummary

logger = logging.getLogger(__name__)


class PruneAuditLogger:
    """Writes decision logs and run reports for prune operations."""

    def __init__(self, logs_dir: str = "logs/objprune"):
        self.logs_dir = Path(logs_dir)
        self.logs_dir.mkdir(parents=True, exist_ok=True)
        self.decision_log_path: Optional[Path] = None
        self._decision_file = None
        self._operation_id = None

    def open(self, operation_id: str) -> None:
        """Start a run; decisions are appended to today's log file."""
        log_date = datetime.now().strftime("%Y-%m-%d")
        self.decision_log_path = self.logs_dir / f"decisions_{log_date}.jsonl"
        self._decision_file = open(self.decision_log_path, 'a')
        self._operation_id = operation_id

    def record_decision(self, decision: DecisionRecord) -> None:
        """Append one decision to the decision log."""
        if self._decision_file is None:
            raise RuntimeError("audit log is not open")
        entry = {"operation_id": self._operation_id, **decision.to_dict()}
        self._decision_file.write(json.dumps(entry) + '\n')

    def close(self) -> None:
        if self._decision_file is not None:
            self._decision_file.close()
            self._decision_file = None

    def write_report(self, summary: PruneSummary) -> Path:
        """Write the run report for a finished operation."""
        reports_dir = self.logs_dir / "reports"
        reports_dir.mkdir(parents=True, exist_ok=True)

        report_file = reports_dir / f"prune_report_{summary.operation_id}.json"
        report = {
            "operation_summary": summary.to_dict(),
            "warning_counts": self._count_warnings(summary),
            "report_metadata": {
                "generated_at": datetime.now().isoformat(),
                "report_type": "prune_operation",
            }
        }

        with open(report_file, 'w') as f:
            json.dump(report, f, indent=2)

        logger.debug(f"Prune report created: {report_file}")
        return report_file

    @staticmethod
    def _count_warnings(summary: PruneSummary) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for warning in summary.warnings:
            counts[warning.code.value] = counts.get(warning.code.value, 0) + 1
        return counts

    @staticmethod
    def load_report(report_file: Path) -> Optional[Dict[str, Any]]:
        """Load a previously written report, or None if it does not exist."""
        if not Path(report_file).exists():
            return None
        with open(report_file, 'r') as f:
            return json.load(f)
