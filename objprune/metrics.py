"""
Prometheus metrics for prune operations.

Counts decisions, warnings and stage failures, and times whole runs. Each
PruneMetrics instance owns a private registry so that several operations in
one process (and tests) do not collide on metric names.
"""

from typing import Any, Dict, Optional

import structlog
from prometheus_client import CollectorRegistry, Counter, Histogram, generate_latest

from .models import DecisionRecord, PruneWarning

logger = structlog.get_logger(__name__)


class PruneMetrics:
    """Metrics for decisions, warnings and failures of prune operations."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        """
        Initialize prune metrics.

        Args:
            registry: Optional Prometheus registry. If None, a new one is created.
        """
        self.registry = registry or CollectorRegistry()

        self.decisions_total = Counter(
            'objprune_decisions_total',
            'Decisions emitted by the retention policy',
            ['action'],
            registry=self.registry
        )

        self.warnings_total = Counter(
            'objprune_warnings_total',
            'Non-fatal warnings raised by the retention policy',
            ['code'],
            registry=self.registry
        )

        self.stage_errors_total = Counter(
            'objprune_stage_errors_total',
            'Fatal failures by pipeline stage',
            ['stage'],
            registry=self.registry
        )

        self.objects_seen_total = Counter(
            'objprune_objects_seen_total',
            'Objects discovered under the prune root',
            registry=self.registry
        )

        self.run_duration = Histogram(
            'objprune_run_duration_seconds',
            'Duration of prune operations',
            buckets=[0.1, 0.5, 1.0, 5.0, 15.0, 60.0, 300.0, 900.0, 3600.0],
            registry=self.registry
        )

    def record_object_seen(self) -> None:
        self.objects_seen_total.inc()

    def record_decision(self, decision: DecisionRecord) -> None:
        self.decisions_total.labels(action=decision.action.value).inc()

    def record_warning(self, warning: PruneWarning) -> None:
        self.warnings_total.labels(code=warning.code.value).inc()

    def record_stage_error(self, stage: str) -> None:
        self.stage_errors_total.labels(stage=stage).inc()
        logger.warning("Prune stage failed", stage=stage)

    def record_run(self, duration_seconds: float) -> None:
        self.run_duration.observe(duration_seconds)
        logger.info("Prune run recorded", duration_seconds=round(duration_seconds, 3))

    def get_metrics_text(self) -> str:
        """Return the metrics in Prometheus exposition format."""
        return generate_latest(self.registry).decode('utf-8')

    def snapshot(self) -> Dict[str, Any]:
        """Return current counter values keyed by metric and label."""
        values: Dict[str, Any] = {}
        for metric in self.registry.collect():
            for sample in metric.samples:
                if not sample.name.endswith('_total'):
                    continue
                label = ",".join(f"{k}={v}" for k, v in sorted(sample.labels.items()))
                key = f"{sample.name}{{{label}}}" if label else sample.name
                values[key] = sample.value
        return values
