"""
Data models for the prune pipeline.

This module contains the data classes and enums passed between the pipeline
stages: discovered objects, decisions, warnings and run summaries.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Optional, List, Dict, Any

from .errors import InvalidDecisionError


class ObjectKind(Enum):
    """Kinds of entries found in an object store."""
    OBJECT = "object"
    DIRECTORY = "directory"


class DecisionAction(Enum):
    """Actions a policy can decide on for an object."""
    REMOVE = "remove"
    SKIP = "skip"


class WarningCode(Enum):
    """Codes for non-fatal warnings raised by a policy."""
    NERR_MISSING = "nerr_missing"
    NWARN_NODAY1 = "nwarn_noday1"
    NWARN_NODAY2 = "nwarn_noday2"


@dataclass
class ObjectRecord:
    """An object discovered under the prune root."""
    path: str
    kind: ObjectKind = ObjectKind.OBJECT
    timestamp: Optional[datetime] = None
    basename: Optional[str] = None

    def annotated(self, timestamp: Optional[datetime], basename: str) -> "ObjectRecord":
        """Return a copy carrying calendar metadata."""
        return replace(self, timestamp=timestamp, basename=basename)


@dataclass(frozen=True)
class DecisionRecord:
    """
    A policy decision for one object.

    ``reason`` is set if and only if the action is SKIP.
    """
    action: DecisionAction
    path: str
    reason: Optional[str] = None

    @classmethod
    def remove(cls, path: str) -> "DecisionRecord":
        return cls(DecisionAction.REMOVE, path)

    @classmethod
    def skip(cls, path: str, reason: str) -> "DecisionRecord":
        return cls(DecisionAction.SKIP, path, reason)

    def validate(self) -> None:
        """Raise InvalidDecisionError if the record breaks the decision contract."""
        if not isinstance(self.path, str) or not self.path:
            raise InvalidDecisionError(f"decision has no path: {self!r}")
        if self.action == DecisionAction.SKIP:
            if not isinstance(self.reason, str) or not self.reason:
                raise InvalidDecisionError(f"skip decision without a reason: {self.path}")
        elif self.action == DecisionAction.REMOVE:
            if self.reason is not None:
                raise InvalidDecisionError(f"remove decision with a reason: {self.path}")
        else:
            raise InvalidDecisionError(f"unsupported action: {self.action!r}")

    def to_dict(self) -> Dict[str, Any]:
        data = {"action": self.action.value, "path": self.path}
        if self.reason is not None:
            data["reason"] = self.reason
        return data


@dataclass(frozen=True)
class PruneWarning:
    """A non-fatal condition found while deciding a month."""
    code: WarningCode
    month: str  # 'YYYY-MM'
    message: str

    def __str__(self) -> str:
        return f"{self.month}: {self.message}"

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code.value, "month": self.month, "message": self.message}


@dataclass
class PruneSummary:
    """Accounting for a single prune operation."""
    operation_id: str
    started_at: datetime
    root: str
    policy: str
    dry_run: bool
    objects_seen: int = 0
    removed: int = 0
    skipped: int = 0
    warnings: List[PruneWarning] = field(default_factory=list)
    duration_seconds: float = 0.0
    status: str = "running"  # 'running', 'success', 'failed'
    error_message: Optional[str] = None

    @property
    def decisions(self) -> int:
        return self.removed + self.skipped

    def to_dict(self) -> Dict[str, Any]:
        return {
            "operation_id": self.operation_id,
            "started_at": self.started_at.isoformat(),
            "root": self.root,
            "policy": self.policy,
            "dry_run": self.dry_run,
            "objects_seen": self.objects_seen,
            "removed": self.removed,
            "skipped": self.skipped,
            "warnings": [w.to_dict() for w in self.warnings],
            "duration_seconds": self.duration_seconds,
            "status": self.status,
            "error_message": self.error_message,
        }
