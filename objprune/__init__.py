"""
objprune - prune time-bucketed objects according to a retention policy.

This package discovers objects under a directory tree whose paths encode a
time, decides with a retention policy which of them to keep, and reports or
applies the resulting removals.
"""

from .errors import (
    PruneError,
    UnsupportedPolicyError,
    MissingTimeBucketError,
    StageError,
)
from .models import ObjectRecord, ObjectKind, DecisionRecord, DecisionAction, PruneWarning, WarningCode, PruneSummary
from .policies import PolicyFactory, PolicyKind, TwiceMonthlyPolicy, policy_for_name
from .config import PruneSettings, PruneConfigManager
from .operation import PruneOperation, prune

__version__ = "0.1.0"

__all__ = [
    'PruneError',
    'UnsupportedPolicyError',
    'MissingTimeBucketError',
    'StageError',
    'ObjectRecord',
    'ObjectKind',
    'DecisionRecord',
    'DecisionAction',
    'PruneWarning',
    'WarningCode',
    'PruneSummary',
    'PolicyFactory',
    'PolicyKind',
    'TwiceMonthlyPolicy',
    'policy_for_name',
    'PruneSettings',
    'PruneConfigManager',
    'PruneOperation',
    'prune'
]
