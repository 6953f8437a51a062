"""
Retention policies.

A policy consumes every annotated object of a prune operation, and once the
input is exhausted decides, for each object, whether it is removed or kept.
Policies are inherently stop-the-world: nothing is decided for a month until
every object in that month has been seen, and objects can arrive in any
order, so the whole input is buffered first.

Policies are looked up by name through PolicyFactory. The only policy is
'twicemonthly', which keeps two days per calendar month.
"""

import logging
import posixpath
import re
from abc import ABC, abstractmethod
from enum import Enum
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Sequence, Type, Union

from .errors import (
    MissingTimeBucketError, PolicyClosedError, PolicyInvariantError, PruneConfigError, UnsupportedPolicyError
)
from .models import DecisionRecord, ObjectRecord, PruneWarning, WarningCode
from .timefilter import ensure_utc

Pattern = Union[str, "re.Pattern"]
WarningCallback = Callable[[PruneWarning], None]

# year -> month -> day -> records, all in insertion order
BucketTree = Dict[int, Dict[int, Dict[int, List[ObjectRecord]]]]


def compile_patterns(patterns: Iterable[Pattern]) -> List["re.Pattern"]:
    """Compile expected-basename patterns, passing compiled ones through."""
    compiled = []
    for pattern in patterns:
        if isinstance(pattern, re.Pattern):
            compiled.append(pattern)
            continue
        try:
            compiled.append(re.compile(pattern))
        except (re.error, TypeError) as e:
            raise PruneConfigError(f"invalid expected pattern {pattern!r}: {e}") from e
    return compiled


class RetentionPolicyEngine(ABC):
    """
    Base class for retention policies.

    Subclasses implement _ingest() to buffer a record and _decide() to yield
    one DecisionRecord per buffered record once input has ended.
    """

    name: str = ""

    def __init__(self, expect: Iterable[Pattern] = (), logger: Optional[logging.Logger] = None):
        # copied so later changes by the caller have no effect
        self.expect = tuple(compile_patterns(expect))
        self.logger = logger or logging.getLogger(f"{__name__}.{self.__class__.__name__}")
        self.warnings: List[PruneWarning] = []
        self.records_ingested = 0
        self._listeners: List[WarningCallback] = []
        self._closed = False

    def on_warning(self, callback: WarningCallback) -> None:
        """Register a listener for non-fatal warnings."""
        self._listeners.append(callback)

    def _warn(self, code: WarningCode, month: str, message: str) -> None:
        warning = PruneWarning(code=code, month=month, message=message)
        self.warnings.append(warning)
        self.logger.debug(f"Policy warning {code.value}: {warning}")
        for callback in self._listeners:
            callback(warning)

    @property
    def closed(self) -> bool:
        return self._closed

    def ingest(self, record: ObjectRecord) -> None:
        """Buffer one annotated record."""
        if self._closed:
            raise PolicyClosedError(f"policy already decided; cannot accept {record.path}")
        self._ingest(record)
        self.records_ingested += 1

    def finish(self) -> Iterator[DecisionRecord]:
        """
        End the input and return the decisions.

        Decisions are produced lazily, a month at a time. No further records
        are accepted afterwards.
        """
        if self._closed:
            raise PolicyClosedError("policy already decided")
        self._closed = True
        return self._decide()

    def decide(self, records: Iterable[ObjectRecord]) -> List[DecisionRecord]:
        """Ingest every record, then return all decisions."""
        for record in records:
            self.ingest(record)
        return list(self.finish())

    @abstractmethod
    def _ingest(self, record: ObjectRecord) -> None:
        pass

    @abstractmethod
    def _decide(self) -> Iterator[DecisionRecord]:
        pass


class TwiceMonthlyPolicy(RetentionPolicyEngine):
    """
    Keep exactly two days' worth of objects per calendar month.

    The first kept day is the first complete day in days 1-14 and the second
    the first complete day in days 15-31. Every object on any other day is
    removed. A day is complete when its objects' basenames satisfy all the
    expected patterns; with no expected patterns any day with objects is
    complete. If either half of a month has no complete day, nothing in that
    month is removed.
    """

    name = "twicemonthly"

    FIRST_HALF = range(1, 15)
    SECOND_HALF = range(15, 32)
    PREFERRED_FIRST_DAY = 1
    PREFERRED_SECOND_DAY = 15

    REASON_KEEP = "designated for keeping"
    REASON_UNDETERMINED = "could not determine which objects to keep in this month"

    def __init__(self, expect: Iterable[Pattern] = (), logger: Optional[logging.Logger] = None):
        super().__init__(expect=expect, logger=logger)
        self._tree: BucketTree = {}

    def _ingest(self, record: ObjectRecord) -> None:
        if record.timestamp is None:
            raise MissingTimeBucketError(record.path)

        when = ensure_utc(record.timestamp)
        month_tree = self._tree.setdefault(when.year, {}).setdefault(when.month, {})
        month_tree.setdefault(when.day, []).append(record)

    def _decide(self) -> Iterator[DecisionRecord]:
        for year, year_tree in self._tree.items():
            for month, month_tree in year_tree.items():
                label = f"{year}-{month:02d}"
                yield from self.process_month(label, month_tree)

        self._tree = {}

    def process_month(self, label: str, month_tree: Dict[int, List[ObjectRecord]]) -> Iterator[DecisionRecord]:
        """Decide one month and yield a decision for each of its records."""
        empty_days = [day for day, records in month_tree.items() if not records]
        if empty_days:
            raise PolicyInvariantError(f"{label}: empty bucket for day {empty_days[0]}")

        skip = False

        # both halves are always searched so that both can warn
        first = self._first_complete_day(month_tree, self.FIRST_HALF)
        if first is None:
            self._warn(WarningCode.NERR_MISSING, label, "no valid objects found in days 1-14")
            skip = True

        second = self._first_complete_day(month_tree, self.SECOND_HALF)
        if second is None:
            self._warn(WarningCode.NERR_MISSING, label, "no valid objects found after day 15")
            skip = True

        if not skip:
            if first != self.PREFERRED_FIRST_DAY:
                self._warn(WarningCode.NWARN_NODAY1, label, "missing objects from day 1")
            if second != self.PREFERRED_SECOND_DAY:
                self._warn(WarningCode.NWARN_NODAY2, label, "missing objects from day 15")
            if first == second:
                raise PolicyInvariantError(f"{label}: both halves chose day {first}")
            self.logger.info(f"{label}: keeping days {first} and {second}")
        else:
            self.logger.info(f"{label}: keeping every object, no days could be chosen")

        for day in sorted(month_tree):
            for record in month_tree[day]:
                if skip:
                    yield DecisionRecord.skip(record.path, self.REASON_UNDETERMINED)
                elif day == first or day == second:
                    yield DecisionRecord.skip(record.path, self.REASON_KEEP)
                else:
                    yield DecisionRecord.remove(record.path)

    def _first_complete_day(self, month_tree: Dict[int, List[ObjectRecord]], days: range) -> Optional[int]:
        for day in days:
            if self.day_is_complete(month_tree.get(day, ())):
                return day
        return None

    def day_is_complete(self, records: Sequence[ObjectRecord]) -> bool:
        """
        Check whether a day's objects satisfy every expected pattern.

        Each basename consumes at most one pattern: the first remaining one it
        matches. The day is complete once no patterns remain.
        """
        if not records:
            return False
        if not self.expect:
            return True

        remaining = list(self.expect)
        for record in records:
            basename = record.basename or posixpath.basename(record.path)
            for i, pattern in enumerate(remaining):
                if pattern.search(basename):
                    del remaining[i]
                    break
            if not remaining:
                return True

        return False


class PolicyKind(Enum):
    """Supported retention policies."""
    TWICE_MONTHLY = "twicemonthly"


class PolicyFactory:
    """Resolves policy names and creates policy engines."""

    _policies: Dict[PolicyKind, Type[RetentionPolicyEngine]] = {
        PolicyKind.TWICE_MONTHLY: TwiceMonthlyPolicy,
    }

    @classmethod
    def policy_for_name(cls, name: str) -> PolicyKind:
        """
        Resolve a policy name, ignoring case.

        Raises:
            UnsupportedPolicyError: If no policy has that name
        """
        if not isinstance(name, str):
            raise UnsupportedPolicyError(repr(name))
        try:
            kind = PolicyKind(name.lower())
        except ValueError:
            raise UnsupportedPolicyError(name) from None
        if kind not in cls._policies:
            raise UnsupportedPolicyError(name)
        return kind

    @classmethod
    def create_policy(cls, kind: PolicyKind, expect: Iterable[Pattern] = (),
                      logger: Optional[logging.Logger] = None) -> RetentionPolicyEngine:
        """Create a fresh policy engine for one prune operation."""
        policy_class = cls._policies[kind]
        return policy_class(expect=expect, logger=logger)

    @classmethod
    def available_policies(cls) -> List[str]:
        return [kind.value for kind in cls._policies]


def policy_for_name(name: str) -> PolicyKind:
    """Resolve a policy name; see PolicyFactory.policy_for_name."""
    return PolicyFactory.policy_for_name(name)
