"""
Unit tests for the twice-monthly retention policy.

Tests keep-day selection, completeness matching, warnings and the
conservative handling of months that cannot be decided.
"""

import random
import re
import unittest
from collections import Counter
from datetime import datetime, timedelta, timezone

import pytest

from objprune.errors import (
    MissingTimeBucketError, PolicyClosedError, PolicyInvariantError, PruneConfigError, UnsupportedPolicyError
)
from objprune.models import DecisionAction, ObjectRecord, WarningCode
from objprune.policies import PolicyFactory, PolicyKind, TwiceMonthlyPolicy, policy_for_name

KEEP = TwiceMonthlyPolicy.REASON_KEEP
UNDETERMINED = TwiceMonthlyPolicy.REASON_UNDETERMINED


def make_record(year, month, day, name="dump.gz", hour=0):
    """Create an annotated record in the bucket for the given day."""
    path = f"/backups/{year:04d}/{month:02d}/{day:02d}/{hour:02d}/{name}"
    return ObjectRecord(
        path=path,
        timestamp=datetime(year, month, day, hour, tzinfo=timezone.utc),
        basename=name
    )


def decisions_by_path(decisions):
    return {d.path: d for d in decisions}


class TestTwiceMonthlyScenarios(unittest.TestCase):
    """Test the documented keep-day scenarios."""

    def test_keeps_first_and_fifteenth(self):
        """Test days {1,3,15,20} keep days 1 and 15 and remove the rest."""
        records = [make_record(2020, 6, day) for day in (1, 3, 15, 20)]
        policy = TwiceMonthlyPolicy()

        decisions = decisions_by_path(policy.decide(records))

        self.assertEqual(decisions[records[0].path].action, DecisionAction.SKIP)
        self.assertEqual(decisions[records[0].path].reason, KEEP)
        self.assertEqual(decisions[records[1].path].action, DecisionAction.REMOVE)
        self.assertIsNone(decisions[records[1].path].reason)
        self.assertEqual(decisions[records[2].path].reason, KEEP)
        self.assertEqual(decisions[records[3].path].action, DecisionAction.REMOVE)
        self.assertEqual(policy.warnings, [])

    def test_substitute_days_warn_independently(self):
        """Test days {5,20} are kept and both deviation warnings fire."""
        records = [make_record(2020, 7, 5), make_record(2020, 7, 20)]
        policy = TwiceMonthlyPolicy()

        decisions = policy.decide(records)

        self.assertTrue(all(d.action == DecisionAction.SKIP and d.reason == KEEP for d in decisions))
        codes = [w.code for w in policy.warnings]
        self.assertEqual(codes, [WarningCode.NWARN_NODAY1, WarningCode.NWARN_NODAY2])
        self.assertTrue(all(w.month == "2020-07" for w in policy.warnings))

    def test_only_first_day_substituted(self):
        """Test a missing day 1 with day 15 present only warns about day 1."""
        records = [make_record(2020, 7, 2), make_record(2020, 7, 15), make_record(2020, 7, 16)]
        policy = TwiceMonthlyPolicy()

        decisions = decisions_by_path(policy.decide(records))

        self.assertEqual([w.code for w in policy.warnings], [WarningCode.NWARN_NODAY1])
        self.assertEqual(decisions[records[2].path].action, DecisionAction.REMOVE)

    def test_empty_first_half_degrades_month(self):
        """Test days {20,25} skip everything with a missing-objects warning."""
        records = [make_record(2020, 8, 20), make_record(2020, 8, 25, name="a.gz"),
                   make_record(2020, 8, 25, name="b.gz")]
        policy = TwiceMonthlyPolicy()

        decisions = policy.decide(records)

        self.assertEqual(len(decisions), 3)
        for decision in decisions:
            self.assertEqual(decision.action, DecisionAction.SKIP)
            self.assertEqual(decision.reason, UNDETERMINED)
        self.assertEqual(len(policy.warnings), 1)
        self.assertEqual(policy.warnings[0].code, WarningCode.NERR_MISSING)
        self.assertEqual(str(policy.warnings[0]), "2020-08: no valid objects found in days 1-14")

    def test_empty_second_half_degrades_month(self):
        """Test a month with nothing after day 14 is skipped entirely."""
        records = [make_record(2020, 9, day) for day in (1, 2, 14)]
        policy = TwiceMonthlyPolicy()

        decisions = policy.decide(records)

        self.assertTrue(all(d.reason == UNDETERMINED for d in decisions))
        self.assertEqual([str(w) for w in policy.warnings], ["2020-09: no valid objects found after day 15"])

    def test_both_halves_incomplete_warn_twice(self):
        """Test both halves are checked even when the first is already missing."""
        records = [make_record(2020, 10, 1, name="other"), make_record(2020, 10, 20, name="other")]
        policy = TwiceMonthlyPolicy(expect=[r"^dump\.gz$"])

        decisions = policy.decide(records)

        self.assertTrue(all(d.action == DecisionAction.SKIP for d in decisions))
        self.assertEqual([w.code for w in policy.warnings],
                         [WarningCode.NERR_MISSING, WarningCode.NERR_MISSING])

    def test_missing_timestamp_is_fatal(self):
        """Test a record without a time bucket fails with its path."""
        policy = TwiceMonthlyPolicy()
        record = ObjectRecord(path="/backups/latest/dump.gz", basename="dump.gz")

        with self.assertRaises(MissingTimeBucketError) as ctx:
            policy.ingest(record)

        self.assertIn("/backups/latest/dump.gz", str(ctx.exception))
        self.assertTrue(str(ctx.exception).startswith("found entry not under a particular time bucket"))


class TestDayCompleteness(unittest.TestCase):
    """Test how days are matched against expected basename patterns."""

    def test_empty_expectations_accept_any_day(self):
        """Test any non-empty bucket is complete without patterns."""
        policy = TwiceMonthlyPolicy()
        self.assertTrue(policy.day_is_complete([make_record(2020, 1, 1, name="anything")]))
        self.assertFalse(policy.day_is_complete([]))

    def test_patterns_are_consumed_once(self):
        """Test two identical patterns need two matching basenames."""
        policy = TwiceMonthlyPolicy(expect=[r"a\.log", r"a\.log"])

        two = [make_record(2020, 1, 1, name="a.log"), make_record(2020, 1, 1, name="a.log", hour=1)]
        one = [make_record(2020, 1, 1, name="a.log")]

        self.assertTrue(policy.day_is_complete(two))
        self.assertFalse(policy.day_is_complete(one))

    def test_greedy_first_match_wins(self):
        """Test each basename takes the first remaining pattern it matches."""
        policy = TwiceMonthlyPolicy(expect=[r"log", r"^a\.log$"])
        records = [make_record(2020, 1, 1, name="a.log"), make_record(2020, 1, 1, name="b.log", hour=1)]

        # 'a.log' uses up 'log', leaving nothing that 'b.log' can satisfy
        self.assertFalse(policy.day_is_complete(records))
        self.assertTrue(policy.day_is_complete(list(reversed(records))))

    def test_patterns_search_anywhere_in_basename(self):
        """Test patterns are searched, not anchored."""
        policy = TwiceMonthlyPolicy(expect=["manifest"])
        self.assertTrue(policy.day_is_complete([make_record(2020, 1, 1, name="db.manifest.json")]))

    def test_incomplete_first_day_is_passed_over(self):
        """Test the first complete day is kept and incomplete earlier days removed."""
        policy = TwiceMonthlyPolicy(expect=[r"^dump\.gz$", r"^manifest\.json$"])
        day1 = make_record(2021, 3, 1, name="dump.gz")
        day2 = [make_record(2021, 3, 2, name="dump.gz"), make_record(2021, 3, 2, name="manifest.json")]
        day15 = [make_record(2021, 3, 15, name="manifest.json"), make_record(2021, 3, 15, name="dump.gz")]

        decisions = decisions_by_path(policy.decide([day1] + day2 + day15))

        self.assertEqual(decisions[day1.path].action, DecisionAction.REMOVE)
        self.assertTrue(all(decisions[r.path].reason == KEEP for r in day2 + day15))
        self.assertEqual([w.code for w in policy.warnings], [WarningCode.NWARN_NODAY1])

    def test_expectations_copied_at_construction(self):
        """Test changing the caller's list later has no effect."""
        expect = [r"^dump\.gz$"]
        policy = TwiceMonthlyPolicy(expect=expect)
        expect.append(r"^never$")

        self.assertTrue(policy.day_is_complete([make_record(2020, 1, 1)]))

    def test_compiled_patterns_accepted(self):
        """Test precompiled patterns are used as given."""
        policy = TwiceMonthlyPolicy(expect=[re.compile(r"DUMP", re.IGNORECASE)])
        self.assertTrue(policy.day_is_complete([make_record(2020, 1, 1, name="dump.gz")]))

    def test_invalid_pattern_rejected(self):
        """Test an invalid regular expression fails at construction."""
        with self.assertRaises(PruneConfigError):
            TwiceMonthlyPolicy(expect=["("])


class TestPolicyAccounting:
    """Test that every record receives exactly one decision."""

    def test_every_record_decided_once(self):
        """Test totality over a random spread of objects across months."""
        rng = random.Random(1234)
        start = datetime(2019, 11, 1, tzinfo=timezone.utc)
        records = []
        for i in range(500):
            when = start + timedelta(hours=rng.randrange(0, 24 * 200))
            records.append(ObjectRecord(
                path=f"/r/{when:%Y/%m/%d/%H}/obj{i}",
                timestamp=when,
                basename=f"obj{i}"
            ))
        rng.shuffle(records)

        decisions = TwiceMonthlyPolicy().decide(records)

        assert len(decisions) == len(records)
        assert Counter(d.path for d in decisions) == Counter(r.path for r in records)

    def test_remove_set_is_month_minus_keep_days(self):
        """Test every day other than the two keep days is removed."""
        days = [2, 4, 9, 14, 16, 22, 31]
        records = [make_record(2020, 1, day, name=f"o{n}", hour=n)
                   for day in days for n in range(3)]

        decisions = TwiceMonthlyPolicy().decide(records)

        kept_days = {int(d.path.split("/")[4]) for d in decisions if d.action == DecisionAction.SKIP}
        removed_days = {int(d.path.split("/")[4]) for d in decisions if d.action == DecisionAction.REMOVE}
        assert kept_days == {2, 16}
        assert removed_days == set(days) - {2, 16}

    def test_months_decided_independently(self):
        """Test a degraded month does not affect its neighbours."""
        records = [make_record(2020, 1, 1), make_record(2020, 1, 3), make_record(2020, 1, 15),
                   make_record(2020, 2, 20)]
        policy = TwiceMonthlyPolicy()

        decisions = decisions_by_path(policy.decide(records))

        assert decisions[records[1].path].action == DecisionAction.REMOVE
        assert decisions[records[3].path].reason == UNDETERMINED
        assert [w.month for w in policy.warnings] == ["2020-02"]

    def test_buckets_use_utc_day(self):
        """Test timestamps in other zones are bucketed by their UTC date."""
        plus_two = timezone(timedelta(hours=2))
        record = ObjectRecord(path="/r/x", timestamp=datetime(2020, 7, 1, 1, tzinfo=plus_two), basename="x")
        policy = TwiceMonthlyPolicy()

        policy.decide([record])

        # 2020-06-30 23:00 UTC: nothing in the first half of June
        assert [(w.code, w.month) for w in policy.warnings] == [(WarningCode.NERR_MISSING, "2020-06")]

    def test_decisions_follow_day_then_arrival_order(self):
        """Test decisions within a month come out by day, then arrival order."""
        late = make_record(2020, 5, 20, name="late")
        early_b = make_record(2020, 5, 3, name="b", hour=5)
        early_a = make_record(2020, 5, 3, name="a", hour=1)

        decisions = TwiceMonthlyPolicy().decide([late, early_b, early_a])

        assert [d.path for d in decisions] == [early_b.path, early_a.path, late.path]

    def test_warning_listeners_notified(self):
        """Test registered listeners see each warning as it is raised."""
        seen = []
        policy = TwiceMonthlyPolicy()
        policy.on_warning(seen.append)

        policy.decide([make_record(2020, 7, 5), make_record(2020, 7, 20)])

        assert seen == policy.warnings
        assert len(seen) == 2

    def test_no_records_after_finish(self):
        """Test a finished policy refuses more input."""
        policy = TwiceMonthlyPolicy()
        policy.ingest(make_record(2020, 1, 1))
        list(policy.finish())

        assert policy.closed
        with pytest.raises(PolicyClosedError):
            policy.ingest(make_record(2020, 1, 2))
        with pytest.raises(PolicyClosedError):
            policy.finish()

    def test_empty_input_yields_nothing(self):
        """Test a policy with no input decides nothing and warns about nothing."""
        policy = TwiceMonthlyPolicy()
        assert policy.decide([]) == []
        assert policy.warnings == []


class TestPolicyInvariants:
    """Test that impossible month states fail before any decision is emitted."""

    def test_empty_day_bucket_rejected(self):
        """Test a day bucket without records stops the month."""
        month = {1: [make_record(2020, 6, 1)], 15: [make_record(2020, 6, 15)], 20: []}

        with pytest.raises(PolicyInvariantError) as exc_info:
            next(TwiceMonthlyPolicy().process_month("2020-06", month))
        assert "2020-06: empty bucket for day 20" in str(exc_info.value)

    def test_same_keep_day_for_both_halves_rejected(self):
        """Test overlapping halves cannot keep the same day twice."""

        class OverlappingPolicy(TwiceMonthlyPolicy):
            SECOND_HALF = range(1, 32)

        month = {1: [make_record(2020, 6, 1)], 3: [make_record(2020, 6, 3)]}

        with pytest.raises(PolicyInvariantError) as exc_info:
            list(OverlappingPolicy().process_month("2020-06", month))
        assert "both halves chose day 1" in str(exc_info.value)


class TestPolicyRegistry:
    """Test policy lookup by name."""

    def test_lookup_ignores_case(self):
        """Test policy names resolve regardless of case."""
        assert policy_for_name("twicemonthly") is PolicyKind.TWICE_MONTHLY
        assert policy_for_name("TwiceMonthly") is PolicyKind.TWICE_MONTHLY

    def test_unknown_policy_rejected(self):
        """Test an unknown name fails instead of falling back to a default."""
        with pytest.raises(UnsupportedPolicyError) as exc_info:
            policy_for_name("weekly")
        assert str(exc_info.value) == "unsupported policy: weekly"
        assert exc_info.value.name == "weekly"

    def test_create_policy_returns_fresh_engines(self):
        """Test each created policy owns its own state."""
        first = PolicyFactory.create_policy(PolicyKind.TWICE_MONTHLY)
        second = PolicyFactory.create_policy(PolicyKind.TWICE_MONTHLY, expect=["x"])

        assert isinstance(first, TwiceMonthlyPolicy)
        assert first is not second
        first.ingest(make_record(2020, 1, 1))
        assert second.records_ingested == 0

    def test_available_policies(self):
        """Test the registered policy names are listed."""
        assert PolicyFactory.available_policies() == ["twicemonthly"]
