"""Unit tests for acquisition cohorts and retention."""

from datetime import datetime, timezone

import pytest

from customer_insights.analyses.cohorts import (
    DEFAULT_RETENTION_PERIODS,
    RetentionPolicy,
    analyze_cohorts,
    compute_cohorts,
)
from customer_insights.errors import InvalidCohortType
from customer_insights.foundation import Granularity

UTC = timezone.utc
START = datetime(2024, 1, 1, tzinfo=UTC)

ACTIVITY = {
    "A": [datetime(2024, 1, 10, tzinfo=UTC), datetime(2024, 2, 12, tzinfo=UTC), datetime(2024, 4, 5, tzinfo=UTC)],
    "B": [datetime(2024, 1, 20, tzinfo=UTC), datetime(2024, 3, 3, tzinfo=UTC)],
    "C": [datetime(2024, 2, 5, tzinfo=UTC), datetime(2024, 3, 9, tzinfo=UTC)],
}


@pytest.fixture
def populated(store, make_event):
    """January cohort {A, B} and February cohort {C}."""
    store.append_many(
        [
            make_event(customer, "APP_OPENED", ts)
            for customer, timestamps in ACTIVITY.items()
            for ts in timestamps
        ]
    )
    return store


class TestAnalyzeCohorts:
    """Test retention under both policies."""

    def test_any_event_retention(self, populated, now):
        """Test that activity in the target bucket counts as retained."""
        analysis = analyze_cohorts(populated, "monthly", [1, 2, 3], START, now=now)

        assert [c.label for c in analysis.per_cohort] == ["2024-01", "2024-02"]
        assert [c.size for c in analysis.per_cohort] == [2, 1]
        assert analysis.per_cohort[0].retention == {1: 0.5, 2: 0.5, 3: 0.5}
        assert analysis.per_cohort[1].retention == {1: 1.0, 2: 0.0, 3: 0.0}
        assert analysis.average_retention == {1: 0.75, 2: 0.25, 3: 0.25}

    def test_unbroken_retention_never_increases(self, populated, now):
        """Test that unbroken retention requires every bucket up to the period."""
        analysis = analyze_cohorts(
            populated, "monthly", [1, 2, 3], START, policy=RetentionPolicy.UNBROKEN, now=now
        )

        assert analysis.per_cohort[0].retention == {1: 0.5, 2: 0.0, 3: 0.0}
        assert analysis.per_cohort[1].retention == {1: 1.0, 2: 0.0, 3: 0.0}
        for cohort in analysis.per_cohort:
            values = [cohort.retention[p] for p in (1, 2, 3)]
            assert values == sorted(values, reverse=True)

    def test_unreached_periods_are_none(self, populated):
        """Test that periods whose bucket has not started are reported as None."""
        now = datetime(2024, 3, 15, tzinfo=UTC)
        analysis = analyze_cohorts(populated, "monthly", [1, 2, 3], START, now=now)

        january, february = analysis.per_cohort
        assert january.retention[2] == 0.5
        assert january.retention[3] is None
        assert february.retention[1] == 1.0
        assert february.retention[2] is None
        assert analysis.average_retention[2] == 0.5
        assert analysis.average_retention[3] is None

    def test_start_date_excludes_earlier_acquisitions(self, populated, now):
        """Test that customers first seen before start_date join no cohort."""
        analysis = analyze_cohorts(
            populated, "monthly", [1], datetime(2024, 2, 1, tzinfo=UTC), now=now
        )
        assert [c.label for c in analysis.per_cohort] == ["2024-02"]
        assert analysis.per_cohort[0].size == 1

    def test_period_zero_is_full_retention(self, populated, now):
        """Test that every member is active in its own acquisition bucket."""
        analysis = analyze_cohorts(populated, "monthly", [0], START, now=now)
        assert all(c.retention[0] == 1.0 for c in analysis.per_cohort)

    def test_defaults(self, populated, now):
        """Test the default periods and a twelve-month lookback."""
        analysis = analyze_cohorts(populated, now=now)

        assert analysis.cohort_type is Granularity.MONTHLY
        assert analysis.retention_periods == DEFAULT_RETENTION_PERIODS
        assert analysis.start_date == datetime(2023, 6, 1, tzinfo=UTC)
        assert analysis.policy is RetentionPolicy.ANY_EVENT

    def test_weekly_labels(self, populated, now):
        """Test ISO week labels for weekly cohorts."""
        analysis = analyze_cohorts(populated, "weekly", [1], START, now=now)
        assert analysis.per_cohort[0].label == "2024-W02"

    def test_invalid_cohort_type(self, populated, now):
        """Test that unsupported cohort types are rejected."""
        with pytest.raises(InvalidCohortType):
            analyze_cohorts(populated, "yearly", now=now)

    @pytest.mark.parametrize("periods", [[], [-1], [1.5]])
    def test_invalid_periods(self, populated, now, periods):
        """Test that periods must be a non-empty list of non-negative integers."""
        with pytest.raises(ValueError):
            analyze_cohorts(populated, "monthly", periods, START, now=now)

    def test_duplicate_periods_collapse(self, populated, now):
        """Test that repeated periods are reported once."""
        analysis = analyze_cohorts(populated, "monthly", [1, 1, 2], START, now=now)
        assert analysis.retention_periods == (1, 2)

    def test_as_dict_uses_string_periods(self, populated, now):
        """Test that serialised retention maps are keyed by strings."""
        data = analyze_cohorts(populated, "monthly", [1], START, now=now).as_dict()
        assert data["per_cohort"][0]["retention"] == {"1": 0.5}
        assert data["average_retention"] == {"1": 0.75}
        assert data["policy"] == "any_event"


class TestComputeCohorts:
    """Test the pure cohort computation."""

    def test_values_are_fractions(self, make_event, now):
        """Test that every reached retention value lies in [0, 1]."""
        events = [
            make_event(customer, "APP_OPENED", ts)
            for customer, timestamps in ACTIVITY.items()
            for ts in timestamps
        ]
        per_cohort, average = compute_cohorts(events, "monthly", [1, 2, 3, 4], START, now)

        for cohort in per_cohort:
            for value in cohort.retention.values():
                assert value is None or 0.0 <= value <= 1.0
        assert set(average) == {1, 2, 3, 4}
