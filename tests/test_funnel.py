"""Unit tests for conversion funnel analysis."""

from datetime import timedelta

import pytest

from customer_insights.analyses.funnel import analyze_funnel, compute_funnel, validate_steps
from customer_insights.errors import InvalidFunnelDefinition
from customer_insights.foundation import DateRange

STEPS = ["STORAGE_SEARCH", "UNIT_VIEW", "UNIT_BOOKING"]


def _funnel_events(make_event, now, searchers=100, viewers=60, bookers=20):
    """Nested population: every booker viewed and every viewer searched."""
    at = now - timedelta(days=1)
    events = []
    for idx in range(searchers):
        customer = f"C{idx}"
        events.append(make_event(customer, "STORAGE_SEARCH", at))
        if idx < viewers:
            events.append(make_event(customer, "UNIT_VIEW", at + timedelta(minutes=1)))
        if idx < bookers:
            events.append(make_event(customer, "UNIT_BOOKING", at + timedelta(minutes=2)))
    return events


class TestComputeFunnel:
    """Test the pure funnel computation."""

    def test_step_rates(self, make_event, now):
        """Test 100 searchers, 60 viewers and 20 bookers."""
        per_step, total, biggest = compute_funnel(_funnel_events(make_event, now), STEPS)

        assert [step.users for step in per_step] == [100, 60, 20]
        assert [step.conversions for step in per_step] == [100, 60, 20]
        assert [step.conversion_rate for step in per_step] == [100.0, 60.0, 33.33]
        assert [step.dropoff_rate for step in per_step] == [0.0, 40.0, 66.67]
        assert total == 20.0
        assert biggest.step == "UNIT_BOOKING"
        assert biggest.index == 2

    def test_users_skipping_a_step_do_not_convert(self, make_event, now):
        """Test that reaching a step without the previous one is not a conversion."""
        events = _funnel_events(make_event, now, searchers=10, viewers=5, bookers=0)
        events += [make_event("walk-in", "UNIT_VIEW", now - timedelta(hours=1))]
        per_step, total, _ = compute_funnel(events, STEPS[:2])

        assert per_step[1].users == 6
        assert per_step[1].conversions == 5
        assert per_step[1].conversion_rate == 50.0
        assert total == 50.0

    def test_steps_match_conversion_step_and_funnel_stage(self, make_event, now):
        """Test that custom step names match event properties."""
        events = [
            make_event("C1", "PAGE_VIEW", now, properties={"funnelStage": "landing"}),
            make_event("C1", "FEATURE_USED", now, properties={"conversionStep": "signup"}),
            make_event("C2", "PAGE_VIEW", now, properties={"funnelStage": "landing"}),
        ]
        per_step, total, _ = compute_funnel(events, ["landing", "signup"])

        assert [step.users for step in per_step] == [2, 1]
        assert total == 50.0

    def test_tagged_and_untagged_events_mix(self, make_event, now):
        """Test that a tagged stage followed by a plain event type converts."""
        events = [
            make_event("C1", "PAGE_VIEW", now - timedelta(minutes=5), properties={"funnelStage": "landing"}),
            make_event("C1", "UNIT_BOOKING", now),
            make_event("C2", "PAGE_VIEW", now, properties={"funnelStage": "landing"}),
        ]
        per_step, total, _ = compute_funnel(events, ["landing", "UNIT_BOOKING"])

        assert [step.users for step in per_step] == [2, 1]
        assert per_step[1].conversions == 1
        assert total == 50.0

    def test_empty_population(self):
        """Test that no events yield zero rates without dividing by zero."""
        per_step, total, biggest = compute_funnel([], STEPS)
        assert [step.conversion_rate for step in per_step] == [0.0, 0.0, 0.0]
        assert [step.dropoff_rate for step in per_step] == [0.0, 0.0, 0.0]
        assert total == 0.0
        assert biggest.index == 1

    def test_single_step_has_no_dropoff(self, make_event, now):
        """Test that a one-step funnel reports no biggest drop-off."""
        per_step, total, biggest = compute_funnel([make_event("C1", "UNIT_VIEW", now)], ["UNIT_VIEW"])
        assert per_step[0].conversion_rate == 100.0
        assert total == 100.0
        assert biggest is None

    def test_rates_stay_in_bounds(self, make_event, now):
        """Test that every rate lies between 0 and 100."""
        per_step, total, _ = compute_funnel(_funnel_events(make_event, now, 7, 3, 1), STEPS)
        for step in per_step:
            assert 0.0 <= step.conversion_rate <= 100.0
            assert 0.0 <= step.dropoff_rate <= 100.0
        assert 0.0 <= total <= 100.0


class TestValidateSteps:
    """Test funnel definition validation."""

    def test_strips_names(self):
        """Test that surrounding whitespace is removed."""
        assert validate_steps([" STORAGE_SEARCH ", "UNIT_VIEW"]) == ("STORAGE_SEARCH", "UNIT_VIEW")

    @pytest.mark.parametrize("steps", [[], None, ["UNIT_VIEW", "  "], "UNIT_VIEW"])
    def test_invalid_definitions(self, steps):
        """Test empty lists, blank names and bare strings."""
        with pytest.raises(InvalidFunnelDefinition):
            validate_steps(steps)


class TestAnalyzeFunnel:
    """Test funnel analysis over a store."""

    def test_analyze_funnel(self, store, make_event, now):
        """Test that the store-backed analysis matches the pure computation."""
        store.append_many(_funnel_events(make_event, now))
        analysis = analyze_funnel(store, STEPS, now=now)

        assert analysis.steps == tuple(STEPS)
        assert analysis.date_range == DateRange.default(now)
        assert analysis.total_conversion_rate == 20.0
        data = analysis.as_dict()
        assert data["per_step"][2]["conversion_rate"] == 33.33
        assert data["biggest_dropoff"]["step"] == "UNIT_BOOKING"

    def test_events_outside_range_are_ignored(self, store, make_event, now):
        """Test that the date range bounds the population."""
        store.append_many(_funnel_events(make_event, now, 10, 5, 2))
        window = DateRange(now - timedelta(hours=1), now)
        analysis = analyze_funnel(store, STEPS, window, now=now)
        assert [step.users for step in analysis.per_step] == [0, 0, 0]

    def test_segments(self, store, make_event, now):
        """Test that segments narrow the population."""
        at = now - timedelta(hours=2)
        store.append_many(
            [
                make_event("C1", "STORAGE_SEARCH", at, customerType="Premium"),
                make_event("C1", "UNIT_VIEW", at, customerType="Premium"),
                make_event("C2", "STORAGE_SEARCH", at),
            ]
        )
        analysis = analyze_funnel(store, STEPS[:2], segments=["Premium"], now=now)
        assert [step.users for step in analysis.per_step] == [1, 1]
        assert analysis.total_conversion_rate == 100.0

    def test_invalid_definition(self, store, now):
        """Test that an empty funnel is rejected before reading the store."""
        with pytest.raises(InvalidFunnelDefinition):
            analyze_funnel(store, [], now=now)
