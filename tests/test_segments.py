"""Unit tests for segment filters."""

from datetime import datetime, timezone

import pytest

from customer_insights.errors import ValidationError
from customer_insights.foundation.event_contract import CustomerType, Platform
from customer_insights.foundation.segments import SegmentFilter, parse_segments

T0 = datetime(2024, 3, 1, tzinfo=timezone.utc)


class TestParseSegments:
    """Test parsing of segment tokens."""

    def test_none_is_empty(self):
        """Test that no tokens means no filtering."""
        assert parse_segments(None).is_empty
        assert parse_segments([]).is_empty

    def test_bare_token_is_customer_type(self):
        """Test that a token without a key names a customer type."""
        segments = parse_segments(["Premium"])
        assert segments.customer_types == frozenset({CustomerType.PREMIUM})

    def test_single_string_is_one_token(self):
        """Test that a plain string is not split into characters."""
        segments = parse_segments("platform:Mobile")
        assert segments.platforms == frozenset({Platform.MOBILE})

    def test_key_spelling_is_flexible(self):
        """Test camelCase, snake_case and lower-case keys."""
        for token in ("customerType:Business", "customer_type:Business", "customertype:Business"):
            assert parse_segments([token]).customer_types == frozenset({CustomerType.BUSINESS})

    def test_countries_are_case_insensitive(self):
        """Test that country values are normalised."""
        segments = parse_segments(["country:US", "country:gb"])
        assert segments.countries == frozenset({"us", "gb"})

    def test_unknown_dimension(self):
        """Test that unknown keys are rejected."""
        with pytest.raises(ValidationError, match="Unknown segment dimension"):
            parse_segments(["browser:Firefox"])

    def test_unknown_value(self):
        """Test that values outside an enumeration are rejected."""
        with pytest.raises(ValidationError):
            parse_segments(["platform:Console"])

    def test_filter_passthrough(self):
        """Test that an existing SegmentFilter is returned unchanged."""
        existing = SegmentFilter(platforms=frozenset({Platform.WEB}))
        assert parse_segments(existing) is existing

    def test_as_dict_is_sorted(self):
        """Test the serialised form lists values in order."""
        segments = parse_segments(["Premium", "Business", "dataSource:Batch"])
        assert segments.as_dict()["customer_types"] == ["Business", "Premium"]
        assert segments.as_dict()["data_sources"] == ["Batch"]


class TestSegmentMatching:
    """Test applying segments to events."""

    def test_dimensions_are_combined_with_and(self, make_event):
        """Test that every constrained dimension must match."""
        segments = parse_segments(["Premium", "platform:Mobile"])
        premium_mobile = make_event(
            "C1", "UNIT_VIEW", T0, customerType="Premium", device={"platform": "Mobile"}
        )
        premium_web = make_event(
            "C2", "UNIT_VIEW", T0, customerType="Premium", device={"platform": "Web"}
        )
        individual_mobile = make_event("C3", "UNIT_VIEW", T0, device={"platform": "Mobile"})

        assert segments.apply([premium_mobile, premium_web, individual_mobile]) == [premium_mobile]

    def test_values_within_a_dimension_are_alternatives(self, make_event):
        """Test that several values for one dimension are OR-ed."""
        segments = parse_segments(["Premium", "Business"])
        events = [
            make_event("C1", "UNIT_VIEW", T0, customerType="Premium"),
            make_event("C2", "UNIT_VIEW", T0, customerType="Business"),
            make_event("C3", "UNIT_VIEW", T0),
        ]
        assert [e.customer_id for e in segments.apply(events)] == ["C1", "C2"]

    def test_missing_context_fails_constraint(self, make_event):
        """Test that an event without location fails a country constraint."""
        segments = parse_segments(["country:us"])
        located = make_event("C1", "UNIT_VIEW", T0, location={"country": "US"})
        unlocated = make_event("C2", "UNIT_VIEW", T0)
        assert segments.matches(located)
        assert not segments.matches(unlocated)

    def test_event_category_dimension(self, make_event):
        """Test filtering by event category."""
        segments = parse_segments(["eventCategory:Business_Event"])
        booking = make_event("C1", "UNIT_BOOKING", T0)
        view = make_event("C1", "UNIT_VIEW", T0)
        assert segments.apply([booking, view]) == [booking]
