"""Segment filters applied on top of store queries.

Segments narrow an analysis to a slice of the event population. They are
written as ``key:value`` tokens, with bare tokens naming a customer type:

>>> seg = parse_segments(["customerType:Premium", "platform:Mobile", "Business"])
>>> sorted(t.value for t in seg.customer_types)
['Business', 'Premium']
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from customer_insights.errors import ValidationError
from customer_insights.foundation.event_contract import (
    AnalyticsEvent,
    CustomerType,
    DataSource,
    EventCategory,
    Platform,
)


@dataclass(frozen=True)
class SegmentFilter:
    """Conjunction of per-dimension allow-lists.

    An empty set places no constraint on its dimension. Events lacking
    the dimension (no device, no location) fail any non-empty constraint
    on it.
    """

    customer_types: frozenset[CustomerType] = frozenset()
    platforms: frozenset[Platform] = frozenset()
    countries: frozenset[str] = frozenset()
    event_categories: frozenset[EventCategory] = frozenset()
    data_sources: frozenset[DataSource] = frozenset()

    @property
    def is_empty(self) -> bool:
        return not (
            self.customer_types
            or self.platforms
            or self.countries
            or self.event_categories
            or self.data_sources
        )

    def matches(self, event: AnalyticsEvent) -> bool:
        if self.customer_types and event.customer_type not in self.customer_types:
            return False
        if self.platforms:
            platform = event.device.platform if event.device else None
            if platform not in self.platforms:
                return False
        if self.countries:
            country = event.location.country if event.location else None
            if country is None or country.lower() not in self.countries:
                return False
        if self.event_categories and event.event_category not in self.event_categories:
            return False
        if self.data_sources and event.data_quality.data_source not in self.data_sources:
            return False
        return True

    def apply(self, events: Iterable[AnalyticsEvent]) -> list[AnalyticsEvent]:
        if self.is_empty:
            return list(events)
        return [event for event in events if self.matches(event)]

    def as_dict(self) -> dict[str, list[str]]:
        return {
            "customer_types": sorted(item.value for item in self.customer_types),
            "platforms": sorted(item.value for item in self.platforms),
            "countries": sorted(self.countries),
            "event_categories": sorted(item.value for item in self.event_categories),
            "data_sources": sorted(item.value for item in self.data_sources),
        }


_DIMENSIONS = {
    "customertype": ("customer_types", CustomerType),
    "platform": ("platforms", Platform),
    "country": ("countries", None),
    "eventcategory": ("event_categories", EventCategory),
    "datasource": ("data_sources", DataSource),
}


def parse_segments(tokens: Iterable[str] | SegmentFilter | None) -> SegmentFilter:
    """Parse segment tokens into a :class:`SegmentFilter`.

    Raises
    ------
    ValidationError
        For unknown dimensions or values outside a dimension's enumeration.
    """
    if tokens is None:
        return SegmentFilter()
    if isinstance(tokens, SegmentFilter):
        return tokens
    if isinstance(tokens, str):
        tokens = [tokens]

    selected: dict[str, set] = {attr: set() for attr, _ in _DIMENSIONS.values()}
    for raw in tokens:
        token = str(raw).strip()
        if not token:
            continue
        key, sep, value = token.partition(":")
        if not sep:
            key, value = "customertype", token
        dimension = _DIMENSIONS.get(key.strip().replace("_", "").lower())
        if dimension is None:
            raise ValidationError(
                f"Unknown segment dimension: {key!r}",
                {"supported": ["customerType", "platform", "country", "eventCategory", "dataSource"]},
            )
        attr, enum_cls = dimension
        value = value.strip()
        if enum_cls is None:
            selected[attr].add(value.lower())
            continue
        try:
            selected[attr].add(enum_cls(value))
        except ValueError:
            raise ValidationError(
                f"Invalid segment value for {key}: {value!r}",
                {"allowed": [item.value for item in enum_cls]},
            ) from None
    return SegmentFilter(**{attr: frozenset(values) for attr, values in selected.items()})
