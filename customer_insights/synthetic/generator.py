from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
import math
import random
from typing import Any, List, Optional, Sequence

from customer_insights.foundation.event_contract import (
    AnalyticsEvent,
    CustomerType,
    Platform,
    validate_and_enrich,
)


@dataclass(frozen=True)
class Customer:
    customer_id: str
    acquisition_date: date
    customer_type: CustomerType = CustomerType.INDIVIDUAL
    platform: Platform = Platform.WEB
    country: str = "US"


@dataclass(frozen=True)
class ScenarioConfig:
    """Configuration for scenario-based event generators.

    Attributes
    ----------
    churn_hazard: Weekly probability that an active customer stops returning.
    sessions_per_week: Average sessions per active customer per week.
    view_probability: Chance a search session goes on to view a unit.
    booking_probability: Chance a viewing session books the unit.
    payment_probability: Chance a booking is paid in the same session.
    support_probability: Chance a session contacts support.
    error_probability: Chance a session records an application error.
    mean_booking_value: Average revenue of a paid booking.
    price_variability: Coefficient in (0, 1] controlling revenue variance.
    seed: Optional RNG seed for reproducibility.
    """

    churn_hazard: float = 0.05
    sessions_per_week: float = 1.0
    view_probability: float = 0.6
    booking_probability: float = 0.35
    payment_probability: float = 0.9
    support_probability: float = 0.05
    error_probability: float = 0.02
    mean_booking_value: float = 180.0
    price_variability: float = 0.4
    seed: Optional[int] = None


BASELINE_SCENARIO = ScenarioConfig()

# Customers lapse quickly and rarely convert
HIGH_CHURN_SCENARIO = ScenarioConfig(
    churn_hazard=0.3,
    sessions_per_week=0.8,
    view_probability=0.45,
    booking_probability=0.2,
)

# Strong funnel with frequent high-value bookings
HIGH_CONVERSION_SCENARIO = ScenarioConfig(
    churn_hazard=0.02,
    sessions_per_week=1.5,
    view_probability=0.8,
    booking_probability=0.6,
    mean_booking_value=320.0,
)

_UNIT_SIZES = ("5x5", "5x10", "10x10", "10x15", "10x20")
_PRICE_RANGES = ("budget", "standard", "premium")
_SEARCH_QUERIES = ("climate controlled", "near me", "small unit", "vehicle storage", "24 hour access")


def generate_customers(
    n: int,
    start: date,
    end: date,
    *,
    seed: Optional[int] = None,
) -> List[Customer]:
    """Generate ``n`` customers with acquisition dates uniformly between start/end."""

    if n <= 0:
        return []
    if start > end:
        raise ValueError("start date must be <= end date")

    rng = random.Random(seed)
    total_days = (end - start).days + 1
    types = list(CustomerType)
    platforms = list(Platform)
    countries = ("US", "US", "US", "CA", "GB")

    customers: List[Customer] = []
    for i in range(n):
        customers.append(
            Customer(
                customer_id=f"C-{i + 1}",
                acquisition_date=start + timedelta(days=rng.randrange(total_days)),
                customer_type=rng.choices(types, weights=(0.7, 0.2, 0.1))[0],
                platform=rng.choice(platforms),
                country=rng.choice(countries),
            )
        )
    return customers


def _poisson(rng: random.Random, lam: float) -> int:
    # Knuth's algorithm, fine for small lambdas
    if lam <= 0:
        return 0
    limit = math.exp(-lam)
    k = 0
    p = 1.0
    while p > limit:
        k += 1
        p *= rng.random()
    return k - 1


def _sample_revenue(rng: random.Random, mean: float, variability: float) -> float:
    sigma = min(max(variability, 0.01), 1.0)
    mu = math.log(max(mean, 0.01)) - 0.5 * sigma * sigma
    return round(max(math.exp(rng.normalvariate(mu, sigma)), 0.01), 2)


class _SessionWriter:
    """Collects the payloads of one session with monotonically increasing times."""

    def __init__(self, customer: Customer, session_id: str, started: datetime, rng: random.Random):
        self.customer = customer
        self.session_id = session_id
        self.clock = started
        self.rng = rng
        self.payloads: list[dict[str, Any]] = []

    def emit(self, event_type: str, *, properties=None, metrics=None, gap_minutes=(1, 4)) -> None:
        self.clock += timedelta(minutes=self.rng.randint(*gap_minutes), seconds=self.rng.randrange(60))
        self.payloads.append(
            {
                "customerId": self.customer.customer_id,
                "customerType": self.customer.customer_type.value,
                "eventType": event_type,
                "sessionId": self.session_id,
                "timestamp": self.clock,
                "device": {"platform": self.customer.platform.value},
                "location": {"country": self.customer.country},
                "properties": properties or {},
                "metrics": metrics or {},
                "privacy": {"consentGiven": True},
            }
        )


def _session(
    rng: random.Random,
    customer: Customer,
    session_id: str,
    started: datetime,
    scenario: ScenarioConfig,
) -> list[dict[str, Any]]:
    writer = _SessionWriter(customer, session_id, started, rng)
    unit_id = f"U-{rng.randrange(1, 500)}"
    facility_id = f"F-{rng.randrange(1, 25)}"
    unit_size = rng.choice(_UNIT_SIZES)

    writer.emit("SESSION_START", gap_minutes=(0, 0))
    writer.emit(
        "STORAGE_SEARCH",
        properties={
            "searchQuery": rng.choice(_SEARCH_QUERIES),
            "priceRange": rng.choice(_PRICE_RANGES),
            "funnelStage": "search",
            "loadTime": round(rng.uniform(0.2, 2.5), 3),
        },
        metrics={"pageViewCount": rng.randint(1, 4), "clickCount": rng.randint(1, 8)},
    )
    if rng.random() < scenario.view_probability:
        writer.emit(
            "UNIT_VIEW",
            properties={
                "storageUnitId": unit_id,
                "facilityId": facility_id,
                "unitSize": unit_size,
                "pageUrl": f"/units/{unit_id}",
                "funnelStage": "view",
                "responseTime": round(rng.uniform(50, 600), 1),
            },
            metrics={
                "pageViewCount": rng.randint(1, 6),
                "clickCount": rng.randint(0, 12),
                "scrollDepth": round(rng.uniform(10, 100), 1),
                "engagementScore": round(rng.uniform(1, 10), 2),
            },
        )
        if rng.random() < scenario.booking_probability:
            writer.emit(
                "UNIT_BOOKING",
                properties={
                    "storageUnitId": unit_id,
                    "facilityId": facility_id,
                    "unitSize": unit_size,
                    "conversionStep": "booking",
                    "funnelStage": "booking",
                },
                gap_minutes=(2, 10),
            )
            if rng.random() < scenario.payment_probability:
                writer.emit(
                    "PAYMENT_COMPLETED",
                    properties={
                        "storageUnitId": unit_id,
                        "revenue": _sample_revenue(
                            rng, scenario.mean_booking_value, scenario.price_variability
                        ),
                        "conversionStep": "payment",
                        "funnelStage": "payment",
                    },
                )
    if rng.random() < scenario.support_probability:
        writer.emit("SUPPORT_CONTACTED", metrics={"satisfactionRating": rng.randint(1, 5)})
    if rng.random() < scenario.error_probability:
        writer.emit("ERROR_OCCURRED", properties={"responseTime": round(rng.uniform(800, 5000), 1)})
    writer.emit(
        "SESSION_END",
        metrics={"sessionDuration": round((writer.clock - started).total_seconds() + 60, 1)},
    )
    return writer.payloads


def generate_events(
    customers: Sequence[Customer],
    start: date,
    end: date,
    *,
    scenario: Optional[ScenarioConfig] = None,
    now: Optional[datetime] = None,
) -> List[AnalyticsEvent]:
    """Generate validated events for ``customers`` between ``start`` and ``end``.

    Each customer starts with a session on their acquisition date, then
    returns week by week until they churn. Sessions walk the
    search → view → booking → payment path with the scenario's step
    probabilities. Event ids are sequential so runs with the same seed are
    identical.
    """

    if start > end:
        raise ValueError("start date must be <= end date")
    scenario = scenario or ScenarioConfig()
    rng = random.Random(scenario.seed)
    created_at = now or datetime.combine(end, time(23, 59), tzinfo=timezone.utc)
    window_end = datetime.combine(end, time(23, 59), tzinfo=timezone.utc)

    payloads: list[dict[str, Any]] = []
    session_seq = 1
    for customer in customers:
        if customer.acquisition_date > end or customer.acquisition_date < start:
            continue
        week_start = datetime.combine(customer.acquisition_date, time(0, 0), tzinfo=timezone.utc)
        first = True
        while week_start <= window_end:
            if first:
                sessions = 1
            else:
                if rng.random() < scenario.churn_hazard:
                    break
                sessions = _poisson(rng, scenario.sessions_per_week)
            for _ in range(sessions):
                offset = timedelta(hours=0 if first else rng.randrange(0, 7 * 24), minutes=rng.randrange(60))
                started = week_start + offset + timedelta(hours=9 if first else 0)
                if started > window_end:
                    continue
                payloads.extend(
                    _session(rng, customer, f"S-{session_seq}", started, scenario)
                )
                session_seq += 1
                first = False
            first = False
            week_start += timedelta(weeks=1)

    events = []
    for seq, payload in enumerate(sorted(payloads, key=lambda p: (p["timestamp"], p["customerId"])), 1):
        payload["eventId"] = f"evt_syn_{seq:07d}"
        events.append(validate_and_enrich(payload, now=created_at))
    return events
