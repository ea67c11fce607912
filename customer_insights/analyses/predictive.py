"""Heuristic predictive scores: churn risk, customer value, next actions.

These are deterministic rules over observable history, not trained models.
The thresholds below are part of the contract callers rely on.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from customer_insights.analyses._math import quantize
from customer_insights.foundation.deadline import Deadline, check_deadline
from customer_insights.foundation.event_contract import EventType
from customer_insights.foundation.event_store import EventQuery, EventStore, SortOrder
from customer_insights.foundation.periods import ensure_utc, utc_now

logger = logging.getLogger(__name__)

CHURN_WINDOW_DAYS = 7
LIFETIME_VALUE_MULTIPLIER = 2.5
HIGH_VALUE_THRESHOLD = 1000
MEDIUM_VALUE_THRESHOLD = 200
RECENT_EVENT_LIMIT = 10

MIN_CONFIDENCE = 0.7
MAX_CONFIDENCE = 1.0
# Event count at which confidence saturates
CONFIDENCE_SATURATION_EVENTS = 50

CHURN_FACTORS = ("Activity Level", "Engagement Score", "Usage Patterns")

DEFAULT_NEXT_ACTIONS: tuple[tuple[str, float], ...] = (
    ("View Storage Units", 0.8),
    ("Book Storage", 0.6),
    ("Contact Support", 0.3),
)

NEXT_ACTIONS_BY_EVENT: dict[EventType, tuple[tuple[str, float], ...]] = {
    EventType.STORAGE_SEARCH: (
        ("View Storage Units", 0.8),
        ("Refine Search", 0.5),
        ("Contact Support", 0.2),
    ),
    EventType.UNIT_VIEW: (
        ("Book Storage", 0.6),
        ("View Storage Units", 0.5),
        ("Contact Support", 0.3),
    ),
    EventType.UNIT_BOOKING: (
        ("Complete Payment", 0.85),
        ("Add Inventory", 0.4),
        ("Contact Support", 0.2),
    ),
    EventType.PAYMENT_COMPLETED: (
        ("Add Inventory", 0.7),
        ("Open Mobile App", 0.5),
        ("Contact Support", 0.15),
    ),
    EventType.INVENTORY_ADDED: (
        ("Update Inventory", 0.6),
        ("Open Mobile App", 0.5),
        ("Book Storage", 0.2),
    ),
    EventType.INVENTORY_UPDATED: (
        ("Update Inventory", 0.6),
        ("Open Mobile App", 0.5),
        ("Book Storage", 0.2),
    ),
    EventType.SUPPORT_CONTACTED: (
        ("View Storage Units", 0.4),
        ("Contact Support", 0.35),
        ("Book Storage", 0.25),
    ),
}


@dataclass(frozen=True)
class ChurnRisk:
    score: str
    recent_event_count: int
    factors: tuple[str, ...] = CHURN_FACTORS

    def as_dict(self) -> dict[str, Any]:
        return {
            "score": self.score,
            "recent_event_count": self.recent_event_count,
            "factors": list(self.factors),
        }


@dataclass(frozen=True)
class CustomerValue:
    total_revenue: float
    predicted_lifetime_value: float
    value_segment: str

    def as_dict(self) -> dict[str, Any]:
        return dict(vars(self))


@dataclass(frozen=True)
class ActionPrediction:
    action: str
    probability: float


@dataclass(frozen=True)
class NextActionPrediction:
    predictions: tuple[ActionPrediction, ...]
    confidence: float
    based_on: EventType | None

    def as_dict(self) -> dict[str, Any]:
        return {
            "predictions": [
                {"action": item.action, "probability": item.probability}
                for item in self.predictions
            ],
            "confidence": self.confidence,
            "based_on": self.based_on.value if self.based_on else None,
        }


@dataclass(frozen=True)
class Recommendation:
    type: str
    title: str
    description: str
    confidence: float

    def as_dict(self) -> dict[str, Any]:
        return dict(vars(self))


@dataclass(frozen=True)
class PredictiveInsights:
    customer_id: str
    churn_risk: ChurnRisk
    next_actions: NextActionPrediction
    value_score: CustomerValue
    recommendations: tuple[Recommendation, ...]
    confidence: float
    generated_at: datetime = field(default_factory=utc_now)

    def as_dict(self) -> dict[str, Any]:
        return {
            "customer_id": self.customer_id,
            "churn_risk": self.churn_risk.as_dict(),
            "next_actions": self.next_actions.as_dict(),
            "value_score": self.value_score.as_dict(),
            "recommendations": [item.as_dict() for item in self.recommendations],
            "confidence": self.confidence,
            "generated_at": self.generated_at.isoformat(),
        }


def churn_score(recent_event_count: int) -> str:
    if recent_event_count > 5:
        return "Low"
    if recent_event_count > 1:
        return "Medium"
    return "High"


def value_segment(total_revenue: float) -> str:
    if total_revenue > HIGH_VALUE_THRESHOLD:
        return "High"
    if total_revenue > MEDIUM_VALUE_THRESHOLD:
        return "Medium"
    return "Low"


def prediction_confidence(event_count: int) -> float:
    """Confidence in ``[0.7, 1.0]`` growing linearly with observed history.

    >>> prediction_confidence(0)
    0.7
    >>> prediction_confidence(500)
    1.0
    """
    if event_count < 0:
        raise ValueError(f"event_count must be non-negative, got {event_count}")
    share = min(1.0, event_count / CONFIDENCE_SATURATION_EVENTS)
    return quantize(MIN_CONFIDENCE + (MAX_CONFIDENCE - MIN_CONFIDENCE) * share)


def churn_risk(
    store: EventStore,
    customer_id: str,
    *,
    now: datetime | None = None,
    deadline: Deadline | None = None,
) -> ChurnRisk:
    """Churn tier from the number of events in the trailing 7 days."""
    end = ensure_utc(now) if now is not None else utc_now()
    query = EventQuery(
        customer_id=customer_id, start=end - timedelta(days=CHURN_WINDOW_DAYS), end=end
    )
    count = store.count_matching(query, deadline=deadline)
    return ChurnRisk(score=churn_score(count), recent_event_count=count)


def customer_value(
    store: EventStore,
    customer_id: str,
    *,
    deadline: Deadline | None = None,
) -> CustomerValue:
    """Revenue-based value score over the customer's whole history.

    Only revenue that is present and positive is counted.
    """
    events = store.find(EventQuery(customer_id=customer_id), deadline=deadline)
    total = sum(
        e.properties.revenue for e in events if e.properties.revenue is not None and e.properties.revenue > 0
    )
    return CustomerValue(
        total_revenue=quantize(total),
        predicted_lifetime_value=quantize(total * LIFETIME_VALUE_MULTIPLIER),
        value_segment=value_segment(total),
    )


def predict_next_actions(
    store: EventStore,
    customer_id: str,
    *,
    deadline: Deadline | None = None,
) -> NextActionPrediction:
    """Candidate next actions keyed by the most recent informative event.

    The latest :data:`RECENT_EVENT_LIMIT` events are inspected newest first;
    the first event type with a candidate list decides the prediction.
    """
    recent = store.find(
        EventQuery(customer_id=customer_id, order=SortOrder.DESC, limit=RECENT_EVENT_LIMIT),
        deadline=deadline,
    )
    based_on = next((e.event_type for e in recent if e.event_type in NEXT_ACTIONS_BY_EVENT), None)
    candidates = NEXT_ACTIONS_BY_EVENT.get(based_on, DEFAULT_NEXT_ACTIONS)
    predictions = tuple(
        ActionPrediction(action=action, probability=probability)
        for action, probability in sorted(candidates, key=lambda item: item[1], reverse=True)
    )
    return NextActionPrediction(
        predictions=predictions,
        confidence=prediction_confidence(len(recent)),
        based_on=based_on,
    )


def generate_recommendations(
    value: CustomerValue | None = None, risk: ChurnRisk | None = None
) -> list[Recommendation]:
    recommendations = [
        Recommendation(
            type="Product",
            title="Recommended Storage Size",
            description="Based on your inventory, we recommend a medium-sized unit",
            confidence=0.85,
        ),
        Recommendation(
            type="Feature",
            title="Mobile App",
            description="Download our mobile app for easier inventory management",
            confidence=0.70,
        ),
    ]
    if risk is not None and risk.score == "High":
        recommendations.append(
            Recommendation(
                type="Engagement",
                title="Welcome Back Offer",
                description="A limited discount on your next booking",
                confidence=0.65,
            )
        )
    if value is not None and value.value_segment == "High":
        recommendations.append(
            Recommendation(
                type="Upgrade",
                title="Premium Membership",
                description="Priority access and climate-controlled units for frequent customers",
                confidence=0.75,
            )
        )
    return recommendations


def predictive_insights(
    store: EventStore,
    customer_id: str,
    *,
    now: datetime | None = None,
    deadline: Deadline | None = None,
) -> PredictiveInsights:
    """Bundle churn risk, next actions, value score and recommendations."""
    if not customer_id:
        raise ValueError("customer_id must be a non-empty string")
    risk = churn_risk(store, customer_id, now=now, deadline=deadline)
    actions = predict_next_actions(store, customer_id, deadline=deadline)
    value = customer_value(store, customer_id, deadline=deadline)
    history = store.count_matching(EventQuery(customer_id=customer_id), deadline=deadline)
    check_deadline(deadline, "predictive insights")
    logger.debug("Predictive insights for %s (churn=%s)", customer_id, risk.score)
    return PredictiveInsights(
        customer_id=customer_id,
        churn_risk=risk,
        next_actions=actions,
        value_score=value,
        recommendations=tuple(generate_recommendations(value, risk)),
        confidence=prediction_confidence(history),
        generated_at=ensure_utc(now) if now is not None else utc_now(),
    )
