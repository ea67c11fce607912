"""Event contract: the canonical behavioural event and its validation rules.

The event contract captures the one record every analytical workflow in
this package is built from: a single customer action at a single point in
time. Upstream applications submit loosely-shaped payloads (camelCase wire
keys are accepted alongside snake_case); :func:`validate_and_enrich` turns
them into immutable :class:`AnalyticsEvent` records or rejects them before
they ever reach the store.

Quick Start
-----------
>>> from customer_insights.foundation.event_contract import validate_and_enrich
>>> event = validate_and_enrich({"customerId": "c1", "eventType": "UNIT_VIEW"})
>>> event.event_category.value
'User_Behavior'
>>> event.privacy.data_retention_expiry > event.timestamp
True
"""

from __future__ import annotations

import math
import re
import uuid
from dataclasses import dataclass, field, fields, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Iterable, Mapping

from customer_insights.errors import MissingRequiredField, ValidationError
from customer_insights.foundation.periods import ensure_utc, parse_timestamp, utc_now


class CustomerType(str, Enum):
    INDIVIDUAL = "Individual"
    BUSINESS = "Business"
    PREMIUM = "Premium"


class EventType(str, Enum):
    """Fixed enumeration of trackable customer events."""

    STORAGE_SEARCH = "STORAGE_SEARCH"
    UNIT_VIEW = "UNIT_VIEW"
    UNIT_BOOKING = "UNIT_BOOKING"
    PAYMENT_COMPLETED = "PAYMENT_COMPLETED"
    INVENTORY_ADDED = "INVENTORY_ADDED"
    INVENTORY_UPDATED = "INVENTORY_UPDATED"
    SUPPORT_CONTACTED = "SUPPORT_CONTACTED"
    APP_OPENED = "APP_OPENED"
    PAGE_VIEW = "PAGE_VIEW"
    SESSION_START = "SESSION_START"
    SESSION_END = "SESSION_END"
    FEATURE_USED = "FEATURE_USED"
    ERROR_OCCURRED = "ERROR_OCCURRED"


class EventCategory(str, Enum):
    USER_BEHAVIOR = "User_Behavior"
    BUSINESS_EVENT = "Business_Event"
    SYSTEM_EVENT = "System_Event"
    ERROR_EVENT = "Error_Event"


class Platform(str, Enum):
    WEB = "Web"
    MOBILE = "Mobile"
    TABLET = "Tablet"
    DESKTOP = "Desktop"


class DataSource(str, Enum):
    WEB = "Web"
    MOBILE = "Mobile"
    API = "API"
    BATCH = "Batch"


#: Category assumed for an event type when the payload does not name one.
DEFAULT_CATEGORIES: Mapping[EventType, EventCategory] = {
    EventType.UNIT_BOOKING: EventCategory.BUSINESS_EVENT,
    EventType.PAYMENT_COMPLETED: EventCategory.BUSINESS_EVENT,
    EventType.INVENTORY_ADDED: EventCategory.BUSINESS_EVENT,
    EventType.INVENTORY_UPDATED: EventCategory.BUSINESS_EVENT,
    EventType.APP_OPENED: EventCategory.SYSTEM_EVENT,
    EventType.SESSION_START: EventCategory.SYSTEM_EVENT,
    EventType.SESSION_END: EventCategory.SYSTEM_EVENT,
    EventType.ERROR_OCCURRED: EventCategory.ERROR_EVENT,
}

#: Retention applied when a payload carries no explicit expiry (one year).
DEFAULT_RETENTION_YEARS = 1


@dataclass(frozen=True)
class Location:
    country: str | None = None
    region: str | None = None
    city: str | None = None
    zip_code: str | None = None
    latitude: float | None = None
    longitude: float | None = None


@dataclass(frozen=True)
class Device:
    platform: Platform | None = None
    browser: str | None = None
    os: str | None = None
    device_id: str | None = None
    screen_resolution: str | None = None
    user_agent: str | None = None


@dataclass(frozen=True)
class EventProperties:
    """Well-known domain fields attached to an event.

    Every field is optional. The aggregation engines read them by name:
    ``revenue`` drives value scoring and revenue analytics,
    ``conversion_step``/``funnel_stage`` tag funnel steps, ``page_url`` is
    projected into journeys, ``load_time``/``response_time`` feed the
    performance metrics. Payload keys that match none of these fields are
    preserved in ``custom_data``.
    """

    storage_unit_id: str | None = None
    facility_id: str | None = None
    unit_size: str | None = None
    price_range: str | None = None
    duration: str | None = None
    inventory_item_id: str | None = None
    item_category: str | None = None
    item_value: float | None = None
    page_url: str | None = None
    referrer_url: str | None = None
    search_query: str | None = None
    filter_criteria: Any = None
    load_time: float | None = None
    response_time: float | None = None
    revenue: float | None = None
    conversion_step: str | None = None
    funnel_stage: str | None = None
    custom_data: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class EventMetrics:
    """Numeric engagement signals; ``None`` means the signal was not captured."""

    session_duration: float | None = None
    page_view_count: float | None = None
    click_count: float | None = None
    scroll_depth: float | None = None
    engagement_score: float | None = None
    satisfaction_rating: float | None = None


@dataclass(frozen=True)
class ExperimentExposure:
    experiment_id: str
    variant: str | None = None
    exposure_time: datetime | None = None


@dataclass(frozen=True)
class DataQuality:
    is_valid: bool = True
    validation_errors: tuple[str, ...] = ()
    processing_time: datetime | None = None
    data_source: DataSource = DataSource.API


@dataclass(frozen=True)
class Privacy:
    data_retention_expiry: datetime
    consent_given: bool = False
    anonymized: bool = False
    ip_address_hashed: str | None = None


def add_years(ts: datetime, years: int) -> datetime:
    """Calendar-aware year addition (29 Feb rolls to 28 Feb)."""
    try:
        return ts.replace(year=ts.year + years)
    except ValueError:
        return ts.replace(year=ts.year + years, day=28)


def default_retention_expiry(created_at: datetime, retention_days: int | None = None) -> datetime:
    if retention_days is not None:
        return created_at + timedelta(days=retention_days)
    return add_years(created_at, DEFAULT_RETENTION_YEARS)


@dataclass(frozen=True)
class AnalyticsEvent:
    """Immutable record of one customer action.

    Attributes
    ----------
    event_id:
        Globally unique identifier, generated at creation when absent.
    customer_id:
        Subject of the event.
    event_type:
        Member of :class:`EventType`.
    timestamp:
        Occurrence time (UTC).
    customer_type:
        Customer tier at the time of the event.
    event_category:
        Defaults to :data:`DEFAULT_CATEGORIES` for the event type, falling
        back to ``User_Behavior``.
    privacy:
        Consent and retention data. When omitted the retention expiry is set
        one year after construction so the invariant "expiry is always set"
        holds for every instance.
    """

    event_id: str
    customer_id: str
    event_type: EventType
    timestamp: datetime
    customer_type: CustomerType = CustomerType.INDIVIDUAL
    event_category: EventCategory | None = None
    session_id: str | None = None
    location: Location | None = None
    device: Device | None = None
    properties: EventProperties = field(default_factory=EventProperties)
    metrics: EventMetrics = field(default_factory=EventMetrics)
    experiments: tuple[ExperimentExposure, ...] = ()
    data_quality: DataQuality = field(default_factory=DataQuality)
    privacy: Privacy | None = None

    def __post_init__(self) -> None:
        if not self.event_id:
            raise ValueError("event_id must be a non-empty string")
        if not self.customer_id:
            raise ValueError("customer_id must be a non-empty string")
        object.__setattr__(self, "timestamp", ensure_utc(self.timestamp))
        if self.event_category is None:
            object.__setattr__(
                self,
                "event_category",
                DEFAULT_CATEGORIES.get(self.event_type, EventCategory.USER_BEHAVIOR),
            )
        if self.privacy is None:
            object.__setattr__(
                self, "privacy", Privacy(data_retention_expiry=default_retention_expiry(utc_now()))
            )

    @property
    def retention_expiry(self) -> datetime:
        return self.privacy.data_retention_expiry

    def is_expired(self, as_of: datetime) -> bool:
        return self.privacy.data_retention_expiry < ensure_utc(as_of)

    def age_in_days(self, now: datetime | None = None) -> int:
        """Whole days since the event, rounded up (0 for "right now")."""
        reference = ensure_utc(now) if now is not None else utc_now()
        seconds = abs((reference - self.timestamp).total_seconds())
        days, remainder = divmod(seconds, 86400)
        return int(days) + (1 if remainder else 0)


def generate_event_id() -> str:
    return f"evt_{uuid.uuid4().hex}"


# ---------------------------------------------------------------------------
# Payload parsing
# ---------------------------------------------------------------------------

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")

#: Wire names that do not map onto field names by camelCase conversion alone.
_KEY_ALIASES = {
    "page_views": "page_view_count",
    "zipcode": "zip_code",
}


def _snake(key: str) -> str:
    converted = _CAMEL_BOUNDARY.sub("_", str(key)).lower()
    return _KEY_ALIASES.get(converted, converted)


def _normalise_keys(data: Mapping[str, Any]) -> dict[str, Any]:
    return {_snake(key): value for key, value in data.items()}


def _section(data: Mapping[str, Any], name: str) -> dict[str, Any]:
    value = data.get(name)
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ValidationError(f"{name} must be a mapping if provided", {"value": value})
    return _normalise_keys(value)


def _enum(enum_cls: type[Enum], value: Any, field_name: str, default: Any = None) -> Any:
    if value is None or value == "":
        return default
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        raise ValidationError(
            f"Invalid value for {field_name}",
            {"value": value, "allowed": [item.value for item in enum_cls]},
        ) from None


def _number(value: Any, field_name: str) -> float | None:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{field_name} must be numeric", {"value": value})
    if isinstance(value, int):
        return value
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field_name} must be numeric", {"value": value}) from None
    if not math.isfinite(number):
        raise ValidationError(f"{field_name} must be a finite number", {"value": str(value)})
    return number


def _text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _timestamp(value: Any, field_name: str) -> datetime | None:
    if value is None or value == "":
        return None
    try:
        return parse_timestamp(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field_name} is not a valid timestamp", {"value": value}) from None


_PROPERTY_FIELDS = {f.name for f in fields(EventProperties)} - {"custom_data"}
_NUMERIC_PROPERTIES = {"item_value", "load_time", "response_time", "revenue"}
_TEXT_PROPERTIES = _PROPERTY_FIELDS - _NUMERIC_PROPERTIES - {"filter_criteria"}


def _parse_properties(data: Mapping[str, Any]) -> EventProperties:
    raw = data.get("properties")
    if raw is None:
        return EventProperties()
    if not isinstance(raw, Mapping):
        raise ValidationError("properties must be a mapping if provided", {"value": raw})

    known: dict[str, Any] = {}
    custom: dict[str, Any] = {}
    for key, value in raw.items():
        name = _snake(key)
        if name == "custom_data":
            if value is not None and not isinstance(value, Mapping):
                raise ValidationError("properties.customData must be a mapping", {"value": value})
            custom.update(value or {})
        elif name in _NUMERIC_PROPERTIES:
            known[name] = _number(value, f"properties.{name}")
        elif name in _TEXT_PROPERTIES:
            known[name] = _text(value)
        elif name == "filter_criteria":
            known[name] = value
        else:
            custom[str(key)] = value
    return EventProperties(**known, custom_data=custom)


def _parse_metrics(data: Mapping[str, Any]) -> EventMetrics:
    section = _section(data, "metrics")
    allowed = {f.name for f in fields(EventMetrics)}
    unknown = set(section) - allowed
    if unknown:
        raise ValidationError("Unknown metrics fields", {"fields": sorted(unknown)})
    return EventMetrics(**{name: _number(value, f"metrics.{name}") for name, value in section.items()})


def _parse_location(data: Mapping[str, Any]) -> Location | None:
    section = _section(data, "location")
    if not section:
        return None
    coordinates = section.pop("coordinates", None) or {}
    if not isinstance(coordinates, Mapping):
        raise ValidationError("location.coordinates must be a mapping", {"value": coordinates})
    return Location(
        country=_text(section.get("country")),
        region=_text(section.get("region")),
        city=_text(section.get("city")),
        zip_code=_text(section.get("zip_code")),
        latitude=_number(section.get("latitude", coordinates.get("latitude")), "location.latitude"),
        longitude=_number(section.get("longitude", coordinates.get("longitude")), "location.longitude"),
    )


def _parse_device(data: Mapping[str, Any]) -> Device | None:
    section = _section(data, "device")
    if not section:
        return None
    return Device(
        platform=_enum(Platform, section.get("platform"), "device.platform"),
        browser=_text(section.get("browser")),
        os=_text(section.get("os")),
        device_id=_text(section.get("device_id")),
        screen_resolution=_text(section.get("screen_resolution")),
        user_agent=_text(section.get("user_agent")),
    )


def _parse_experiments(data: Mapping[str, Any]) -> tuple[ExperimentExposure, ...]:
    raw = data.get("experiments") or []
    if not isinstance(raw, (list, tuple)):
        raise ValidationError("experiments must be a list if provided", {"value": raw})
    exposures = []
    for item in raw:
        if not isinstance(item, Mapping):
            raise ValidationError("experiment entries must be mappings", {"value": item})
        entry = _normalise_keys(item)
        experiment_id = _text(entry.get("experiment_id"))
        if experiment_id is None:
            raise ValidationError("experiment entries require experimentId", {"value": item})
        exposures.append(
            ExperimentExposure(
                experiment_id=experiment_id,
                variant=_text(entry.get("variant")),
                exposure_time=_timestamp(entry.get("exposure_time"), "experiments.exposureTime"),
            )
        )
    return tuple(exposures)


def _parse_data_quality(data: Mapping[str, Any]) -> DataQuality:
    section = _section(data, "data_quality")
    errors = section.get("validation_errors") or ()
    source = section.get("data_source", data.get("data_source"))
    return DataQuality(
        is_valid=bool(section.get("is_valid", True)),
        validation_errors=tuple(str(item) for item in errors),
        processing_time=_timestamp(section.get("processing_time"), "dataQuality.processingTime"),
        data_source=_enum(DataSource, source, "dataQuality.dataSource", DataSource.API),
    )


def _parse_privacy(
    data: Mapping[str, Any], created_at: datetime, retention_days: int | None
) -> Privacy:
    section = _section(data, "privacy")
    expiry = _timestamp(section.get("data_retention_expiry"), "privacy.dataRetentionExpiry")
    return Privacy(
        data_retention_expiry=expiry or default_retention_expiry(created_at, retention_days),
        consent_given=bool(section.get("consent_given", False)),
        anonymized=bool(section.get("anonymized", False)),
        ip_address_hashed=_text(section.get("ip_address_hashed")),
    )


def _required_fields(data: Mapping[str, Any]) -> tuple[str, EventType]:
    missing = [name for name in ("customer_id", "event_type") if not _text(data.get(name))]
    if missing:
        raise MissingRequiredField(
            "Event missing required fields", {"missing_fields": missing}
        )
    event_type_value = data["event_type"]
    if isinstance(event_type_value, EventType):
        event_type = event_type_value
    else:
        try:
            event_type = EventType(str(event_type_value).strip())
        except ValueError:
            raise MissingRequiredField(
                "eventType is not a supported event type",
                {"value": event_type_value, "allowed": [item.value for item in EventType]},
            ) from None
    return str(data["customer_id"]).strip(), event_type


def _build_event(
    payload: Mapping[str, Any],
    *,
    now: datetime,
    retention_days: int | None,
    enrich: bool,
) -> AnalyticsEvent:
    if not isinstance(payload, Mapping):
        raise ValidationError("Event payload must be a mapping", {"value": payload})
    data = _normalise_keys(payload)
    customer_id, event_type = _required_fields(data)

    timestamp = _timestamp(data.get("timestamp"), "timestamp") or now
    data_quality = _parse_data_quality(data)
    if enrich:
        data_quality = replace(data_quality, is_valid=True, processing_time=now)

    return AnalyticsEvent(
        event_id=_text(data.get("event_id")) or generate_event_id(),
        customer_id=customer_id,
        event_type=event_type,
        timestamp=timestamp,
        customer_type=_enum(
            CustomerType, data.get("customer_type"), "customerType", CustomerType.INDIVIDUAL
        ),
        event_category=_enum(EventCategory, data.get("event_category"), "eventCategory"),
        session_id=_text(data.get("session_id")),
        location=_parse_location(data),
        device=_parse_device(data),
        properties=_parse_properties(data),
        metrics=_parse_metrics(data),
        experiments=_parse_experiments(data),
        data_quality=data_quality,
        privacy=_parse_privacy(data, now, retention_days),
    )


def validate_and_enrich(
    payload: Mapping[str, Any],
    *,
    now: datetime | None = None,
    retention_days: int | None = None,
) -> AnalyticsEvent:
    """Validate a raw payload and return the enriched event.

    Parameters
    ----------
    payload:
        Raw event mapping. ``customerId`` and ``eventType`` are required.
    now:
        Creation time used for defaults; the current UTC time when omitted.
    retention_days:
        Retention window for the default expiry. One calendar year when
        omitted.

    Raises
    ------
    MissingRequiredField
        If ``customerId``/``eventType`` are absent or the event type is not
        part of :class:`EventType`.
    ValidationError
        For any other malformed field.
    """
    created_at = ensure_utc(now) if now is not None else utc_now()
    return _build_event(payload, now=created_at, retention_days=retention_days, enrich=True)


class EventContract:
    """Validate batches of raw payloads into canonical events."""

    def __init__(self, retention_days: int | None = None) -> None:
        if retention_days is not None and retention_days <= 0:
            raise ValueError(f"retention_days must be positive, got {retention_days}")
        self.retention_days = retention_days

    def validate(self, payload: Mapping[str, Any], *, now: datetime | None = None) -> AnalyticsEvent:
        return validate_and_enrich(payload, now=now, retention_days=self.retention_days)

    def validate_records(
        self, payloads: Iterable[Mapping[str, Any]], *, now: datetime | None = None
    ) -> tuple[list[AnalyticsEvent], list[dict[str, Any]]]:
        """Validate many payloads, collecting rejections instead of stopping.

        Returns
        -------
        tuple
            ``(events, rejections)`` where each rejection is a dictionary
            with ``record_index``, ``error``, ``message`` and ``details`` keys.
        """
        events: list[AnalyticsEvent] = []
        rejections: list[dict[str, Any]] = []
        for idx, payload in enumerate(payloads):
            try:
                events.append(self.validate(payload, now=now))
            except ValidationError as exc:
                rejections.append(
                    {
                        "record_index": idx,
                        "error": type(exc).__name__,
                        "message": exc.message,
                        "details": exc.details,
                    }
                )
        return events, rejections


# ---------------------------------------------------------------------------
# Serialisation
# ---------------------------------------------------------------------------


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _enum_value(value: Enum | None) -> Any:
    return value.value if value is not None else None


def to_serialisable(event: AnalyticsEvent) -> dict[str, Any]:
    """Convert an event into a JSON-serialisable dictionary."""

    properties = {
        f.name: getattr(event.properties, f.name)
        for f in fields(EventProperties)
        if f.name != "custom_data" and getattr(event.properties, f.name) is not None
    }
    if event.properties.custom_data:
        properties["custom_data"] = dict(event.properties.custom_data)

    payload: dict[str, Any] = {
        "event_id": event.event_id,
        "customer_id": event.customer_id,
        "customer_type": event.customer_type.value,
        "event_type": event.event_type.value,
        "event_category": event.event_category.value,
        "session_id": event.session_id,
        "timestamp": event.timestamp.isoformat(),
        "location": (
            {k: v for k, v in vars(event.location).items() if v is not None}
            if event.location
            else None
        ),
        "device": (
            {
                "platform": _enum_value(event.device.platform),
                "browser": event.device.browser,
                "os": event.device.os,
                "device_id": event.device.device_id,
                "screen_resolution": event.device.screen_resolution,
                "user_agent": event.device.user_agent,
            }
            if event.device
            else None
        ),
        "properties": properties,
        "metrics": {k: v for k, v in vars(event.metrics).items() if v is not None},
        "experiments": [
            {
                "experiment_id": exposure.experiment_id,
                "variant": exposure.variant,
                "exposure_time": _iso(exposure.exposure_time),
            }
            for exposure in event.experiments
        ],
        "data_quality": {
            "is_valid": event.data_quality.is_valid,
            "validation_errors": list(event.data_quality.validation_errors),
            "processing_time": _iso(event.data_quality.processing_time),
            "data_source": event.data_quality.data_source.value,
        },
        "privacy": {
            "consent_given": event.privacy.consent_given,
            "data_retention_expiry": event.privacy.data_retention_expiry.isoformat(),
            "anonymized": event.privacy.anonymized,
            "ip_address_hashed": event.privacy.ip_address_hashed,
        },
    }
    return payload


def event_from_dict(data: Mapping[str, Any]) -> AnalyticsEvent:
    """Rebuild an event from :func:`to_serialisable` output without re-enriching.

    Raises
    ------
    ValidationError
        If the stored representation is malformed.
    """
    return _build_event(data, now=utc_now(), retention_days=None, enrich=False)
