"""Durable event store backed by SQLAlchemy.

One table, ``analytics_events``, holds every event. The filter dimensions
are stored as indexed columns (with composite ``(dimension, timestamp)``
indexes) while the complete event is kept as a JSON document so it can be
rebuilt exactly. Timestamps are written as naive UTC values, which keeps
ordering and range comparisons correct on backends without timezone
support (SQLite).
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Iterator

from sqlalchemy import JSON, Column, DateTime, Index, String, create_engine, delete, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from customer_insights.errors import DuplicateEventId, StoreUnavailable
from customer_insights.foundation.deadline import Deadline, check_deadline
from customer_insights.foundation.event_contract import (
    AnalyticsEvent,
    event_from_dict,
    to_serialisable,
)
from customer_insights.foundation.event_store import (
    DEFAULT_PURGE_BATCH_SIZE,
    EventQuery,
    EventStore,
    SortOrder,
)
from customer_insights.foundation.periods import ensure_utc

logger = logging.getLogger(__name__)

Base = declarative_base()


class EventRecord(Base):
    __tablename__ = "analytics_events"

    event_id = Column(String(64), primary_key=True)
    customer_id = Column(String(255), nullable=False)
    customer_type = Column(String(32), nullable=False)
    event_type = Column(String(64), nullable=False)
    event_category = Column(String(32), nullable=False)
    session_id = Column(String(255))
    timestamp = Column(DateTime, nullable=False, index=True)
    data_retention_expiry = Column(DateTime, nullable=False, index=True)
    payload = Column(JSON, nullable=False)

    __table_args__ = (
        Index("ix_analytics_events_customer_ts", "customer_id", "timestamp"),
        Index("ix_analytics_events_type_ts", "event_type", "timestamp"),
        Index("ix_analytics_events_category_ts", "event_category", "timestamp"),
        Index("ix_analytics_events_session_ts", "session_id", "timestamp"),
    )


def _db_ts(value: datetime) -> datetime:
    return ensure_utc(value).replace(tzinfo=None)


def _to_record(event: AnalyticsEvent) -> EventRecord:
    return EventRecord(
        event_id=event.event_id,
        customer_id=event.customer_id,
        customer_type=event.customer_type.value,
        event_type=event.event_type.value,
        event_category=event.event_category.value,
        session_id=event.session_id,
        timestamp=_db_ts(event.timestamp),
        data_retention_expiry=_db_ts(event.retention_expiry),
        payload=to_serialisable(event),
    )


def _is_in_memory_sqlite(url: str) -> bool:
    return url.startswith("sqlite") and (url.rstrip("/") in {"sqlite:", "sqlite://"} or ":memory:" in url)


class SQLEventStore(EventStore):
    """Event store over any SQLAlchemy database URL.

    Parameters
    ----------
    url:
        SQLAlchemy database URL, e.g. ``sqlite:///events.db`` or
        ``postgresql+psycopg://...``. An in-memory SQLite URL shares a
        single connection across threads.
    engine:
        Pre-built engine; takes precedence over ``url``.
    echo:
        Forwarded to :func:`sqlalchemy.create_engine`.

    The store must be opened (directly or as a context manager) before use.
    Connection failures surface as :class:`StoreUnavailable`; the store
    never retries.
    """

    def __init__(self, url: str | None = None, *, engine: Engine | None = None, echo: bool = False):
        if url is None and engine is None:
            raise ValueError("SQLEventStore requires a url or an engine")
        self.url = url
        self._engine = engine
        self._echo = echo
        self._sessions: sessionmaker | None = None

    def open(self) -> None:
        if self._sessions is not None:
            return
        if self._engine is None:
            options: dict[str, Any] = {"echo": self._echo}
            if _is_in_memory_sqlite(self.url):
                options["poolclass"] = StaticPool
                options["connect_args"] = {"check_same_thread": False}
            self._engine = create_engine(self.url, **options)
        try:
            Base.metadata.create_all(self._engine)
        except (OperationalError, InterfaceError) as exc:
            raise StoreUnavailable("Could not initialise event store", {"error": str(exc)}) from exc
        self._sessions = sessionmaker(bind=self._engine, expire_on_commit=False)
        logger.info("Opened SQL event store (%s)", self._engine.url.render_as_string(hide_password=True))

    def close(self) -> None:
        if self._sessions is None:
            return
        self._sessions = None
        if self._engine is not None:
            self._engine.dispose()

    @contextmanager
    def _session(self) -> Iterator[Session]:
        if self._sessions is None:
            raise StoreUnavailable("SQL event store is not open")
        session = self._sessions()
        try:
            yield session
            session.commit()
        except (OperationalError, InterfaceError) as exc:
            session.rollback()
            raise StoreUnavailable("Event store is unreachable", {"error": str(exc)}) from exc
        except BaseException:
            session.rollback()
            raise
        finally:
            session.close()

    def append(self, event: AnalyticsEvent, *, deadline: Deadline | None = None) -> str:
        check_deadline(deadline, "append")
        try:
            with self._session() as session:
                session.add(_to_record(event))
                session.flush()
        except IntegrityError as exc:
            raise DuplicateEventId("Event id already exists", {"event_id": event.event_id}) from exc
        return event.event_id

    def get(self, event_id: str) -> AnalyticsEvent | None:
        with self._session() as session:
            record = session.get(EventRecord, event_id)
            return event_from_dict(record.payload) if record is not None else None

    @staticmethod
    def _conditions(query: EventQuery) -> list[Any]:
        conditions: list[Any] = []
        if query.customer_id is not None:
            conditions.append(EventRecord.customer_id == query.customer_id)
        if query.event_types is not None:
            conditions.append(EventRecord.event_type.in_(sorted(t.value for t in query.event_types)))
        if query.event_category is not None:
            conditions.append(EventRecord.event_category == query.event_category.value)
        if query.session_id is not None:
            conditions.append(EventRecord.session_id == query.session_id)
        if query.customer_type is not None:
            conditions.append(EventRecord.customer_type == query.customer_type.value)
        if query.start is not None:
            conditions.append(EventRecord.timestamp >= _db_ts(query.start))
        if query.end is not None:
            conditions.append(EventRecord.timestamp <= _db_ts(query.end))
        return conditions

    def find(self, query: EventQuery, *, deadline: Deadline | None = None) -> list[AnalyticsEvent]:
        check_deadline(deadline, "find")
        if query.order is SortOrder.ASC:
            ordering = (EventRecord.timestamp.asc(), EventRecord.event_id.asc())
        else:
            ordering = (EventRecord.timestamp.desc(), EventRecord.event_id.desc())
        statement = (
            select(EventRecord.payload)
            .where(*self._conditions(query))
            .order_by(*ordering)
            .offset(query.offset)
        )
        if query.limit is not None:
            statement = statement.limit(query.limit)
        with self._session() as session:
            payloads = session.execute(statement).scalars().all()
        check_deadline(deadline, "find")
        return [event_from_dict(payload) for payload in payloads]

    def count_matching(self, query: EventQuery, *, deadline: Deadline | None = None) -> int:
        check_deadline(deadline, "count")
        statement = select(func.count()).select_from(EventRecord).where(*self._conditions(query))
        with self._session() as session:
            total = session.execute(statement).scalar_one()
        check_deadline(deadline, "count")
        return int(total)

    def _delete_where(self, conditions: list[Any], batch_size: int) -> int:
        if batch_size <= 0:
            raise ValueError(f"batch_size must be positive, got {batch_size}")
        deleted = 0
        while True:
            with self._session() as session:
                ids = (
                    session.execute(
                        select(EventRecord.event_id).where(*conditions).limit(batch_size)
                    )
                    .scalars()
                    .all()
                )
                if ids:
                    session.execute(delete(EventRecord).where(EventRecord.event_id.in_(ids)))
            deleted += len(ids)
            if len(ids) < batch_size:
                return deleted

    def delete_expired(self, as_of: datetime, *, batch_size: int = DEFAULT_PURGE_BATCH_SIZE) -> int:
        deleted = self._delete_where(
            [EventRecord.data_retention_expiry < _db_ts(as_of)], batch_size
        )
        logger.debug("Deleted %d expired events (as_of=%s)", deleted, ensure_utc(as_of).isoformat())
        return deleted

    def delete_matching(self, query: EventQuery, *, batch_size: int = DEFAULT_PURGE_BATCH_SIZE) -> int:
        return self._delete_where(self._conditions(query), batch_size)

    def count(self) -> int:
        with self._session() as session:
            return int(session.execute(select(func.count()).select_from(EventRecord)).scalar_one())

    def ping(self) -> bool:
        try:
            with self._session() as session:
                session.execute(select(1))
        except StoreUnavailable as exc:
            logger.warning("Event store ping failed: %s", exc)
            return False
        return True
