"""Command line entry points for the customer insights toolkit."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import replace
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

from customer_insights.analyses.cohorts import RetentionPolicy, analyze_cohorts
from customer_insights.analyses.customer import customer_insights
from customer_insights.analyses.funnel import analyze_funnel
from customer_insights.analyses.predictive import predictive_insights
from customer_insights.compliance.expiry import ExpiryManager
from customer_insights.errors import DuplicateEventId
from customer_insights.foundation import (
    DateRange,
    EventContract,
    Granularity,
    create_event_store,
    to_serialisable,
)
from customer_insights.foundation.periods import parse_timestamp, utc_now
from customer_insights.synthetic import (
    BASELINE_SCENARIO,
    HIGH_CHURN_SCENARIO,
    HIGH_CONVERSION_SCENARIO,
    generate_customers,
    generate_events,
)

logger = logging.getLogger(__name__)


MAX_INPUT_BYTES = 25 * 1024 * 1024  # 25 MiB cap to avoid accidental OOM

DEFAULT_STORE_URL = "sqlite:///insights.db"

SCENARIOS = {
    "baseline": BASELINE_SCENARIO,
    "high-churn": HIGH_CHURN_SCENARIO,
    "high-conversion": HIGH_CONVERSION_SCENARIO,
}


def _load_payloads(path: Path) -> list[dict[str, Any]]:
    resolved = path.resolve()
    size = resolved.stat().st_size
    if size > MAX_INPUT_BYTES:
        raise ValueError(
            f"Input file {resolved} is {size} bytes; exceeds limit of {MAX_INPUT_BYTES} bytes"
        )
    with path.open("r", encoding="utf-8") as fh:
        payload = json.load(fh)
    if not isinstance(payload, list):
        raise ValueError("Expected a list of events in the input file")
    return payload


def _write_json(payload: Any, output: Path | None) -> None:
    if output is None:
        json.dump(payload, fp=sys.stdout, indent=2, sort_keys=True, default=str)
        print()
        return
    output_path = output.resolve()
    cwd = Path.cwd().resolve()
    try:
        output_path.relative_to(cwd)
    except ValueError:
        raise ValueError(
            f"Output path {output_path} must reside within the current working directory"
        ) from None
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with output_path.open("w", encoding="utf-8") as fh:
        json.dump(payload, fh, indent=2, sort_keys=True, default=str)


def _add_store_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--store",
        default=DEFAULT_STORE_URL,
        help=f"Event store URL (memory:// or a SQLAlchemy URL, default: {DEFAULT_STORE_URL})",
    )


def _add_range_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--start", type=str, help="Range start (ISO 8601). Defaults to end - 30 days.")
    parser.add_argument("--end", type=str, help="Range end (ISO 8601). Defaults to now.")


def _date_range(args: argparse.Namespace) -> DateRange:
    end = parse_timestamp(args.end) if args.end else utc_now()
    start = parse_timestamp(args.start) if args.start else end - timedelta(days=30)
    return DateRange(start, end)


def ingest_cli(argv: list[str] | None = None) -> int:
    """Validate a JSON list of raw events and append them to a store."""

    parser = argparse.ArgumentParser(description="Ingest analytics events from a JSON file")
    parser.add_argument("input", type=Path, help="Path to JSON file with raw event payloads")
    _add_store_argument(parser)
    parser.add_argument(
        "--retention-days",
        type=int,
        help="Retention window for events without an explicit expiry (default: one year)",
    )
    args = parser.parse_args(argv)

    contract = EventContract(retention_days=args.retention_days)
    events, rejections = contract.validate_records(_load_payloads(args.input))
    for rejection in rejections:
        logger.warning(
            f"Rejected record {rejection['record_index']}: {rejection['message']}"
        )

    accepted = 0
    duplicates = []
    with create_event_store(args.store) as store:
        for event in events:
            try:
                store.append(event)
                accepted += 1
            except DuplicateEventId:
                duplicates.append(event.event_id)

    logger.info(f"Ingested {accepted} events into {args.store}")
    _write_json(
        {
            "accepted": accepted,
            "rejected": rejections,
            "duplicates": duplicates,
        },
        None,
    )
    return 0 if not rejections and not duplicates else 1


def funnel_cli(argv: list[str] | None = None) -> int:
    """Run a conversion funnel over a store."""

    parser = argparse.ArgumentParser(description="Analyse a conversion funnel")
    _add_store_argument(parser)
    _add_range_arguments(parser)
    parser.add_argument(
        "--step",
        dest="steps",
        action="append",
        required=True,
        help="Funnel step name (repeat in funnel order).",
    )
    parser.add_argument(
        "--segment",
        dest="segments",
        action="append",
        help="Segment token such as customerType:Premium or platform:Mobile.",
    )
    parser.add_argument("--output", type=Path, help="Optional path for the JSON result.")
    args = parser.parse_args(argv)

    with create_event_store(args.store) as store:
        result = analyze_funnel(store, args.steps, _date_range(args), args.segments)
    _write_json(result.as_dict(), args.output)
    return 0


def cohorts_cli(argv: list[str] | None = None) -> int:
    """Compute acquisition cohorts and retention."""

    parser = argparse.ArgumentParser(description="Analyse retention cohorts")
    _add_store_argument(parser)
    parser.add_argument(
        "--cohort-type",
        default=Granularity.MONTHLY.value,
        choices=[item.value for item in Granularity],
    )
    parser.add_argument(
        "--period",
        dest="periods",
        action="append",
        type=int,
        help="Retention period in cohort units (repeatable, default: 1 3 6 12).",
    )
    parser.add_argument("--start-date", type=str, help="Earliest acquisition date (ISO 8601).")
    parser.add_argument(
        "--policy",
        default=RetentionPolicy.ANY_EVENT.value,
        choices=[item.value for item in RetentionPolicy],
    )
    parser.add_argument("--output", type=Path, help="Optional path for the JSON result.")
    args = parser.parse_args(argv)

    start_date = parse_timestamp(args.start_date) if args.start_date else None
    with create_event_store(args.store) as store:
        result = analyze_cohorts(
            store,
            args.cohort_type,
            args.periods,
            start_date,
            policy=args.policy,
        )
    _write_json(result.as_dict(), args.output)
    return 0


def customer_cli(argv: list[str] | None = None) -> int:
    """Print the insights dashboard for one customer."""

    parser = argparse.ArgumentParser(description="Customer insights dashboard")
    parser.add_argument("customer_id", help="Customer identifier")
    _add_store_argument(parser)
    _add_range_arguments(parser)
    parser.add_argument(
        "--predictive",
        action="store_true",
        help="Include churn risk, value score and next-action predictions.",
    )
    parser.add_argument("--output", type=Path, help="Optional path for the JSON result.")
    args = parser.parse_args(argv)

    with create_event_store(args.store) as store:
        payload = customer_insights(store, args.customer_id, _date_range(args)).as_dict()
        if args.predictive:
            payload["predictive"] = predictive_insights(store, args.customer_id).as_dict()
    _write_json(payload, args.output)
    return 0


def purge_cli(argv: list[str] | None = None) -> int:
    """Delete events past their retention deadline."""

    parser = argparse.ArgumentParser(description="Purge expired analytics events")
    _add_store_argument(parser)
    parser.add_argument("--as-of", type=str, help="Cut-off time (ISO 8601). Defaults to now.")
    parser.add_argument("--batch-size", type=int, default=500, help="Records per delete batch.")
    args = parser.parse_args(argv)

    as_of: datetime = parse_timestamp(args.as_of) if args.as_of else utc_now()
    with create_event_store(args.store) as store:
        deleted = ExpiryManager(store, batch_size=args.batch_size).purge_expired(as_of)
    _write_json({"deleted_count": deleted, "as_of": as_of.isoformat()}, None)
    return 0


def generate_cli(argv: list[str] | None = None) -> int:
    """Generate a synthetic event stream as JSON (optionally ingesting it)."""

    parser = argparse.ArgumentParser(description="Generate synthetic analytics events")
    parser.add_argument("--customers", type=int, default=100, help="Number of customers.")
    parser.add_argument("--start", type=str, required=True, help="First acquisition date (YYYY-MM-DD).")
    parser.add_argument("--end", type=str, required=True, help="Last activity date (YYYY-MM-DD).")
    parser.add_argument("--seed", type=int, help="RNG seed for reproducible output.")
    parser.add_argument("--scenario", default="baseline", choices=sorted(SCENARIOS))
    parser.add_argument("--output", type=Path, help="Path for the generated JSON events.")
    parser.add_argument("--store", help="Also append the events to this store URL.")
    args = parser.parse_args(argv)

    start = datetime.fromisoformat(args.start).date()
    end = datetime.fromisoformat(args.end).date()
    scenario = SCENARIOS[args.scenario]
    if args.seed is not None:
        scenario = replace(scenario, seed=args.seed)

    customers = generate_customers(args.customers, start, end, seed=args.seed)
    events = generate_events(customers, start, end, scenario=scenario)
    logger.info(f"Generated {len(events)} events for {len(customers)} customers")

    if args.store:
        with create_event_store(args.store) as store:
            store.append_many(events)
    _write_json([to_serialisable(event) for event in events], args.output)
    return 0


def main() -> None:
    raise SystemExit(ingest_cli())


if __name__ == "__main__":  # pragma: no cover
    main()
