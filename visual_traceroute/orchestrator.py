"""Run due schedules: trace, ship logs, record when each schedule ran.

Schedules are processed one after another. A traceroute failure is recorded
in the run summary and leaves that schedule's ``last_run`` alone, so it is
picked up again by the next sweep. A log ingestion failure is logged and the
schedule still counts as run.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from .config import VisualTracerouteConfig
from .logs import LogIngestClient, LogIngestError, format_log_records
from .models import Schedule
from .schedules import ScheduleStore, select_due_schedules, valid_schedules
from .state import StateConflictError, StateStoreError
from .traceroute import simulate_traceroute


class ScheduleRunResult(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    schedule_id: str
    schedule_name: str
    success: bool
    execution_id: str | None = None
    hops: int | None = None
    records_ingested: int | None = None
    error: str | None = None


class RunSummary(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    success: bool = True
    schedules_checked: int = 0
    schedules_run: int = 0
    results: list[ScheduleRunResult] = []
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def execution_id_for(schedule: Schedule, now: datetime) -> str:
    return f"traceroute-{schedule.id}-{int(now.timestamp() * 1000)}"


def run_schedule(
    config: VisualTracerouteConfig,
    schedule: Schedule,
    log_client: LogIngestClient,
    now: datetime,
) -> ScheduleRunResult:
    """Trace one schedule's target and submit its log records.

    Raises whatever the traceroute raises; ingestion errors are absorbed.
    """
    execution_id = execution_id_for(schedule, now)
    logging.info(f"Running traceroute for {schedule.name} ({schedule.target})")
    result = simulate_traceroute(config, schedule.target)

    records = format_log_records(
        result,
        schedule_name=schedule.name,
        schedule_id=schedule.id,
        execution_id=execution_id,
        source=config.logs.source,
        app_name=config.logs.app_name,
    )
    ingested = 0
    try:
        log_client.submit(records)
        ingested = len(records)
        logging.info(f"Ingested {ingested} logs for {schedule.name}")
    except LogIngestError as e:
        logging.warning(f"Log ingestion failed for {schedule.name}: {e}")

    return ScheduleRunResult(
        schedule_id=schedule.id,
        schedule_name=schedule.name,
        success=True,
        execution_id=execution_id,
        hops=len(result.hops),
        records_ingested=ingested,
    )


def _stamp(records: list[Schedule | Any], stamps: dict[str, tuple[datetime, datetime]]) -> None:
    for i, record in enumerate(records):
        if isinstance(record, Schedule) and record.id in stamps:
            last_run, next_run = stamps[record.id]
            records[i] = record.model_copy(update={"last_run": last_run, "next_run": next_run})


def run_scheduled_traceroutes(
    config: VisualTracerouteConfig,
    store: ScheduleStore,
    log_client: LogIngestClient,
    schedule_id: str | None = None,
    force: bool = False,
    now: datetime | None = None,
) -> RunSummary:
    """Run every due schedule, or one named schedule.

    Args:
        config: Typed configuration object.
        store: schedule collection.
        log_client: where log records go.
        schedule_id: run only this schedule, regardless of its interval.
        force: allow a disabled schedule to run when it is named.
        now: evaluation time, defaults to the current UTC time.

    Returns:
        RunSummary with one entry per selected schedule.

    Raises:
        ScheduleNotFoundError, ScheduleDisabledError: for a named schedule.
        StateStoreError: if the collection cannot be loaded.
    """
    now = now or datetime.now(timezone.utc)
    records, version = store.load()
    schedules = valid_schedules(records)
    logging.info(f"Found {len(schedules)} total schedules")

    selected = select_due_schedules(schedules, schedule_id=schedule_id, force=force, now=now)
    logging.info(f"{len(selected)} schedules need to run")

    summary = RunSummary(schedules_checked=len(schedules), schedules_run=len(selected))
    stamps: dict[str, tuple[datetime, datetime]] = {}

    for schedule in selected:
        try:
            next_run = now + timedelta(minutes=schedule.interval_minutes)
            summary.results.append(run_schedule(config, schedule, log_client, now))
        except Exception as e:
            logging.error(f"Error running traceroute for {schedule.name}: {e}")
            summary.results.append(
                ScheduleRunResult(
                    schedule_id=schedule.id,
                    schedule_name=schedule.name,
                    success=False,
                    error=str(e),
                )
            )
            continue
        stamps[schedule.id] = (now, next_run)

    if not selected:
        return summary

    try:
        _stamp(records, stamps)
        try:
            store.write(records, expected_version=version)
        except StateConflictError:
            logging.warning("Schedules changed during the run, merging run times")
            store.update(lambda fresh: _stamp(fresh, stamps))
        logging.info("Updated schedules with lastRun times")
    except StateStoreError as e:
        logging.error(f"Failed to persist schedules: {e}")
        summary.success = False
        summary.error = f"Failed to persist schedules: {e}"

    return summary
