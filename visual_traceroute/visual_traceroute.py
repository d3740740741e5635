#!/usr/bin/env python

from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.interval import IntervalTrigger
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from .config import VisualTracerouteConfig
from .config import load_config as load_modern_config
from .geolocation import geolocate_ip, is_private_ip
from .logs import (
    InvalidResultError,
    LogIngestClient,
    LogIngestError,
    create_log_client,
    format_log_records,
)
from .models import Schedule, TracerouteResult
from .orchestrator import run_scheduled_traceroutes
from .schedules import ScheduleDisabledError, ScheduleNotFoundError, ScheduleStore
from .state import StateStore, StateStoreError, create_state_store
from .traceroute import trace_target

logging.getLogger("requests").setLevel(logging.WARNING)
logging.getLogger("urllib3").setLevel(logging.WARNING)

LOG_FILE = Path("visual_traceroute.log")


def setup_logger(verbose: bool = False) -> None:
    """Set up logging."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)-8s %(message)s",
        datefmt="%m-%d %H:%M",
        filename=LOG_FILE,
        filemode="a",
    )
    console = logging.StreamHandler(sys.stderr)
    console.setLevel(logging.INFO if verbose else logging.WARNING)
    formatter = logging.Formatter("%(message)s")
    console.setFormatter(formatter)
    logging.getLogger("").addHandler(console)


def load_config(config_file: str | Path | None = None) -> VisualTracerouteConfig:
    """Load configuration using the Pydantic-based system.

    Args:
        config_file: Path to configuration file. If None, searches standard locations.

    Returns:
        Typed and validated configuration object.
    """
    if isinstance(config_file, str):
        config_file = Path(config_file)

    return load_modern_config(config_file)


class Payload(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SaveSchedulePayload(Payload):
    schedule: Schedule

    @field_validator("schedule")
    @classmethod
    def validate_schedule(cls, v: Schedule) -> Schedule:
        if not v.id:
            raise ValueError("schedule id is required")
        if v.interval_minutes < 1:
            raise ValueError("intervalMinutes must be at least 1")
        return v


class DeleteSchedulePayload(Payload):
    schedule_id: str = Field(min_length=1)


class RunPayload(Payload):
    schedule_id: str | None = None
    force_run: bool = False


class IngestLogsPayload(Payload):
    traceroute_result: TracerouteResult | dict[str, Any]
    schedule_name: str | None = None


class GeolocatePayload(Payload):
    ip: str


class TraceroutePayload(Payload):
    target: str = Field(min_length=1)


def _failure(error: Any, **extra: Any) -> dict[str, Any]:
    return {"success": False, "error": str(error), **extra}


class TracerouteApp:
    """Entry points of the traceroute service.

    Every method takes a JSON-like payload and returns a dict with a
    ``success`` flag; nothing is raised to the caller.

    Example:
        >>> app = TracerouteApp(load_config())
        >>> app.save_schedule({"schedule": {"id": "s1", "name": "DNS",
        ...     "target": "8.8.8.8", "intervalMinutes": 5, "enabled": True}})
        >>> app.run_scheduled_traceroutes({"scheduleId": "s1", "forceRun": True})
    """

    def __init__(
        self,
        config: VisualTracerouteConfig,
        state: StateStore | None = None,
        log_client: LogIngestClient | None = None,
    ) -> None:
        self.config = config
        self.store = ScheduleStore(
            state or create_state_store(config.state),
            key=config.state.key,
            max_conflict_retries=config.state.max_conflict_retries,
        )
        self.log_client = log_client or create_log_client(config.logs)

    def get_schedules(self, payload: dict[str, Any] | None = None) -> dict[str, Any]:
        """List every stored schedule."""
        try:
            schedules = self.store.list_schedules()
        except StateStoreError as e:
            logging.error(f"get_schedules: {e}")
            return _failure(e, schedules=[])
        logging.info(f"Loaded {len(schedules)} schedules")
        return {"success": True, "schedules": [s.to_dict() for s in schedules]}

    def save_schedule(self, payload: dict[str, Any] | None) -> dict[str, Any]:
        """Insert or fully replace a schedule."""
        try:
            request = SaveSchedulePayload.model_validate(payload or {})
        except ValidationError as e:
            logging.error(f"save_schedule: invalid schedule data: {e}")
            return _failure("Invalid schedule data")

        try:
            schedule = self.store.save(request.schedule)
        except StateStoreError as e:
            logging.error(f"save_schedule: failed to persist: {e}")
            return _failure(f"Failed to save to storage: {e}", errorDetails=e.details())
        return {"success": True, "schedule": schedule.to_dict()}

    def delete_schedule(self, payload: dict[str, Any] | None) -> dict[str, Any]:
        """Remove a schedule by id."""
        try:
            request = DeleteSchedulePayload.model_validate(payload or {})
        except ValidationError:
            return _failure("Schedule ID is required")

        try:
            self.store.delete(request.schedule_id)
        except ScheduleNotFoundError:
            return _failure("Schedule not found")
        except StateStoreError as e:
            logging.error(f"delete_schedule: failed to update storage: {e}")
            return _failure(f"Failed to update storage: {e}", errorDetails=e.details())
        return {"success": True}

    def run_scheduled_traceroutes(self, payload: dict[str, Any] | None = None) -> dict[str, Any]:
        """Run due schedules, or the one named by ``scheduleId``."""
        try:
            request = RunPayload.model_validate(payload or {})
        except ValidationError as e:
            return _failure(f"Invalid run request: {e}")

        try:
            summary = run_scheduled_traceroutes(
                self.config,
                self.store,
                self.log_client,
                schedule_id=request.schedule_id,
                force=request.force_run,
            )
        except (ScheduleNotFoundError, ScheduleDisabledError) as e:
            return _failure(e)
        except Exception as e:
            logging.error(f"run_scheduled_traceroutes: {e}")
            return _failure(e)
        return summary.to_dict()

    def ingest_logs(self, payload: dict[str, Any] | None) -> dict[str, Any]:
        """Format a traceroute result as log records and submit them."""
        try:
            request = IngestLogsPayload.model_validate(payload or {})
            records = format_log_records(
                request.traceroute_result,
                schedule_name=request.schedule_name,
                source=self.config.logs.source,
                app_name=self.config.logs.app_name,
            )
        except (ValidationError, InvalidResultError):
            return _failure("Invalid traceroute result provided")

        try:
            self.log_client.submit(records)
        except LogIngestError as e:
            logging.error(f"ingest_logs: {e}")
            return _failure(e)
        return {"success": True, "recordsIngested": len(records)}

    def geolocate(self, payload: dict[str, Any] | None) -> dict[str, Any]:
        """Look up one IP address."""
        try:
            request = GeolocatePayload.model_validate(payload or {})
        except ValidationError:
            return _failure("IP address is required")

        if is_private_ip(request.ip):
            return _failure("Private IP address")
        location = geolocate_ip(self.config, request.ip)
        if location is None:
            return _failure("All geolocation APIs failed")
        return {"success": True, "data": location.to_dict()}

    def run_traceroute(self, payload: dict[str, Any] | None) -> dict[str, Any]:
        """Interactive traceroute; the result is returned, not stored."""
        try:
            request = TraceroutePayload.model_validate(payload or {})
        except ValidationError:
            return _failure("Target is required")

        result: TracerouteResult = trace_target(self.config, request.target)
        if result.status == "error":
            return _failure(result.error, result=result.to_dict())
        return {"success": True, "result": result.to_dict()}


def _print(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


SWEEP_JOB_ID = "traceroute-sweep"


def _sweep(app: TracerouteApp) -> None:
    _print(app.run_scheduled_traceroutes())


def create_sweep_scheduler(app: TracerouteApp, every_minutes: int) -> BlockingScheduler:
    """Scheduler that sweeps due schedules every ``every_minutes`` minutes.

    The first sweep runs as soon as the scheduler starts. A sweep that is
    still running when the next one is due makes the next one wait.
    """
    scheduler = BlockingScheduler(
        timezone="UTC",
        job_defaults={"coalesce": True, "misfire_grace_time": 60},
    )
    scheduler.add_job(
        func=_sweep,
        args=[app],
        trigger=IntervalTrigger(minutes=every_minutes, timezone="UTC"),
        id=SWEEP_JOB_ID,
        name="Sweep due traceroute schedules",
        max_instances=1,
        next_run_time=datetime.now(timezone.utc),
    )
    return scheduler


def main() -> int:
    parser = argparse.ArgumentParser(description="Visual Traceroute")
    parser.add_argument("-c", "--config", help="Configuration file (TOML format)")
    parser.add_argument(
        "-v", "--verbose", dest="verbose", action="store_true", help="Verbose mode"
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("trace", help="Run a traceroute to a host")
    p.add_argument("target", help="Hostname or IPv4 address")

    p = sub.add_parser("geo", help="Geolocate an IP address")
    p.add_argument("ip", help="IPv4 address")

    p = sub.add_parser("schedules", help="Manage recurring traceroutes")
    schedules_sub = p.add_subparsers(dest="action", required=True)
    schedules_sub.add_parser("list", help="List schedules")
    p = schedules_sub.add_parser("add", help="Add or replace a schedule")
    p.add_argument("--id", required=True, help="Schedule id")
    p.add_argument("--name", required=True, help="Display name")
    p.add_argument("--target", required=True, help="Hostname or IPv4 address")
    p.add_argument("--interval", type=int, default=60, help="Interval in minutes")
    p.add_argument("--disabled", action="store_true", help="Create disabled")
    p = schedules_sub.add_parser("delete", help="Delete a schedule")
    p.add_argument("id", help="Schedule id")

    p = sub.add_parser("run", help="Run due schedules once")
    p.add_argument("--schedule-id", help="Run only this schedule")
    p.add_argument("--force", action="store_true", help="Run even if disabled")

    p = sub.add_parser("watch", help="Sweep schedules periodically")
    p.add_argument("--every", type=int, help="Minutes between sweeps")

    args = parser.parse_args()
    setup_logger(args.verbose)

    config = load_config(args.config)
    app = TracerouteApp(config)

    match args.command:
        case "trace":
            out = app.run_traceroute({"target": args.target})
        case "geo":
            out = app.geolocate({"ip": args.ip})
        case "schedules" if args.action == "list":
            out = app.get_schedules()
        case "schedules" if args.action == "add":
            out = app.save_schedule(
                {
                    "schedule": {
                        "id": args.id,
                        "name": args.name,
                        "target": args.target,
                        "intervalMinutes": args.interval,
                        "enabled": not args.disabled,
                    }
                }
            )
        case "schedules":
            out = app.delete_schedule({"scheduleId": args.id})
        case "run":
            out = app.run_scheduled_traceroutes(
                {"scheduleId": args.schedule_id, "forceRun": args.force}
            )
        case "watch":
            every = args.every or config.scheduler.check_interval_minutes
            logging.info(f"Sweeping schedules every {every} minute(s)")
            scheduler = create_sweep_scheduler(app, every)
            try:
                scheduler.start()
            except (KeyboardInterrupt, SystemExit):
                logging.info("Stopping schedule sweeps")
            return 0

    _print(out)
    return 0 if out.get("success") else 1


if __name__ == "__main__":
    sys.exit(main())
