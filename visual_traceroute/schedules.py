"""Schedule collection persistence and due-schedule selection.

The whole collection lives as one JSON array under a single state key.
Writes go through ``ScheduleStore.update`` which re-reads and re-applies the
change when another writer got there first.

Stored records that do not validate as a Schedule are carried along as raw
JSON values. They are never listed or run, but every write puts them back
unchanged in their original position.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any, TypeVar

from pydantic import ValidationError

from .models import Schedule
from .state import StateConflictError, StateStore

T = TypeVar("T")

DEFAULT_STATE_KEY = "traceroute-schedules"


class ScheduleNotFoundError(Exception):
    """No schedule has the requested id."""

    def __init__(self, schedule_id: str) -> None:
        super().__init__(f"Schedule not found: {schedule_id}")
        self.schedule_id = schedule_id


class ScheduleDisabledError(Exception):
    """The requested schedule is disabled and the run was not forced."""

    def __init__(self, schedule: Schedule) -> None:
        super().__init__(f"Schedule is disabled: {schedule.name}")
        self.schedule = schedule


def parse_records(value: str | None) -> list[Schedule | Any]:
    """Decode a stored collection.

    Records that validate become Schedule objects; anything else is kept
    as the raw JSON value it was stored as.
    """
    if not value:
        return []
    try:
        data = json.loads(value)
    except json.JSONDecodeError as e:
        logging.warning(f"Stored schedules are not valid JSON: {e}")
        return []
    if not isinstance(data, list):
        return []

    records: list[Schedule | Any] = []
    for item in data:
        try:
            records.append(Schedule.model_validate(item))
        except ValidationError as e:
            logging.warning(f"Keeping malformed schedule record as stored: {e}")
            records.append(item)
    return records


def valid_schedules(records: list[Schedule | Any]) -> list[Schedule]:
    return [r for r in records if isinstance(r, Schedule)]


def parse_schedules(value: str | None) -> list[Schedule]:
    """Decode a stored collection, leaving out records that do not validate."""
    return valid_schedules(parse_records(value))


def dump_schedules(records: list[Schedule | Any]) -> str:
    return json.dumps([r.to_dict() if isinstance(r, Schedule) else r for r in records])


def record_id(record: Schedule | Any) -> Any:
    """Id of a parsed or raw record, None when it has none."""
    if isinstance(record, Schedule):
        return record.id
    if isinstance(record, dict):
        return record.get("id")
    return None


class ScheduleStore:
    """Schedule collection stored under one key of a StateStore."""

    def __init__(
        self, state: StateStore, key: str = DEFAULT_STATE_KEY, max_conflict_retries: int = 3
    ) -> None:
        self.state = state
        self.key = key
        self.max_conflict_retries = max_conflict_retries

    def load(self) -> tuple[list[Schedule | Any], str | None]:
        """Return every stored record and the version it was read at.

        Malformed records stay in the list as raw values so that writing the
        list back preserves them.
        """
        stored = self.state.get(self.key)
        if stored is None:
            return [], None
        return parse_records(stored.value), stored.version

    def list_schedules(self) -> list[Schedule]:
        records, _ = self.load()
        return valid_schedules(records)

    def write(
        self, records: list[Schedule | Any], expected_version: str | None = None
    ) -> str | None:
        return self.state.set(self.key, dump_schedules(records), expected_version)

    def update(self, mutate: Callable[[list[Schedule | Any]], T]) -> T:
        """Apply ``mutate`` to the stored records and write them back.

        ``mutate`` changes the list in place and returns a result for the
        caller. On a version conflict the collection is reloaded and
        ``mutate`` runs again on the fresh copy.

        Raises:
            StateConflictError: if every attempt lost the race.
            StateStoreError: on any other backend failure.
        """
        attempt = 0
        while True:
            records, version = self.load()
            result = mutate(records)
            try:
                self.write(records, expected_version=version)
                return result
            except StateConflictError:
                attempt += 1
                if attempt > self.max_conflict_retries:
                    raise
                logging.warning(
                    f"Schedules changed while writing, retrying ({attempt}/{self.max_conflict_retries})"
                )

    def save(self, schedule: Schedule) -> Schedule:
        """Insert a schedule, or replace the record with the same id in place."""

        def _save(records: list[Schedule | Any]) -> Schedule:
            for i, existing in enumerate(records):
                if record_id(existing) == schedule.id:
                    records[i] = schedule
                    logging.info(f"Updated schedule: {schedule.id}")
                    break
            else:
                records.append(schedule)
                logging.info(f"Added new schedule: {schedule.id}")
            return schedule

        return self.update(_save)

    def delete(self, schedule_id: str) -> None:
        """Remove a record by id, malformed or not.

        Raises:
            ScheduleNotFoundError: if no record has that id.
        """
        # Checked before writing so a missing id costs no write
        records, _ = self.load()
        if not any(record_id(r) == schedule_id for r in records):
            raise ScheduleNotFoundError(schedule_id)

        def _delete(records: list[Schedule | Any]) -> None:
            for i, existing in enumerate(records):
                if record_id(existing) == schedule_id:
                    del records[i]
                    logging.info(f"Deleted schedule: {schedule_id}")
                    return
            raise ScheduleNotFoundError(schedule_id)

        self.update(_delete)


def _as_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def is_due(schedule: Schedule, now: datetime) -> bool:
    """Whether a sweep should run this schedule at ``now``."""
    if not schedule.enabled or schedule.interval_minutes <= 0:
        return False
    if schedule.last_run is None:
        return True
    elapsed_minutes = (_as_utc(now) - _as_utc(schedule.last_run)).total_seconds() / 60
    return elapsed_minutes >= schedule.interval_minutes


def select_due_schedules(
    schedules: list[Schedule],
    schedule_id: str | None = None,
    force: bool = False,
    now: datetime | None = None,
) -> list[Schedule]:
    """Pick the schedules to run.

    With ``schedule_id`` exactly that schedule is picked, whatever its
    interval; a disabled one needs ``force``. Without it every enabled
    schedule whose interval has elapsed is picked, in collection order.

    Raises:
        ScheduleNotFoundError: targeted id is not in the collection.
        ScheduleDisabledError: targeted schedule is disabled and not forced.
    """
    if schedule_id:
        for schedule in schedules:
            if schedule.id == schedule_id:
                if not schedule.enabled and not force:
                    raise ScheduleDisabledError(schedule)
                return [schedule]
        raise ScheduleNotFoundError(schedule_id)

    now = now or datetime.now(timezone.utc)
    return [s for s in schedules if is_due(s, now)]
