"""Turn traceroute results into log records and ship them to a log service."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

import requests

from .config import LogsConfig
from .models import TracerouteResult

LOG_SOURCE = "traceroute-app"
APP_NAME = "traceroute"


class InvalidResultError(ValueError):
    """Traceroute result has no hop list to format."""

    pass


class LogIngestError(Exception):
    """Log service rejected or never received the records."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def flatten_dict(dd: Any, separator: str = "_", prefix: str = "") -> dict[str, Any]:
    """Flatten nested dictionary using separator."""
    return (
        {
            prefix + separator + k if prefix else k: v
            for kk, vv in dd.items()
            for k, v in flatten_dict(vv, separator, kk).items()
        }
        if isinstance(dd, dict)
        else {prefix: dd}
    )


def format_log_records(
    result: TracerouteResult | dict[str, Any],
    schedule_name: str | None = None,
    schedule_id: str | None = None,
    execution_id: str | None = None,
    source: str = LOG_SOURCE,
    app_name: str = APP_NAME,
) -> list[dict[str, Any]]:
    """Build one structured log record per hop.

    All records share the timestamp taken when formatting starts.

    Args:
        result: TracerouteResult, or its JSON form.
        schedule_name: display name of the schedule that produced the run.
        schedule_id: id of that schedule.
        execution_id: id tying together the records of one run.

    Returns:
        list of flat dicts, in hop order.

    Raises:
        InvalidResultError: if the result has no ``hops`` list.

    Example:
        >>> records = format_log_records(result, schedule_name="DNS check")
        >>> records[0]["traceroute.hop"]
        1
    """
    if isinstance(result, dict):
        if not isinstance(result.get("hops"), list):
            raise InvalidResultError("Invalid traceroute result provided")
        try:
            result = TracerouteResult.model_validate(result)
        except ValueError as e:
            raise InvalidResultError(f"Invalid traceroute result provided: {e}") from e

    timestamp = datetime.now(timezone.utc).isoformat()
    records = []
    for hop in result.hops:
        hostname = hop.hostname or "unknown"
        avg_rtt = sum(hop.rtt) / len(hop.rtt)
        record: dict[str, Any] = {
            "timestamp": timestamp,
            "log.source": source,
            "app.name": app_name,
            "severity": "INFO",
            "traceroute.target": result.target,
            "traceroute.hop": hop.hop,
            "traceroute.ip": hop.ip,
            "traceroute.hostname": hostname,
            "traceroute.status": result.status,
            "traceroute.is_public": hop.is_public,
            "traceroute.provenance": hop.provenance,
            "traceroute.rtt.avg": avg_rtt,
            "traceroute.rtt.min": min(hop.rtt),
            "traceroute.rtt.max": max(hop.rtt),
        }
        content = (
            f"Traceroute hop {hop.hop} to {result.target}: {hop.ip} ({hostname})"
            f" - Avg RTT: {avg_rtt:.2f}ms"
        )

        if schedule_id:
            record["schedule.id"] = schedule_id
        if schedule_name:
            record["schedule.name"] = schedule_name
        if execution_id:
            record["execution.id"] = execution_id

        if hop.location:
            record.update(
                flatten_dict(
                    {"traceroute": {"location": hop.location.to_dict()}}, separator="."
                )
            )
            content += f" - Location: {hop.location.city}, {hop.location.country}"

        record["content"] = content
        records.append(record)
    return records


class LogIngestClient:
    """Interface of the log ingestion collaborator."""

    def submit(self, records: list[dict[str, Any]]) -> None:
        raise NotImplementedError


class MemoryLogIngestClient(LogIngestClient):
    """Keeps submitted records in memory, for dry runs and tests."""

    def __init__(self) -> None:
        self.records: list[dict[str, Any]] = []

    def submit(self, records: list[dict[str, Any]]) -> None:
        self.records.extend(records)


class HttpLogIngestClient(LogIngestClient):
    """Posts records as a JSON array to a log ingest endpoint."""

    def __init__(self, url: str, api_token: str | None = None, timeout: float = 10.0) -> None:
        self.url = url
        self.timeout = timeout
        self.headers = {"Content-Type": "application/json; charset=utf-8"}
        if api_token:
            self.headers["Authorization"] = f"Api-Token {api_token}"

    def submit(self, records: list[dict[str, Any]]) -> None:
        try:
            r = requests.post(
                self.url, json=records, headers=self.headers, timeout=self.timeout
            )
        except requests.RequestException as e:
            raise LogIngestError(f"Log ingest request failed: {e}") from e
        if not 200 <= r.status_code < 300:
            raise LogIngestError(
                f"Log ingest returned status {r.status_code}: {r.text}", r.status_code
            )
        logging.info(f"Ingested {len(records)} log records")


def create_log_client(config: LogsConfig) -> LogIngestClient:
    """HTTP client when an ingest URL is configured, in-memory sink otherwise."""
    if config.enabled and config.url:
        return HttpLogIngestClient(config.url, config.api_token, config.timeout)
    logging.info("No log ingest URL configured, keeping log records in memory")
    return MemoryLogIngestClient()
