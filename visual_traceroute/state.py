"""Key-value application state with optimistic concurrency.

Every stored value carries an opaque version. Writers pass the version they
read as ``expected_version``; a mismatch raises StateConflictError instead of
silently overwriting another writer's update.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import requests

from .config import StateConfig


class StateStoreError(Exception):
    """State service failure, with whatever diagnostics the backend gave."""

    def __init__(
        self, message: str, status_code: int | None = None, body: str | None = None
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body

    def details(self) -> dict[str, Any]:
        return {
            "message": str(self),
            "name": type(self).__name__,
            "statusCode": self.status_code,
            "body": self.body,
        }


class StateConflictError(StateStoreError):
    """The stored value changed since it was read."""

    pass


@dataclass(frozen=True)
class StoredValue:
    value: str
    version: str | None = None


class StateStore:
    """Interface of the key-value state collaborator."""

    def get(self, key: str) -> StoredValue | None:
        raise NotImplementedError

    def set(self, key: str, value: str, expected_version: str | None = None) -> str | None:
        raise NotImplementedError


class MemoryStateStore(StateStore):
    """In-process state, for tests and dry runs."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._data: dict[str, tuple[str, int]] = {}

    def get(self, key: str) -> StoredValue | None:
        with self._lock:
            if key not in self._data:
                return None
            value, version = self._data[key]
            return StoredValue(value, str(version))

    def set(self, key: str, value: str, expected_version: str | None = None) -> str:
        with self._lock:
            current = self._data.get(key)
            current_version = str(current[1]) if current else None
            if expected_version is not None and expected_version != current_version:
                raise StateConflictError(
                    f"State key {key!r} is at version {current_version}, expected {expected_version}"
                )
            version = current[1] + 1 if current else 1
            self._data[key] = (value, version)
            return str(version)


class FileStateStore(StateStore):
    """State kept in a single JSON document on disk.

    Layout: ``{"<key>": {"value": "<string>", "version": <int>}, ...}``.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def _read(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise StateStoreError(f"Failed to read state file {self.path}: {e}") from e
        return data if isinstance(data, dict) else {}

    def get(self, key: str) -> StoredValue | None:
        with self._lock:
            entry = self._read().get(key)
        if not isinstance(entry, dict) or "value" not in entry:
            return None
        return StoredValue(str(entry["value"]), str(entry.get("version", 0)))

    def set(self, key: str, value: str, expected_version: str | None = None) -> str:
        with self._lock:
            data = self._read()
            entry = data.get(key)
            current_version = (
                str(entry.get("version", 0)) if isinstance(entry, dict) else None
            )
            if expected_version is not None and expected_version != current_version:
                raise StateConflictError(
                    f"State key {key!r} is at version {current_version}, expected {expected_version}"
                )
            version = int(current_version) + 1 if current_version is not None else 1
            data[key] = {"value": value, "version": version}
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                tmp = self.path.with_suffix(self.path.suffix + ".tmp")
                with open(tmp, "w", encoding="utf-8") as f:
                    json.dump(data, f, indent=2)
                tmp.replace(self.path)
            except OSError as e:
                raise StateStoreError(f"Failed to write state file {self.path}: {e}") from e
            return str(version)


class HttpStateStore(StateStore):
    """App-state REST service.

    ``GET {url}/{key}`` answers ``{"value": "..."}`` with an ``ETag`` header,
    or 404 when the key was never written. ``PUT {url}/{key}`` stores a new
    value and honours ``If-Match``, answering 412 on a version mismatch.
    """

    def __init__(self, url: str, api_token: str | None = None, timeout: float = 10.0) -> None:
        self.url = url.rstrip("/")
        self.timeout = timeout
        self.headers = {"Accept": "application/json"}
        if api_token:
            self.headers["Authorization"] = f"Api-Token {api_token}"

    def get(self, key: str) -> StoredValue | None:
        try:
            r = requests.get(f"{self.url}/{key}", headers=self.headers, timeout=self.timeout)
        except requests.RequestException as e:
            raise StateStoreError(f"State request failed: {e}") from e

        match r.status_code:
            case 200:
                try:
                    value = r.json().get("value")
                except (ValueError, AttributeError) as e:
                    raise StateStoreError(
                        f"Malformed state response: {e}", r.status_code, r.text
                    ) from e
                if value is None:
                    return None
                return StoredValue(value, r.headers.get("ETag"))
            case 404:
                return None
            case _:
                raise StateStoreError(
                    f"State service returned status {r.status_code}", r.status_code, r.text
                )

    def set(self, key: str, value: str, expected_version: str | None = None) -> str | None:
        headers = dict(self.headers)
        if expected_version is not None:
            headers["If-Match"] = expected_version
        try:
            r = requests.put(
                f"{self.url}/{key}",
                json={"value": value},
                headers=headers,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise StateStoreError(f"State request failed: {e}") from e

        match r.status_code:
            case 200 | 201 | 204:
                return r.headers.get("ETag")
            case 409 | 412:
                raise StateConflictError(
                    f"State key {key!r} was modified concurrently", r.status_code, r.text
                )
            case _:
                raise StateStoreError(
                    f"State service returned status {r.status_code}", r.status_code, r.text
                )


def create_state_store(config: StateConfig) -> StateStore:
    """Build the state backend named in the configuration."""
    match config.backend:
        case "memory":
            return MemoryStateStore()
        case "file":
            return FileStateStore(config.path)
        case "http":
            logging.info(f"Using app-state service at {config.url}")
            return HttpStateStore(config.url, config.api_token, config.timeout)
    raise ValueError(f"Unknown state backend: {config.backend}")
