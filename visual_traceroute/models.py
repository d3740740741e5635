"""Pydantic models for schedules, hops and traceroute results.

Attributes are snake_case; the JSON form keeps the camelCase keys used by
the stored schedule collection and the log/UI consumers.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

Provenance = Literal["resolved", "simulated"]


class CamelModel(BaseModel):
    """Base model accepting and emitting camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready dict with camelCase keys and unset optionals dropped."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class Schedule(CamelModel):
    """A persisted recurring traceroute job.

    ``interval_minutes`` is not range-checked here so that a bad record
    written by another client does not make the whole collection unreadable.
    """

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="allow"
    )

    id: str
    name: str = ""
    target: str
    interval_minutes: int
    enabled: bool = True
    last_run: datetime | None = None
    next_run: datetime | None = None
    workflow_id: str | None = None


class GeoLocation(CamelModel):
    """Normalized geolocation provider response.

    Every field is always set: missing coordinates become 0.0 and missing
    text fields get the placeholders below.
    """

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True
    )

    lat: float = 0.0
    lon: float = 0.0
    city: str = "Unknown"
    region: str = "Unknown"
    country: str = "Unknown"
    country_code: str = "XX"
    isp: str = "Unknown ISP"
    org: str = "Unknown"
    as_: str = Field(default="Unknown", alias="as")
    query: str


class TracerouteHop(CamelModel):
    """One simulated relay on the path."""

    hop: int = Field(ge=1)
    ip: str
    hostname: str = ""
    rtt: list[float] = Field(min_length=3, max_length=3)
    is_public: bool
    location: GeoLocation | None = None
    provenance: Provenance = "simulated"

    @field_validator("rtt")
    @classmethod
    def validate_rtt(cls, v: list[float]) -> list[float]:
        """RTT samples are positive milliseconds."""
        if any(sample <= 0 for sample in v):
            raise ValueError("RTT samples must be positive")
        return v


class TracerouteResult(CamelModel):
    """Outcome of one traceroute execution."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True
    )

    target: str
    hops: list[TracerouteHop]
    status: Literal["completed", "error"]
    start_time: int
    end_time: int | None = None
    error: str | None = None
