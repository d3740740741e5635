"""Visual Traceroute

A Python package for scheduled, geolocated traceroutes:
- Simulated hop chains with DNS-over-HTTPS target resolution
- Hop geolocation through a fallback chain of public lookup services
- Recurring schedules persisted in a key-value state store
- Per-hop structured log records shipped to a log ingestion service
"""

from importlib.metadata import version

__version__ = version("visual_traceroute")

from .config import VisualTracerouteConfig, load_config
from .geolocation import geolocate_ip, geolocate_ips, is_private_ip
from .logs import format_log_records
from .models import GeoLocation, Schedule, TracerouteHop, TracerouteResult
from .orchestrator import run_scheduled_traceroutes
from .schedules import ScheduleStore, select_due_schedules
from .traceroute import resolve_hostname, simulate_traceroute, trace_target
from .visual_traceroute import TracerouteApp

__all__ = [
    "VisualTracerouteConfig",
    "load_config",
    "GeoLocation",
    "Schedule",
    "TracerouteHop",
    "TracerouteResult",
    "is_private_ip",
    "geolocate_ip",
    "geolocate_ips",
    "resolve_hostname",
    "simulate_traceroute",
    "trace_target",
    "ScheduleStore",
    "select_due_schedules",
    "format_log_records",
    "run_scheduled_traceroutes",
    "TracerouteApp",
]
