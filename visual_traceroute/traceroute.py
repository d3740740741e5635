#!/usr/bin/env python

"""Simulated traceroute with DNS-over-HTTPS target resolution.

No packets are sent. Hop count, intermediate addresses and RTTs are
pseudo-random; only the final hop is tied to the real target, resolved
through a public DoH endpoint. Each hop is tagged ``resolved`` or
``simulated`` so consumers can tell real addresses from filler.
"""

from __future__ import annotations

import logging
import random
import re
import time

import requests

from .config import VisualTracerouteConfig
from .geolocation import geolocate_ip, geolocate_ips, is_private_ip
from .models import Provenance, TracerouteHop, TracerouteResult

DOTTED_QUAD = re.compile(r"[0-9]{1,3}\.[0-9]{1,3}\.[0-9]{1,3}\.[0-9]{1,3}")


class ResolutionError(Exception):
    """Target could not be turned into any address."""

    pass


def generate_random_ip() -> str:
    """Return a random public-looking IPv4 address."""
    return ".".join(
        [
            str(random.randint(20, 219)),
            str(random.randint(0, 254)),
            str(random.randint(0, 254)),
            str(random.randint(0, 254)),
        ]
    )


def lookup_hostname(
    config: VisualTracerouteConfig, hostname: str
) -> tuple[str, Provenance]:
    """Resolve a hostname to an IPv4 address and say where it came from.

    Dotted-quad input is returned as is. Names are looked up with an A-record
    query against ``config.dns.url``; when that fails or has no answer a
    random address is returned instead.

    Returns:
        ``(ip, "resolved")`` or ``(random_ip, "simulated")``.

    Example:
        >>> lookup_hostname(config, "1.1.1.1")
        ('1.1.1.1', 'resolved')
    """
    if DOTTED_QUAD.fullmatch(hostname):
        return hostname, "resolved"

    try:
        r = requests.get(
            config.dns.url,
            params={"name": hostname, "type": "A"},
            timeout=config.dns.timeout,
        )
        if r.status_code == 200:
            answers = r.json().get("Answer") or []
            if not isinstance(answers, list):
                answers = []
            for answer in answers:
                # CNAME records come first in the chain
                data = answer.get("data") if isinstance(answer, dict) else None
                if isinstance(data, str) and DOTTED_QUAD.fullmatch(data):
                    return data, "resolved"
            logging.warning(f"lookup_hostname({hostname}): no A record in answer")
        else:
            logging.warning(
                f"lookup_hostname({hostname}): resolver returned status {r.status_code}"
            )
    except (requests.RequestException, ValueError, AttributeError) as e:
        logging.warning(f"lookup_hostname({hostname}): {e}")

    return generate_random_ip(), "simulated"


def resolve_hostname(config: VisualTracerouteConfig, hostname: str) -> str:
    """Resolve a hostname to an IPv4 address, fabricating one if needed."""
    ip, _ = lookup_hostname(config, hostname)
    return ip


def simulate_traceroute(config: VisualTracerouteConfig, target: str) -> TracerouteResult:
    """Build a simulated hop chain to a target.

    Args:
        config: Typed configuration object.
        target: hostname or IPv4 address

    Returns:
        A completed TracerouteResult whose last hop carries the resolved
        target address.

    Raises:
        ResolutionError: if no address at all could be produced for the target.

    Example:
        simulate_traceroute(config, 'example.com')
    """
    start_time = int(time.time() * 1000)
    target_ip, target_provenance = lookup_hostname(config, target)
    if not target_ip:
        raise ResolutionError(f"Could not resolve target hostname: {target}")

    num_hops = random.randint(config.traceroute.min_hops, config.traceroute.max_hops)
    logging.info(f"Tracing {target} ({target_ip}) over {num_hops} simulated hops")

    skeleton = []
    for i in range(1, num_hops + 1):
        last = i == num_hops
        ip = target_ip if last else generate_random_ip()
        base_rtt = 10 + i * 5 + random.random() * 20
        skeleton.append(
            {
                "hop": i,
                "ip": ip,
                "hostname": target if last else f"hop{i}.transit.net",
                "rtt": [base_rtt + random.random() * 10 for _ in range(3)],
                "is_public": not is_private_ip(ip),
                "provenance": target_provenance if last else "simulated",
            }
        )

    ips = [h["ip"] for h in skeleton]
    delay = config.traceroute.hop_delay
    if delay and config.geolocation.enabled and config.geolocation.max_workers <= 1:
        # Pause only between lookups that actually go out to a provider
        locations = []
        looked_up = False
        for ip in ips:
            if is_private_ip(ip):
                locations.append(None)
                continue
            if looked_up:
                time.sleep(delay)
            locations.append(geolocate_ip(config, ip))
            looked_up = True
    else:
        locations = geolocate_ips(config, ips)

    hops = [
        TracerouteHop(location=location, **fields)
        for fields, location in zip(skeleton, locations)
    ]
    return TracerouteResult(
        target=target,
        hops=hops,
        status="completed",
        start_time=start_time,
        end_time=int(time.time() * 1000),
    )


def trace_target(config: VisualTracerouteConfig, target: str) -> TracerouteResult:
    """Run a traceroute for interactive use; failures become an ``error`` result."""
    start_time = int(time.time() * 1000)
    try:
        return simulate_traceroute(config, target)
    except Exception as e:
        logging.error(f"trace_target({target}): {e}")
        return TracerouteResult(
            target=target,
            hops=[],
            status="error",
            start_time=start_time,
            end_time=int(time.time() * 1000),
            error=str(e) or "Unknown error occurred",
        )
