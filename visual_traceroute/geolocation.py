"""IP classification and geolocation through public lookup services.

Providers are tried strictly in order and the first recognized answer wins.
Private, reserved and malformed addresses never reach the network.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from multiprocessing.pool import ThreadPool
from typing import Any

import requests

from .config import VisualTracerouteConfig
from .models import GeoLocation

IPAPI_FIELDS = "status,message,country,countryCode,region,regionName,city,lat,lon,isp,org,as,query"


def is_private_ip(ip: str | None) -> bool:
    """Return True for private, reserved, wildcard or malformed IPv4 strings.

    Malformed input counts as private so that no lookup is attempted on it.

    Example:
        >>> is_private_ip("192.168.1.1")
        True
        >>> is_private_ip("8.8.8.8")
        False
    """
    if not ip or ip == "*":
        return True

    parts = ip.split(".")
    if len(parts) != 4:
        return True
    try:
        octets = [int(p) for p in parts]
    except ValueError:
        return True

    first, second = octets[0], octets[1]
    match first:
        case 10 | 127:
            return True
        case 172 if 16 <= second <= 31:
            return True
        case 192 if second == 168:
            return True
        case 169 if second == 254:
            return True
    return False


def _get_json(config: VisualTracerouteConfig, url: str, **kwargs: Any) -> dict[str, Any] | None:
    r = requests.get(url, timeout=config.geolocation.timeout, **kwargs)
    if r.status_code != 200:
        logging.warning(f"{url} returned status {r.status_code}")
        return None
    data = r.json()
    return data if isinstance(data, dict) else None


def ip2location_api(config: VisualTracerouteConfig, ip: str) -> GeoLocation | None:
    """Look up an IP with `IP2Location.io <https://www.ip2location.io/>`_.

    Free tier, no key, 1000 queries/day. A response counts only when it has
    no ``error`` member and carries a country code.
    """
    data = _get_json(config, "https://api.ip2location.io/", params={"ip": ip})
    if not data or data.get("error") or not data.get("country_code"):
        return None
    return GeoLocation(
        lat=data.get("latitude") or 0.0,
        lon=data.get("longitude") or 0.0,
        city=data.get("city_name") or "Unknown",
        region=data.get("region_name") or "Unknown",
        country=data.get("country_name") or "Unknown",
        country_code=data.get("country_code") or "XX",
        isp=data.get("isp") or "Unknown ISP",
        org=data.get("as") or "Unknown",
        as_=str(data.get("asn") or "Unknown"),
        query=ip,
    )


def ipapi_api(config: VisualTracerouteConfig, ip: str) -> GeoLocation | None:
    """Look up an IP with `ip-api.com <https://ip-api.com/>`_ (free tier, HTTP only)."""
    data = _get_json(
        config, f"http://ip-api.com/json/{ip}", params={"fields": IPAPI_FIELDS}
    )
    if not data or data.get("status") == "fail":
        return None
    return GeoLocation(
        lat=data.get("lat") or 0.0,
        lon=data.get("lon") or 0.0,
        city=data.get("city") or "Unknown",
        region=data.get("regionName") or "Unknown",
        country=data.get("country") or "Unknown",
        country_code=data.get("countryCode") or "XX",
        isp=data.get("isp") or "Unknown ISP",
        org=data.get("org") or "Unknown",
        as_=data.get("as") or "Unknown",
        query=data.get("query") or ip,
    )


def ipwhois_api(config: VisualTracerouteConfig, ip: str) -> GeoLocation | None:
    """Look up an IP with `ipwhois.app <https://ipwhois.io/>`_."""
    data = _get_json(config, f"https://ipwhois.app/json/{ip}")
    if not data or not data.get("success"):
        return None
    return GeoLocation(
        lat=data.get("latitude") or 0.0,
        lon=data.get("longitude") or 0.0,
        city=data.get("city") or "Unknown",
        region=data.get("region") or "Unknown",
        country=data.get("country") or "Unknown",
        country_code=data.get("country_code") or "XX",
        isp=data.get("isp") or "Unknown ISP",
        org=data.get("org") or "Unknown",
        as_=str(data.get("asn") or "Unknown"),
        query=ip,
    )


PROVIDERS: dict[str, Callable[[VisualTracerouteConfig, str], GeoLocation | None]] = {
    "ip2location": ip2location_api,
    "ipapi": ipapi_api,
    "ipwhois": ipwhois_api,
}


def geolocate_ip(config: VisualTracerouteConfig, ip: str) -> GeoLocation | None:
    """Get the location of a public IP address.

    Args:
        config: Typed configuration object.
        ip: an IPv4 address

    Returns:
        The first provider's normalized answer, or None when the address is
        private or every provider failed.

    Example:
        geolocate_ip(config, '8.8.8.8')
    """
    if not config.geolocation.enabled or is_private_ip(ip):
        return None

    for name in config.geolocation.providers:
        try:
            location = PROVIDERS[name](config, ip)
        except (requests.RequestException, ValueError) as e:
            logging.warning(f"geolocate_ip({ip}): {name} failed: {e}")
            continue
        if location is not None:
            return location
        logging.info(f"geolocate_ip({ip}): {name} had no answer")

    logging.warning(f"geolocate_ip({ip}): all geolocation providers failed")
    return None


def geolocate_ips(
    config: VisualTracerouteConfig, ips: Sequence[str]
) -> list[GeoLocation | None]:
    """Geolocate several addresses, keeping input order.

    Runs one lookup at a time unless ``geolocation.max_workers`` is above 1,
    in which case lookups are spread over a bounded thread pool.
    """
    workers = min(config.geolocation.max_workers, len(ips))
    if workers <= 1:
        return [geolocate_ip(config, ip) for ip in ips]

    with ThreadPool(processes=workers) as pool:
        return pool.map(lambda ip: geolocate_ip(config, ip), ips)
