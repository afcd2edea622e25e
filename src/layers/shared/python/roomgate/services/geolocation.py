"""Best-effort IP geolocation.

Lookups are advisory: any failure returns None and the country check is
skipped rather than failing the access attempt.
"""

import ipaddress
import os

import httpx
import structlog

from roomgate.models.access import Geolocation

logger = structlog.get_logger()

DEFAULT_GEOLOCATION_URL = "http://ip-api.com/json/{ip}"
LOOKUP_FIELDS = "status,message,country,countryCode,regionName,city,timezone,isp"


def is_public_ip(ip: str) -> bool:
    """Check whether an IP is worth looking up (parseable and globally routable)."""
    try:
        return ipaddress.ip_address(ip).is_global
    except ValueError:
        return False


class GeolocationClient:
    """Client for an ip-api.com compatible lookup endpoint."""

    def __init__(
        self,
        url_template: str | None = None,
        timeout: float | None = None,
        enabled: bool | None = None,
    ):
        self.url_template = url_template or os.environ.get("GEOLOCATION_URL", DEFAULT_GEOLOCATION_URL)
        self.timeout = timeout or float(os.environ.get("GEOLOCATION_TIMEOUT_SECONDS", "3"))
        if enabled is None:
            enabled = os.environ.get("GEOLOCATION_ENABLED", "true").lower() == "true"
        self.enabled = enabled

    def lookup(self, ip: str) -> Geolocation | None:
        """Resolve an IP to its country.

        Args:
            ip: Client IP address.

        Returns:
            Geolocation, or None if the lookup is disabled, skipped or fails.
        """
        if not self.enabled or not is_public_ip(ip):
            return None

        try:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.get(
                    self.url_template.format(ip=ip),
                    params={"fields": LOOKUP_FIELDS},
                )
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Geolocation lookup failed", error=str(e))
            return None

        if not isinstance(data, dict):
            logger.warning("Geolocation response was not an object")
            return None
        if data.get("status") != "success":
            logger.warning("Geolocation lookup unsuccessful", message=data.get("message"))
            return None

        return Geolocation(
            ip=ip,
            country=data.get("country"),
            country_code=data.get("countryCode"),
            region=data.get("regionName"),
            city=data.get("city"),
            timezone=data.get("timezone"),
            isp=data.get("isp"),
        )
