"""
IP anonymization and coarse geolocation for webhook payloads.

The raw client IP never leaves this module; payloads carry the masked
address plus whatever city/region/country the lookup returns.
"""
import ipaddress
from typing import Any, Mapping, Optional

import httpx

from mvl_leads.logging_config import get_logger
from mvl_leads.services.spam_guard import CLIENT_IP_HEADERS

log = get_logger(component="ip_anonymizer")

GEOLOCATION_URL = "https://ipapi.co/{ip}/json/"
GEOLOCATION_TIMEOUT = 3.0

# Extra headers consulted for geolocation only
EXTENDED_IP_HEADERS = CLIENT_IP_HEADERS + ("x-forwarded", "forwarded-for", "forwarded")

LOOPBACK = ("::1", "127.0.0.1")


def anonymize_ip(ip: Optional[str]) -> str:
    """
    Mask the host part of an address.

    IPv4 keeps the first three octets, IPv6 keeps the first four
    groups. Loopback and empty values become "localhost".
    """
    if not ip or ip in LOOPBACK:
        return "localhost"

    if ":" in ip:
        parts = ip.split(":")
        if len(parts) >= 4:
            return ":".join(parts[:4]) + ":XXXX:XXXX:XXXX:XXXX"
        return "XXXX:XXXX:XXXX:XXXX:XXXX:XXXX:XXXX:XXXX"

    parts = ip.split(".")
    if len(parts) == 4:
        return f"{parts[0]}.{parts[1]}.{parts[2]}.XXX"
    return "XXX.XXX.XXX.XXX"


def is_private_ip(ip: str) -> bool:
    """True for private, loopback, link-local and unparseable addresses."""
    try:
        address = ipaddress.ip_address(ip)
    except ValueError:
        return True
    return address.is_private or address.is_loopback or address.is_link_local


def extract_client_ip(headers: Mapping[str, str]) -> str:
    for header in EXTENDED_IP_HEADERS:
        value = headers.get(header)
        if value:
            ip = value.split(",")[0].strip()
            if ip:
                return ip
    return "unknown"


def determine_accuracy(data: dict[str, Any]) -> str:
    if data.get("city") and data.get("latitude") and data.get("longitude"):
        return "city"
    if data.get("region"):
        return "region"
    return "country"


class IPAnonymizer:
    """Builds the `geographicData` block of the contact webhook payload."""

    def __init__(self, http_client: httpx.AsyncClient, geolocation_enabled: bool = True):
        self.http_client = http_client
        self.geolocation_enabled = geolocation_enabled

    async def get_geographic_data(self, ip: str) -> Optional[dict[str, Any]]:
        """
        Look up coarse location for a public IP.

        Returns:
            Dict of country/region/city/timezone/latitude/longitude/accuracy,
            or None when skipped or the lookup fails.
        """
        if not self.geolocation_enabled or not ip or ip in LOOPBACK or is_private_ip(ip):
            return None

        try:
            response = await self.http_client.get(
                GEOLOCATION_URL.format(ip=ip), timeout=GEOLOCATION_TIMEOUT
            )
        except httpx.HTTPError as e:
            log.warning("ip_geolocation_error", error=str(e))
            return None

        if not response.is_success:
            log.warning("ip_geolocation_failed", status_code=response.status_code)
            return None

        try:
            data = response.json()
        except ValueError:
            log.warning("ip_geolocation_invalid_response")
            return None

        return {
            "country": data.get("country_name") or None,
            "region": data.get("region") or None,
            "city": data.get("city") or None,
            "timezone": data.get("timezone") or None,
            "latitude": data.get("latitude") or None,
            "longitude": data.get("longitude") or None,
            "accuracy": determine_accuracy(data),
        }

    async def process_ip_for_webhook(self, headers: Mapping[str, str], timezone: str) -> dict[str, Any]:
        """Geolocate, then anonymize, the requesting client's IP."""
        client_ip = extract_client_ip(headers)
        geo = await self.get_geographic_data(client_ip) or {}

        result: dict[str, Any] = {
            "anonymizedIp": anonymize_ip(client_ip),
            "timezone": geo.get("timezone") or timezone,
        }
        for key in ("country", "region", "city"):
            if geo.get(key):
                result[key] = geo[key]
        if geo.get("latitude") and geo.get("longitude"):
            result["estimatedLocation"] = {
                "latitude": geo["latitude"],
                "longitude": geo["longitude"],
                "accuracy": geo.get("accuracy") or "city",
            }
        return result
