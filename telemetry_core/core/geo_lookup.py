import logging

import httpx

from telemetry_core.config import IPINFO_BASE_URL, IPINFO_TOKEN
from telemetry_core.core.errors import ConfigurationFailure, ProviderFailure

logger = logging.getLogger(__name__)

# provider field -> ip_locations field
FIELD_MAP = {
    "city": "city",
    "region": "region",
    "country": "country",
    "loc": "loc",
    "org": "provider",
}


class GeoLookup:
    """
    One-shot IP geolocation through ipinfo.io.

    No caching and no retry: each lookup is a single GET using the transport's
    default timeout. Provider quirks stay in this class; callers only see
    the raw payload and the mapped ip_locations fields.
    """

    def __init__(self, token=IPINFO_TOKEN, http_client=None, base_url=IPINFO_BASE_URL):
        self.token = token
        self.base_url = base_url.rstrip("/")
        self.http_client = http_client or httpx.Client()

    def require_token(self):
        if not self.token:
            raise ConfigurationFailure("IPINFO_TOKEN is not configured")

    def lookup(self, ip: str) -> dict:
        self.require_token()
        url = f"{self.base_url}/{ip}/json"
        try:
            response = self.http_client.get(url, params={"token": self.token})
            response.raise_for_status()
            geo = response.json()
        except httpx.HTTPStatusError as e:
            raise ProviderFailure(f"ipinfo lookup for {ip} failed with status {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise ProviderFailure(f"ipinfo lookup for {ip} failed: {e}") from e
        except ValueError as e:
            raise ProviderFailure(f"ipinfo returned a non-JSON body for {ip}") from e
        if not isinstance(geo, dict):
            raise ProviderFailure(f"ipinfo returned an unusable payload for {ip}")
        logger.info(f"[✓] ipinfo lookup for {ip}: city={geo.get('city')} country={geo.get('country')}")
        return geo

    @staticmethod
    def to_ip_location(geo) -> dict:
        """Absent or empty provider fields become None (private IPs map to all-None)."""
        geo = geo or {}
        return {field: geo.get(key) or None for key, field in FIELD_MAP.items()}
