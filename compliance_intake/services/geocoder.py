"""
Best-effort address normalization using the Google Geocoding API.

Any failure (no key, HTTP error, no results) returns the input unchanged;
ingestion never aborts because normalization is unavailable.
"""

import httpx

from compliance_intake.config import settings
from compliance_intake.core.logging import get_logger

log = get_logger(__name__)


class AddressNormalizer:
    """HTTP client for the geocoding service."""

    def __init__(
        self,
        api_key: str | None = None,
        url: str | None = None,
        enabled: bool | None = None,
        timeout: float | None = None,
    ):
        self.api_key = api_key if api_key is not None else settings.google_maps_api_key
        self.url = url or settings.geocode_url
        self.enabled = settings.geocode_enabled if enabled is None else enabled
        self._client = httpx.Client(timeout=timeout or settings.geocode_timeout_seconds)

    def normalize(self, address: str) -> str:
        """Return the formatted address, or `address` on any failure."""
        if not self.enabled or not self.api_key:
            return address

        try:
            response = self._client.get(
                self.url,
                params={
                    "address": address,
                    "key": self.api_key,
                    "components": settings.geocode_region,
                },
            )
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            log.warning("address_normalization_failed", address=address, error=str(e))
            return address

        results = data.get("results") or []
        if data.get("status") != "OK" or not results:
            log.info("address_normalization_no_match", address=address, status=data.get("status"))
            return address

        formatted = results[0].get("formatted_address") or address
        if formatted != address:
            log.debug("address_normalized", address=address, formatted=formatted)
        return formatted

    def close(self) -> None:
        self._client.close()


class PassthroughNormalizer:
    """Normalizer that keeps addresses exactly as extracted."""

    def normalize(self, address: str) -> str:
        return address
