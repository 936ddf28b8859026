"""Geocoder backed by the OpenStreetMap Nominatim search API."""

import time
from typing import Optional

import httpx
from loguru import logger

from importer.config import GeocodingSettings, settings
from importer.geocoding.base import Geocoder, GeocodingError, GeocodingResult
from importer.utils.http import HTTPError, RateLimitError, fetch_with_retry


class NominatimGeocoder(Geocoder):
    """
    Nominatim search client.

    Nominatim's usage policy allows one request per second, so requests
    are spaced by at least ``min_delay_seconds``. After a 429 the next
    request also waits out the provider's ``Retry-After``.
    """

    name = "nominatim"

    def __init__(self, geocoding_settings: Optional[GeocodingSettings] = None):
        geocoding_settings = geocoding_settings or settings.geocoding
        self.base_url = geocoding_settings.base_url
        self.user_agent = geocoding_settings.user_agent
        self.min_delay_seconds = geocoding_settings.min_delay_seconds
        self._last_request: Optional[float] = None
        self._blocked_until: Optional[float] = None

    def _wait_for_slot(self) -> None:
        now = time.monotonic()
        wait = 0.0
        if self._last_request is not None:
            wait = self.min_delay_seconds - (now - self._last_request)
        if self._blocked_until is not None:
            wait = max(wait, self._blocked_until - now)
        if wait > 0:
            time.sleep(wait)

    def geocode(self, address: str) -> GeocodingResult:
        address = (address or "").strip()
        if not address:
            raise GeocodingError("Empty address")

        self._wait_for_slot()
        try:
            response = fetch_with_retry(
                self.base_url,
                headers={"User-Agent": self.user_agent},
                params={"q": address, "format": "json", "limit": 1, "addressdetails": 0},
            )
        except RateLimitError as e:
            self._blocked_until = time.monotonic() + e.retry_after
            logger.warning(f"Nominatim rate limit hit, pausing {e.retry_after:g}s")
            raise GeocodingError(f"Nominatim rate limited the request for '{address}'") from e
        except (HTTPError, httpx.HTTPError) as e:
            raise GeocodingError(f"Nominatim request failed for '{address}': {e}") from e
        finally:
            self._last_request = time.monotonic()

        try:
            hits = response.json()
        except ValueError as e:
            raise GeocodingError(f"Invalid Nominatim response for '{address}'") from e

        if not hits:
            raise GeocodingError(f"No results for '{address}'")

        hit = hits[0]
        try:
            latitude = float(hit["lat"])
            longitude = float(hit["lon"])
        except (KeyError, TypeError, ValueError) as e:
            raise GeocodingError(f"Malformed Nominatim result for '{address}'") from e

        try:
            confidence = min(1.0, max(0.0, float(hit["importance"])))
        except (KeyError, TypeError, ValueError):
            confidence = 0.5

        logger.debug(f"Geocoded '{address}' -> ({latitude}, {longitude})")
        return GeocodingResult(
            latitude=latitude,
            longitude=longitude,
            confidence=confidence,
            normalized_address=hit.get("display_name"),
            provider=self.name,
        )
