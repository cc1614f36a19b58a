"""Address geocoding through the Google Geocoding API."""

from typing import Protocol

import httpx

from moai.errors import GeocodingError
from moai.models.common import Location
from moai.utils.logging import get_logger

logger = get_logger(__name__)

GEOCODE_URL = "https://maps.googleapis.com/maps/api/geocode/json"


class Geocoder(Protocol):
    async def geocode(self, address: str) -> Location | None:
        """Resolve an address; None when the address is unknown."""
        ...


class GoogleGeocoder:
    """Geocoder backed by Google's REST API."""

    def __init__(
        self,
        api_key: str,
        client: httpx.AsyncClient,
        region: str = "cl",
    ):
        self.api_key = api_key
        self.client = client
        self.region = region

    async def geocode(self, address: str) -> Location | None:
        try:
            response = await self.client.get(
                GEOCODE_URL,
                params={"address": address, "region": self.region, "key": self.api_key},
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise GeocodingError(f"Geocoding request failed: {e}") from e

        try:
            data = response.json()
            status = data.get("status")
        except (ValueError, AttributeError) as e:
            raise GeocodingError(f"Malformed geocoding response: {e}") from e

        if status == "ZERO_RESULTS":
            logger.info("geocode_no_results", address=address)
            return None

        if status != "OK" or not data.get("results"):
            raise GeocodingError(f"Google Maps API error: {status}")

        try:
            location = data["results"][0]["geometry"]["location"]
            return Location(lat=location["lat"], lng=location["lng"])
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise GeocodingError(f"Malformed geocoding result: {e!r}") from e
