"""Postal code geocoding: providers, cache and region centroids."""

from __future__ import annotations

import asyncio
import logging
import math
import re
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from driver_payroll.errors import ExternalServiceError

logger = logging.getLogger(__name__)

EARTH_RADIUS_MILES = 3959.0

_NON_DIGITS = re.compile(r"\D")
_ADDRESS_ZIP = re.compile(r"\b(\d{5})(?:-\d{4})?\b")


@dataclass(frozen=True)
class GeoPoint:
    latitude: float
    longitude: float


class GeocodeCache(Protocol):
    """Storage for resolved postal code coordinates."""

    def get(self, key: str) -> GeoPoint | None: ...

    def put(self, key: str, point: GeoPoint) -> None: ...


class InMemoryGeocodeCache:
    """Dict-backed cache owned by a single resolver.

    Concurrent puts for the same key write the same value, so last writer
    wins without harm.
    """

    def __init__(self) -> None:
        self._points: dict[str, GeoPoint] = {}

    def get(self, key: str) -> GeoPoint | None:
        return self._points.get(key)

    def put(self, key: str, point: GeoPoint) -> None:
        self._points[key] = point

    def clear(self) -> None:
        self._points.clear()

    def __len__(self) -> int:
        return len(self._points)

    def stats(self) -> dict[str, Any]:
        return {"size": len(self._points), "keys": sorted(self._points)}


def normalize_zip(value: str | None) -> str | None:
    """Keep digits only and take the first five; None when fewer than five."""
    if not value:
        return None
    digits = _NON_DIGITS.sub("", value)
    if len(digits) < 5:
        return None
    return digits[:5]


def is_valid_zip(value: str | None) -> bool:
    return normalize_zip(value) is not None


def extract_zip_from_address(address: str | None) -> str | None:
    """Return the first 5-digit zip found in a free-form address."""
    if not address:
        return None
    match = _ADDRESS_ZIP.search(address)
    return match.group(1) if match else None


# (low, high, centroid) by leading zip range
REGION_CENTROIDS: tuple[tuple[int, int, GeoPoint], ...] = (
    (10000, 19999, GeoPoint(42.0, -71.0)),   # Northeast
    (20000, 29999, GeoPoint(35.0, -80.0)),   # Mid-Atlantic / Southeast
    (30000, 39999, GeoPoint(33.0, -90.0)),   # South
    (40000, 49999, GeoPoint(42.0, -85.0)),   # Great Lakes
    (50000, 59999, GeoPoint(41.0, -95.0)),   # Upper Midwest
    (60000, 69999, GeoPoint(35.0, -100.0)),  # Central Plains
    (70000, 79999, GeoPoint(32.0, -95.0)),   # South Central
    (80000, 89999, GeoPoint(40.0, -105.0)),  # Mountain
    (90000, 99999, GeoPoint(37.0, -120.0)),  # Pacific
)
DEFAULT_CENTROID = GeoPoint(39.0, -98.0)


def region_centroid(zip_code: str) -> GeoPoint:
    """Coarse coordinates for a normalized zip from its numeric range."""
    number = int(zip_code)
    for low, high, point in REGION_CENTROIDS:
        if low <= number <= high:
            return point
    return DEFAULT_CENTROID


def haversine_miles(a: GeoPoint, b: GeoPoint) -> float:
    """Great-circle distance in miles."""
    lat1 = math.radians(a.latitude)
    lat2 = math.radians(b.latitude)
    d_lat = lat2 - lat1
    d_lng = math.radians(b.longitude - a.longitude)
    h = math.sin(d_lat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(d_lng / 2) ** 2
    return 2 * EARTH_RADIUS_MILES * math.asin(math.sqrt(h))


class HttpGeocodingProvider:
    """A JSON-over-HTTP geocoding provider keyed by zip code."""

    name = "http"
    url_template = ""

    def parse(self, payload: Any) -> GeoPoint:
        raise NotImplementedError

    async def geocode(
        self, client: httpx.AsyncClient, zip_code: str, timeout: float
    ) -> GeoPoint:
        """Resolve one zip, raising ExternalServiceError on any failure."""
        url = self.url_template.format(zip=zip_code)
        try:
            response = await asyncio.wait_for(client.get(url, timeout=timeout), timeout)
            response.raise_for_status()
            return self.parse(response.json())
        except asyncio.TimeoutError as exc:
            raise ExternalServiceError(self.name, f"timed out after {timeout}s") from exc
        except httpx.HTTPError as exc:
            raise ExternalServiceError(self.name, str(exc) or type(exc).__name__) from exc
        except (KeyError, IndexError, TypeError, ValueError) as exc:
            raise ExternalServiceError(self.name, f"unexpected payload for {zip_code}") from exc


class ZippopotamProvider(HttpGeocodingProvider):
    name = "zippopotam"
    url_template = "https://api.zippopotam.us/us/{zip}"

    def parse(self, payload: Any) -> GeoPoint:
        place = payload["places"][0]
        return GeoPoint(float(place["latitude"]), float(place["longitude"]))


class PostalCodesProvider(HttpGeocodingProvider):
    name = "postal-codes"
    url_template = "https://postal-codes.io/api/v1/postal-code/{zip}"

    def parse(self, payload: Any) -> GeoPoint:
        return GeoPoint(float(payload["latitude"]), float(payload["longitude"]))


def default_providers() -> list[HttpGeocodingProvider]:
    return [ZippopotamProvider(), PostalCodesProvider()]
