"""Distance between two postal codes with a provider fallback chain."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncGenerator, Iterable
from contextlib import asynccontextmanager
from dataclasses import dataclass

import httpx

from driver_payroll.calculators.geocoding import (
    GeocodeCache,
    GeoPoint,
    HttpGeocodingProvider,
    InMemoryGeocodeCache,
    default_providers,
    haversine_miles,
    normalize_zip,
    region_centroid,
)
from driver_payroll.calculators.types import MileageMethod
from driver_payroll.config import get_settings
from driver_payroll.errors import ExternalServiceError

logger = logging.getLogger(__name__)

MIN_ESTIMATED_MILES = 50
MAX_ESTIMATED_MILES = 3000
DEFAULT_ESTIMATED_MILES = 500


@dataclass(frozen=True)
class MileageResult:
    miles: int
    method: MileageMethod
    from_zip: str | None = None
    to_zip: str | None = None


def linear_estimate(from_zip: str | None, to_zip: str | None) -> int:
    """Rough distance from the numeric zip difference, clamped to [50, 3000]."""
    try:
        a = int("".join(ch for ch in (from_zip or "") if ch.isdigit())[:5])
        b = int("".join(ch for ch in (to_zip or "") if ch.isdigit())[:5])
    except ValueError:
        return DEFAULT_ESTIMATED_MILES
    return max(MIN_ESTIMATED_MILES, min(MAX_ESTIMATED_MILES, round(abs(a - b) / 10)))


class MileageResolver:
    """Resolves zip pairs to miles.

    Lookup order per zip: cache, each provider in turn, region centroid.
    The result is CALCULATED only when both points came from a provider or
    the cache. resolve() never raises.
    """

    def __init__(
        self,
        cache: GeocodeCache | None = None,
        providers: list[HttpGeocodingProvider] | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
    ):
        self.cache = cache if cache is not None else InMemoryGeocodeCache()
        self.providers = providers if providers is not None else default_providers()
        self.timeout = timeout if timeout is not None else get_settings().geocode_timeout_seconds
        self._client = client

    @asynccontextmanager
    async def _client_scope(self) -> AsyncGenerator[httpx.AsyncClient, None]:
        if self._client is not None:
            yield self._client
            return
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            yield client

    async def resolve(self, from_zip: str | None, to_zip: str | None) -> MileageResult:
        origin = normalize_zip(from_zip)
        destination = normalize_zip(to_zip)
        if origin is None or destination is None:
            logger.warning(
                "Cannot normalize zip pair %r -> %r, using linear estimate", from_zip, to_zip
            )
            return MileageResult(
                miles=linear_estimate(from_zip, to_zip),
                method=MileageMethod.ESTIMATED,
                from_zip=origin,
                to_zip=destination,
            )

        try:
            async with self._client_scope() as client:
                start, start_exact = await self._coordinates(client, origin)
                end, end_exact = await self._coordinates(client, destination)
        except Exception:
            logger.exception("Mileage lookup failed for %s -> %s", origin, destination)
            return MileageResult(
                miles=linear_estimate(origin, destination),
                method=MileageMethod.ESTIMATED,
                from_zip=origin,
                to_zip=destination,
            )

        method = MileageMethod.CALCULATED if start_exact and end_exact else MileageMethod.ESTIMATED
        return MileageResult(
            miles=round(haversine_miles(start, end)),
            method=method,
            from_zip=origin,
            to_zip=destination,
        )

    async def resolve_many(
        self, routes: Iterable[tuple[str | None, str | None]]
    ) -> list[MileageResult]:
        """Resolve several zip pairs concurrently, preserving order."""
        return list(await asyncio.gather(*(self.resolve(a, b) for a, b in routes)))

    async def _coordinates(
        self, client: httpx.AsyncClient, zip_code: str
    ) -> tuple[GeoPoint, bool]:
        """Return (point, exact) for a normalized zip."""
        cached = self.cache.get(zip_code)
        if cached is not None:
            return cached, True

        for provider in self.providers:
            try:
                point = await provider.geocode(client, zip_code, self.timeout)
            except ExternalServiceError as exc:
                logger.warning("Geocoding %s failed: %s", zip_code, exc)
                continue
            self.cache.put(zip_code, point)
            return point, True

        logger.warning("All geocoding providers failed for %s, using region centroid", zip_code)
        return region_centroid(zip_code), False
