"""Tests for mileage resolution and its fallback chain."""

import httpx
import pytest

from driver_payroll.calculators.geocoding import (
    GeoPoint,
    InMemoryGeocodeCache,
    PostalCodesProvider,
    ZippopotamProvider,
    haversine_miles,
    region_centroid,
)
from driver_payroll.calculators.mileage import MileageResolver, linear_estimate
from driver_payroll.calculators.types import MileageMethod

DALLAS = GeoPoint(32.7767, -96.7970)
ATLANTA = GeoPoint(33.7490, -84.3880)


class RecordingCache:
    """Cache fake that records every write."""

    def __init__(self, points=None):
        self.points = dict(points or {})
        self.puts = []

    def get(self, key):
        return self.points.get(key)

    def put(self, key, point):
        self.puts.append(key)
        self.points[key] = point


def zippopotam_handler(points):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host != "api.zippopotam.us":
            return httpx.Response(404)
        zip_code = request.url.path.rsplit("/", 1)[-1]
        point = points.get(zip_code)
        if point is None:
            return httpx.Response(404)
        return httpx.Response(
            200,
            json={"places": [{"latitude": str(point.latitude), "longitude": str(point.longitude)}]},
        )

    return handler


class TestLinearEstimate:
    def test_zip_difference_over_ten(self):
        assert linear_estimate("75201", "77001") == 180

    def test_clamped(self):
        assert linear_estimate("75201", "75202") == 50
        assert linear_estimate("01001", "99501") == 3000

    def test_unparseable_defaults(self):
        assert linear_estimate(None, "abc") == 500


class TestMileageResolver:
    async def test_calculated_when_provider_answers(self):
        cache = RecordingCache()
        transport = httpx.MockTransport(zippopotam_handler({"75201": DALLAS, "30303": ATLANTA}))
        async with httpx.AsyncClient(transport=transport) as client:
            resolver = MileageResolver(cache=cache, client=client, timeout=1.0)
            result = await resolver.resolve("75201", "30303-1234")

        assert result.method == MileageMethod.CALCULATED
        assert result.miles == round(haversine_miles(DALLAS, ATLANTA))
        assert (result.from_zip, result.to_zip) == ("75201", "30303")
        assert cache.puts == ["75201", "30303"]

    async def test_second_provider_used_when_first_fails(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.host == "postal-codes.io":
                return httpx.Response(200, json={"latitude": 32.7767, "longitude": -96.797})
            return httpx.Response(500)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            resolver = MileageResolver(
                providers=[ZippopotamProvider(), PostalCodesProvider()], client=client
            )
            result = await resolver.resolve("75201", "75201")

        assert result.method == MileageMethod.CALCULATED
        assert result.miles == 0

    async def test_cache_hit_skips_providers(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("provider should not be called")

        cache = InMemoryGeocodeCache()
        cache.put("75201", DALLAS)
        cache.put("30303", ATLANTA)
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            result = await MileageResolver(cache=cache, client=client).resolve("75201", "30303")

        assert result.method == MileageMethod.CALCULATED

    async def test_all_providers_unreachable(self):
        """Never raises; falls back to region centroids and says so."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        cache = RecordingCache()
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            resolver = MileageResolver(cache=cache, client=client, timeout=0.5)
            result = await resolver.resolve("75201", "30303")

        expected = round(haversine_miles(region_centroid("75201"), region_centroid("30303")))
        assert result.method == MileageMethod.ESTIMATED
        assert result.miles == expected
        assert cache.puts == []

    async def test_timeouts_fall_back(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            result = await MileageResolver(client=client, timeout=0.1).resolve("75201", "30303")

        assert result.method == MileageMethod.ESTIMATED
        assert result.miles > 0

    async def test_one_side_estimated_marks_result_estimated(self):
        transport = httpx.MockTransport(zippopotam_handler({"75201": DALLAS}))
        async with httpx.AsyncClient(transport=transport) as client:
            resolver = MileageResolver(providers=[ZippopotamProvider()], client=client)
            result = await resolver.resolve("75201", "30303")

        assert result.method == MileageMethod.ESTIMATED

    @pytest.mark.parametrize("from_zip,to_zip", [("12", "75201"), (None, "75201"), ("", "")])
    async def test_invalid_zip_uses_linear_estimate(self, from_zip, to_zip):
        result = await MileageResolver(providers=[]).resolve(from_zip, to_zip)

        assert result.method == MileageMethod.ESTIMATED
        assert result.miles == linear_estimate(from_zip, to_zip)

    async def test_resolve_many_preserves_order(self):
        cache = InMemoryGeocodeCache()
        cache.put("75201", DALLAS)
        cache.put("30303", ATLANTA)
        resolver = MileageResolver(cache=cache, providers=[])

        results = await resolver.resolve_many([("75201", "30303"), ("30303", "30303")])

        assert results[0].miles > 700
        assert results[1].miles == 0
