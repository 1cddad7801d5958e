"""
Tests for the weather client fallback behaviour and device locator.
"""

import httpx
import pytest

from devicepulse.services.weather_client import DeviceLocator, WeatherClient

OWM_BODY = {
    "weather": [{"main": "Rain", "description": "light rain"}],
    "main": {"temp": 12.5, "humidity": 88},
}


def _client(handler, api_key="test-key") -> WeatherClient:
    return WeatherClient(
        api_key=api_key,
        base_url="https://weather.test",
        transport=httpx.MockTransport(handler),
    )


class TestLookup:
    @pytest.mark.asyncio
    async def test_parses_response(self):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["url"] = request.url
            return httpx.Response(200, json=OWM_BODY)

        weather = await _client(handler).lookup(52.52, 13.405)

        assert weather.condition == "rain"
        assert weather.temperature == 12.5
        assert weather.humidity == 88.0
        assert captured["url"].path == "/data/2.5/weather"
        assert captured["url"].params["appid"] == "test-key"
        assert captured["url"].params["units"] == "metric"

    @pytest.mark.asyncio
    async def test_missing_key_is_neutral_without_request(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json=OWM_BODY)

        weather = await _client(handler, api_key="").lookup(0.0, 0.0)

        assert weather.condition == "neutral"
        assert (weather.temperature, weather.humidity) == (20.0, 50.0)
        assert calls == []

    @pytest.mark.asyncio
    async def test_server_error_is_neutral(self):
        weather = await _client(lambda r: httpx.Response(500)).lookup(0.0, 0.0)
        assert weather.condition == "neutral"

    @pytest.mark.asyncio
    async def test_malformed_body_is_neutral(self):
        weather = await _client(lambda r: httpx.Response(200, json={"weather": []})).lookup(0.0, 0.0)
        assert weather.condition == "neutral"

    @pytest.mark.asyncio
    async def test_network_error_is_neutral(self):
        def handler(request):
            raise httpx.ConnectError("unreachable", request=request)

        weather = await _client(handler).lookup(0.0, 0.0)
        assert weather.condition == "neutral"


class TestLocator:
    def test_deterministic(self):
        locator = DeviceLocator(52.52, 13.405)
        assert locator.locate("device-1") == locator.locate("device-1")
        assert locator.locate("device-1") != locator.locate("device-2")

    def test_within_spread(self):
        locator = DeviceLocator(10.0, 20.0, spread=0.5)
        for n in range(1, 20):
            lat, lon = locator.locate(f"device-{n}")
            assert 9.5 <= lat <= 10.5
            assert 19.5 <= lon <= 20.5
