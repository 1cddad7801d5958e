"""
Weather Client — HTTP client for the OpenWeatherMap current-weather API.

Weather is an external collaborator: predictions continue without it.
Every lookup returns the neutral fallback {20, 50, "neutral"} when the API
key is missing or the call fails for any reason.
"""

import hashlib
from typing import Optional

import httpx
import structlog

from devicepulse.schemas.models import NEUTRAL_WEATHER, WeatherData

logger = structlog.get_logger(__name__)


def _parse_weather(body: dict) -> WeatherData:
    """Map an OpenWeatherMap response to WeatherData."""
    main = body["main"]
    conditions = body.get("weather") or [{}]
    return WeatherData(
        temperature=float(main["temp"]),
        humidity=float(main["humidity"]),
        condition=str(conditions[0].get("main", "neutral")).lower(),
    )


class WeatherClient:
    """
    HTTP client for OpenWeatherMap.

    Pass `transport` to route requests through an httpx transport other
    than the network one.
    """

    def __init__(
        self,
        api_key: str = "",
        base_url: str = "https://api.openweathermap.org",
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout,
            follow_redirects=True,
            transport=self._transport,
        )

    async def lookup(self, lat: float, lon: float) -> WeatherData:
        """Current weather at a coordinate. Never raises."""
        if not self.enabled:
            logger.warning("weather_api_key_missing", fallback=NEUTRAL_WEATHER.condition)
            return NEUTRAL_WEATHER.model_copy()

        params = {
            "lat": round(lat, 4),
            "lon": round(lon, 4),
            "appid": self.api_key,
            "units": "metric",
        }
        try:
            async with self._client() as client:
                resp = await client.get(f"{self.base_url}/data/2.5/weather", params=params)
                resp.raise_for_status()
                weather = _parse_weather(resp.json())
                logger.info(
                    "weather_fetched",
                    condition=weather.condition,
                    temperature=weather.temperature,
                )
                return weather
        except Exception as e:
            logger.warning("weather_unavailable", error=str(e), lat=params["lat"], lon=params["lon"])
            return NEUTRAL_WEATHER.model_copy()


class DeviceLocator:
    """
    Deterministic device coordinates scattered around a fleet centre.

    The same device id always maps to the same point within ±`spread`
    degrees of the centre.
    """

    def __init__(self, latitude: float, longitude: float, spread: float = 1.0):
        self.latitude = latitude
        self.longitude = longitude
        self.spread = spread

    def locate(self, device_id: str) -> tuple[float, float]:
        digest = hashlib.sha256(device_id.encode()).digest()
        lat_offset = int.from_bytes(digest[:4], "big") / 0xFFFFFFFF - 0.5
        lon_offset = int.from_bytes(digest[4:8], "big") / 0xFFFFFFFF - 0.5
        return (
            round(self.latitude + lat_offset * 2 * self.spread, 4),
            round(self.longitude + lon_offset * 2 * self.spread, 4),
        )
