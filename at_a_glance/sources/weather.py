"""Current weather conditions from OpenWeatherMap.

Never raises: a missing key or a failed request maps to placeholder values
("--" temperature with an explanatory condition) so the arbiter's weather
fallback always has something to show.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Union

import requests
from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)

OPENWEATHER_URL = "https://api.openweathermap.org/data/2.5/weather"
IP_LOCATION_URL = "http://ip-api.com/json/?fields=city,regionName,countryCode"


@dataclass(frozen=True)
class Weather:
    temp: Union[int, str] = "--"
    condition: str = "Unknown"
    description: str = ""
    humidity: Optional[int] = None
    wind_speed: Optional[int] = None


NO_KEY_WEATHER = Weather(temp="--", condition="No API Key", description="Store an OpenWeather API key to view weather")


def error_weather(description: str = "Weather service unavailable") -> Weather:
    return Weather(temp="--", condition="Error", description=description)


class _Main(BaseModel):
    temp: float
    humidity: Optional[int] = None


class _Condition(BaseModel):
    main: str
    description: str = ""


class _Wind(BaseModel):
    speed: float = 0.0


class _WeatherResponse(BaseModel):
    main: _Main
    weather: List[_Condition] = Field(min_length=1)
    wind: _Wind = Field(default_factory=_Wind)


def detect_location(default: str, timeout: float = 5.0) -> str:
    """Guess "City,Region,CC" from the public IP, falling back to ``default``."""
    try:
        resp = requests.get(IP_LOCATION_URL, timeout=timeout)
        if resp.status_code == 200:
            data = resp.json()
            if data.get("city") and data.get("countryCode"):
                city = f"{data['city']},{data.get('regionName', '')},{data['countryCode']}"
                logger.info("Detected location: %s", city)
                return city
    except (requests.RequestException, ValueError) as exc:
        logger.debug("IP location lookup failed: %s", exc)
    return default


def read_weather(
    api_key: Optional[str],
    location: Optional[str] = None,
    default_location: str = "Detroit,MI,US",
    units: str = "imperial",
    timeout: float = 10.0,
) -> Weather:
    if not api_key:
        return NO_KEY_WEATHER

    city = location or detect_location(default_location)
    try:
        resp = requests.get(
            OPENWEATHER_URL,
            params={"q": city, "appid": api_key, "units": units},
            timeout=timeout,
        )
    except requests.RequestException as exc:
        logger.warning("Weather request failed: %s", exc)
        return error_weather()

    if resp.status_code != 200:
        logger.warning("Weather API error: %s", resp.status_code)
        return error_weather(f"API Error: {resp.status_code}")

    try:
        data = _WeatherResponse.model_validate(resp.json())
    except (ValidationError, ValueError) as exc:
        logger.warning("Malformed weather payload: %s", exc)
        return error_weather("Malformed weather response")

    condition = data.weather[0]
    return Weather(
        temp=round(data.main.temp),
        condition=condition.main,
        description=condition.description,
        humidity=data.main.humidity,
        wind_speed=round(data.wind.speed),
    )
