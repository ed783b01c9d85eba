"""天气查询能力（wttr.in）。"""

from typing import Any, Dict

import httpx

from gemini_relay.domain.exceptions import CapabilityError
from .definitions import CapabilityContext, CapabilityDeclaration, CapabilityFunc, CapabilityParam


WEATHER_DECLARATION = CapabilityDeclaration(
    name="getCurrentWeather",
    description="Get the current weather conditions for a city.",
    params={
        "city": CapabilityParam(
            name="city",
            description="City name, e.g. Jakarta or San Francisco",
            required=True,
        ),
    },
)


def _first_value(items: Any) -> str:
    if isinstance(items, list) and items and isinstance(items[0], dict):
        return str(items[0].get("value") or "")
    return ""


def make_weather_capability(cfg) -> CapabilityFunc:
    def _run(args: Dict[str, Any], context: CapabilityContext) -> Dict[str, Any]:
        city = str(args.get("city") or "").strip()
        if not city:
            return {"error": "city is required"}
        try:
            with httpx.Client(timeout=cfg.http_timeout, trust_env=False) as client:
                resp = client.get(f"{cfg.weather_base_url}/{city}", params={"format": "j1"})
        except httpx.RequestError as e:
            raise CapabilityError(f"Weather service unreachable: {e}")
        if resp.status_code >= 400:
            raise CapabilityError(f"Weather service returned {resp.status_code} for {city!r}")
        try:
            data = resp.json()
        except ValueError:
            raise CapabilityError(f"Weather service returned an unreadable answer for {city!r}")
        current = (data.get("current_condition") or [None])[0]
        if not isinstance(current, dict):
            raise CapabilityError(f"No weather data for {city!r}")
        return {
            "city": city,
            "temperature_c": current.get("temp_C"),
            "feels_like_c": current.get("FeelsLikeC"),
            "humidity": current.get("humidity"),
            "description": _first_value(current.get("weatherDesc")),
            "wind_kmph": current.get("windspeedKmph"),
            "observed_at": current.get("localObsDateTime") or current.get("observation_time"),
        }

    return _run
