from __future__ import annotations

import logging
import threading
import time
from typing import Any

import requests
from flask import Blueprint, jsonify

from . import config

logger = logging.getLogger(__name__)

bp = Blueprint("weather", __name__)

CURRENT_FIELDS = "temperature_2m,relative_humidity_2m,weather_code,wind_speed_10m"
DAILY_FIELDS = "weather_code,temperature_2m_max,temperature_2m_min,precipitation_probability_max"
FORECAST_DAYS = 5
WIND_LIMIT_KMH = 20
STORM_CODE = 95

_CACHE: dict[tuple[tuple[str, Any], ...], tuple[float, Any]] = {}
_CACHE_LOCK = threading.Lock()


def weather_label(code: Any) -> str:
    try:
        value = int(code)
    except (TypeError, ValueError):
        return "Variable"
    if value == 0:
        return "Despejado"
    if 1 <= value <= 3:
        return "Parcialmente nublado"
    if 45 <= value <= 48:
        return "Niebla"
    if 51 <= value <= 67:
        return "Lluvia ligera"
    if 71 <= value <= 77:
        return "Nieve"
    if 80 <= value <= 82:
        return "Lluvia"
    if 95 <= value <= 99:
        return "Tormenta"
    return "Variable"


def safety_advisory(wind_speed: Any, code: Any) -> dict[str, Any]:
    try:
        wind = float(wind_speed or 0)
    except (TypeError, ValueError):
        wind = 0.0
    try:
        weather_code = int(code)
    except (TypeError, ValueError):
        weather_code = 0
    if wind > WIND_LIMIT_KMH or weather_code >= STORM_CODE:
        return {"safe": False, "label": "Precaución: Viento/Tormenta"}
    return {"safe": True, "label": "Condiciones Seguras para Alturas"}


def clear_cache() -> None:
    with _CACHE_LOCK:
        _CACHE.clear()


def weather_json_request(params: dict[str, Any]) -> tuple[Any, int]:
    """GET the forecast endpoint, serving repeat calls from the in-process cache."""
    key = tuple(sorted(params.items()))
    now = time.monotonic()
    with _CACHE_LOCK:
        cached = _CACHE.get(key)
        if cached and cached[0] > now:
            return cached[1], 200

    try:
        response = requests.request("GET", config.WEATHER_API_URL, params=params, timeout=config.WEATHER_TIMEOUT_SECONDS)
    except requests.RequestException:
        logger.exception("Weather request failed")
        return {"error": "Weather service is unavailable"}, 502

    try:
        body: Any = response.json()
    except ValueError:
        body = {"raw": response.text}

    if response.status_code >= 400:
        return {
            "error": "Weather service returned an error",
            "status": response.status_code,
            "response": body,
        }, response.status_code

    with _CACHE_LOCK:
        _CACHE[key] = (now + config.WEATHER_CACHE_SECONDS, body)
    return body, response.status_code


def _base_params() -> dict[str, Any]:
    return {
        "latitude": config.WEATHER_LATITUDE,
        "longitude": config.WEATHER_LONGITUDE,
        "timezone": config.WEATHER_TIMEZONE,
    }


def _round(value: Any) -> int | None:
    try:
        return int(round(float(value)))
    except (TypeError, ValueError):
        return None


def fetch_current_weather() -> dict[str, Any] | None:
    """Temperature and sky label for the dashboard card, or None when unavailable."""
    body, status = weather_json_request({**_base_params(), "current": "temperature_2m,weather_code"})
    if status >= 400 or not isinstance(body, dict) or "current" not in body:
        return None
    current = body["current"]
    return {
        "temperature": _round(current.get("temperature_2m")),
        "code": current.get("weather_code"),
        "label": weather_label(current.get("weather_code")),
        "location": config.WEATHER_LOCATION_LABEL,
    }


def summarize_forecast(body: dict[str, Any]) -> dict[str, Any]:
    current = body.get("current") or {}
    daily = body.get("daily") or {}
    days = []
    dates = daily.get("time") or []
    for index, day in enumerate(dates[:FORECAST_DAYS]):

        def pick(name: str) -> Any:
            values = daily.get(name) or []
            return values[index] if index < len(values) else None

        days.append(
            {
                "date": day,
                "code": pick("weather_code"),
                "label": weather_label(pick("weather_code")),
                "max": _round(pick("temperature_2m_max")),
                "min": _round(pick("temperature_2m_min")),
                "precipitation": pick("precipitation_probability_max"),
            }
        )
    return {
        "location": config.WEATHER_LOCATION_LABEL,
        "current": {
            "temperature": _round(current.get("temperature_2m")),
            "humidity": current.get("relative_humidity_2m"),
            "wind_speed": current.get("wind_speed_10m"),
            "code": current.get("weather_code"),
            "label": weather_label(current.get("weather_code")),
        },
        "advisory": safety_advisory(current.get("wind_speed_10m"), current.get("weather_code")),
        "daily": days,
    }


def fetch_forecast() -> tuple[dict[str, Any], int]:
    params = {
        **_base_params(),
        "current": CURRENT_FIELDS,
        "daily": DAILY_FIELDS,
        "forecast_days": FORECAST_DAYS,
    }
    body, status = weather_json_request(params)
    if status >= 400 or not isinstance(body, dict) or "current" not in body:
        if isinstance(body, dict) and "error" in body:
            return body, status if status >= 400 else 502
        return {"error": "Unexpected weather response", "response": body}, 502
    return summarize_forecast(body), 200


@bp.route("/api/weather", methods=["GET"])
def api_weather():
    body, status = fetch_forecast()
    return jsonify(body), status


@bp.route("/api/weather/current", methods=["GET"])
def api_weather_current():
    current = fetch_current_weather()
    if current is None:
        return jsonify({"error": "Weather service is unavailable"}), 502
    return jsonify(current)
