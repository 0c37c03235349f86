import pytest
import requests

from obra_hub import weather_backend


@pytest.fixture(autouse=True)
def empty_cache():
    weather_backend.clear_cache()
    yield
    weather_backend.clear_cache()


FORECAST = {
    "current": {"temperature_2m": 31.6, "relative_humidity_2m": 70, "weather_code": 2, "wind_speed_10m": 12.0},
    "daily": {
        "time": ["2024-06-01", "2024-06-02"],
        "weather_code": [0, 95],
        "temperature_2m_max": [33.2, 30.1],
        "temperature_2m_min": [24.4, 23.5],
        "precipitation_probability_max": [10, 80],
    },
}


@pytest.mark.parametrize(
    "code, label",
    [(0, "Despejado"), (2, "Parcialmente nublado"), (45, "Niebla"), (61, "Lluvia ligera"), (81, "Lluvia"), (96, "Tormenta"), (None, "Variable")],
)
def test_weather_label(code, label):
    assert weather_backend.weather_label(code) == label


def test_safety_advisory():
    assert weather_backend.safety_advisory(10, 1)["safe"] is True
    assert weather_backend.safety_advisory(25, 1) == {"safe": False, "label": "Precaución: Viento/Tormenta"}
    assert weather_backend.safety_advisory(5, 95)["safe"] is False


def test_forecast_is_summarized_and_cached(monkeypatch, fake_response):
    calls = []

    def fake_request(method, url, **kwargs):
        calls.append((method, url, kwargs))
        return fake_response(200, FORECAST)

    monkeypatch.setattr(requests, "request", fake_request)
    body, status = weather_backend.fetch_forecast()
    assert status == 200
    assert body["current"]["temperature"] == 32
    assert body["current"]["label"] == "Parcialmente nublado"
    assert body["advisory"]["safe"] is True
    assert [day["label"] for day in body["daily"]] == ["Despejado", "Tormenta"]
    assert body["daily"][1]["max"] == 30

    weather_backend.fetch_forecast()
    assert len(calls) == 1
    assert calls[0][2]["params"]["forecast_days"] == 5


def test_network_failure_returns_502(monkeypatch):
    def fake_request(method, url, **kwargs):
        raise requests.ConnectionError("offline")

    monkeypatch.setattr(requests, "request", fake_request)
    body, status = weather_backend.fetch_forecast()
    assert status == 502
    assert body == {"error": "Weather service is unavailable"}
    assert weather_backend.fetch_current_weather() is None


def test_upstream_error_is_not_cached(monkeypatch, fake_response):
    responses = [fake_response(500, None, "oops"), fake_response(200, FORECAST)]
    monkeypatch.setattr(requests, "request", lambda method, url, **kwargs: responses.pop(0))
    body, status = weather_backend.weather_json_request({"latitude": 1})
    assert status == 500
    assert body["response"] == {"raw": "oops"}
    body, status = weather_backend.weather_json_request({"latitude": 1})
    assert status == 200


def test_weather_routes(auth_client, monkeypatch, fake_response):
    monkeypatch.setattr(requests, "request", lambda method, url, **kwargs: fake_response(200, FORECAST))
    response = auth_client.get("/api/weather")
    assert response.status_code == 200
    assert response.get_json()["location"] == "Comalcalco"
    current = auth_client.get("/api/weather/current").get_json()
    assert current == {"temperature": 32, "code": 2, "label": "Parcialmente nublado", "location": "Comalcalco"}
