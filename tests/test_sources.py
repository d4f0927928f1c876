from __future__ import annotations

import subprocess

import pytest
import requests

from at_a_glance.sources import system, tasks, weather
from at_a_glance.sources.tasks import Task, priority_name, read_tasks
from at_a_glance.sources.weather import NO_KEY_WEATHER, Weather, detect_location, read_weather


class FakeResponse:
    def __init__(self, payload=None, status_code=200):
        self._payload = payload
        self.status_code = status_code

    def json(self):
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload


class FakeGet:
    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def __call__(self, url, **kwargs):
        self.calls.append((url, kwargs))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


OWM_PAYLOAD = {
    "main": {"temp": 67.6, "humidity": 40},
    "weather": [{"main": "Clouds", "description": "broken clouds"}],
    "wind": {"speed": 5.4},
}


# ══════════════════════════════════════════════════════════════════
# Weather
# ══════════════════════════════════════════════════════════════════

def test_weather_without_key_skips_network(monkeypatch):
    fake = FakeGet()
    monkeypatch.setattr(weather.requests, "get", fake)
    assert read_weather(None) is NO_KEY_WEATHER
    assert fake.calls == []


def test_weather_parses_current_conditions(monkeypatch):
    fake = FakeGet(FakeResponse(OWM_PAYLOAD))
    monkeypatch.setattr(weather.requests, "get", fake)
    result = read_weather("key", location="Oslo,NO")
    assert result == Weather(temp=68, condition="Clouds", description="broken clouds", humidity=40, wind_speed=5)
    assert fake.calls[0][1]["params"]["q"] == "Oslo,NO"


def test_weather_detects_location_when_not_overridden(monkeypatch):
    fake = FakeGet(
        FakeResponse({"city": "Ann Arbor", "regionName": "Michigan", "countryCode": "US"}),
        FakeResponse(OWM_PAYLOAD),
    )
    monkeypatch.setattr(weather.requests, "get", fake)
    read_weather("key")
    assert fake.calls[1][1]["params"]["q"] == "Ann Arbor,Michigan,US"


def test_detect_location_falls_back_to_default(monkeypatch):
    monkeypatch.setattr(weather.requests, "get", FakeGet(requests.ConnectionError("offline")))
    assert detect_location("Detroit,MI,US") == "Detroit,MI,US"


@pytest.mark.parametrize(
    "response, description",
    [
        (requests.Timeout("slow"), "Weather service unavailable"),
        (FakeResponse({}, status_code=401), "API Error: 401"),
        (FakeResponse({"main": {"temp": 50}, "weather": []}), "Malformed weather response"),
        (FakeResponse(ValueError("not json")), "Malformed weather response"),
    ],
)
def test_weather_failures_become_placeholders(monkeypatch, response, description):
    monkeypatch.setattr(weather.requests, "get", FakeGet(response))
    result = read_weather("key", location="Oslo,NO")
    assert result.temp == "--"
    assert result.condition == "Error"
    assert result.description == description


# ══════════════════════════════════════════════════════════════════
# Tasks
# ══════════════════════════════════════════════════════════════════

@pytest.mark.parametrize("level, name", [(4, "high"), (3, "high"), (2, "medium"), (1, "low")])
def test_priority_name(level, name):
    assert priority_name(level) == name


def test_tasks_keep_source_order_and_limit(monkeypatch):
    payload = [
        {"content": "Water plants", "priority": 1},
        {"content": "Pay rent", "priority": 4, "due": {"string": "today", "date": "2026-10-19"}},
        {"priority": 2},
        {"content": "Call bank", "priority": 2, "due": {"date": "2026-10-20"}},
        {"content": "Extra", "priority": 1},
    ]
    fake = FakeGet(FakeResponse(payload))
    monkeypatch.setattr(tasks.requests, "get", fake)
    result = read_tasks("token", limit=3)
    assert result == [
        Task("Water plants", "low"),
        Task("Pay rent", "high", due="today"),
        Task("Call bank", "medium", due="2026-10-20"),
    ]
    assert fake.calls[0][1]["headers"]["Authorization"] == "Bearer token"


def test_tasks_accept_paginated_payload(monkeypatch):
    payload = {"results": [{"content": "Pay rent", "priority": 4}], "next_cursor": None}
    monkeypatch.setattr(tasks.requests, "get", FakeGet(FakeResponse(payload)))
    assert read_tasks("token") == [Task("Pay rent", "high")]


@pytest.mark.parametrize(
    "response",
    [
        requests.ConnectionError("offline"),
        FakeResponse([], status_code=500),
        FakeResponse(ValueError("not json")),
        FakeResponse("surprise"),
    ],
)
def test_task_failures_yield_empty_list(monkeypatch, response):
    monkeypatch.setattr(tasks.requests, "get", FakeGet(response))
    assert read_tasks("token") == []


def test_tasks_without_key(monkeypatch):
    fake = FakeGet()
    monkeypatch.setattr(tasks.requests, "get", fake)
    assert read_tasks(None) == []
    assert fake.calls == []


# ══════════════════════════════════════════════════════════════════
# System
# ══════════════════════════════════════════════════════════════════

def test_read_battery(tmp_path):
    (tmp_path / "BAT0").mkdir()
    (tmp_path / "BAT0" / "capacity").write_text("57\n")
    assert system.read_battery(str(tmp_path / "BAT*" / "capacity")) == 57


def test_read_battery_missing_or_garbled(tmp_path):
    assert system.read_battery(str(tmp_path / "BAT*" / "capacity")) is None
    (tmp_path / "BAT1").mkdir()
    (tmp_path / "BAT1" / "capacity").write_text("full")
    assert system.read_battery(str(tmp_path / "BAT*" / "capacity")) is None


def test_count_failed_services(monkeypatch):
    def fake_run(cmd, **kwargs):
        return subprocess.CompletedProcess(cmd, 0, stdout="a.service loaded failed\nb.service loaded failed\n\n")

    monkeypatch.setattr(subprocess, "run", fake_run)
    assert system.count_failed_services() == 2


def test_count_failed_services_without_systemd(monkeypatch):
    def missing(*args, **kwargs):
        raise FileNotFoundError("systemctl")

    monkeypatch.setattr(subprocess, "run", missing)
    assert system.count_failed_services() == 0


def test_system_status_summary(monkeypatch):
    monkeypatch.setattr(system, "read_battery", lambda: 42)
    monkeypatch.setattr(system, "count_failed_services", lambda: 3)
    status = system.read_system_status()
    assert status.battery == 42
    assert status.failed_services == 3
    assert status.status == "3 failed services"

    monkeypatch.setattr(system, "count_failed_services", lambda: 0)
    assert system.read_system_status().status == "OK"
