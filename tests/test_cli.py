from __future__ import annotations

import json

from click.testing import CliRunner

from at_a_glance.cli import run_cmd
from at_a_glance.main import cli
from at_a_glance.pipeline.arbiter import PriorityArbiter
from at_a_glance.pipeline.meeting import MeetingContextExtractor
from at_a_glance.pipeline.orchestrator import GlanceContext
from at_a_glance.sources.system import SystemStatus
from at_a_glance.sources.tasks import Task
from at_a_glance.sources.weather import Weather


class EmptyCalendar:
    def acquire(self, now=None, force_refresh=False):
        return []


def _config(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"advisory": {"usage_path": str(tmp_path / "usage.json"), "max_daily_requests": 5}}))
    return str(path)


def _stub_context(settings):
    return GlanceContext(
        calendar=EmptyCalendar(),
        meetings=MeetingContextExtractor(),
        arbiter=PriorityArbiter(),
        read_weather=lambda: Weather(temp=72, condition="Clear"),
        read_tasks=lambda: [Task("Pay rent", "high")],
        read_system=lambda: SystemStatus(battery=90),
    )


def test_once_json(tmp_path, monkeypatch):
    monkeypatch.setattr(run_cmd, "build_context", _stub_context)
    result = CliRunner().invoke(cli, ["--config", _config(tmp_path), "once", "--json"])
    assert result.exit_code == 0, result.output
    data = json.loads(result.output)
    assert data["topLine"] == "⚡ Pay rent"
    assert data["details"]["tasks"] == "📝 Urgent: Pay rent"


def test_once_pretty(tmp_path, monkeypatch):
    monkeypatch.setattr(run_cmd, "build_context", _stub_context)
    result = CliRunner().invoke(cli, ["--config", _config(tmp_path), "once"])
    assert result.exit_code == 0, result.output
    assert "Pay rent" in result.output


def test_usage_command(tmp_path):
    result = CliRunner().invoke(cli, ["--config", _config(tmp_path), "usage"])
    assert result.exit_code == 0, result.output
    assert "Daily limit" in result.output
    assert "5" in result.output
