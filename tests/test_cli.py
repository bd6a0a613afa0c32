from __future__ import annotations

from typing import Any, Dict, List, Optional

import pytest
from typer.testing import CliRunner

from cli.app import app
from cli.config import load_config


class StubClient:
    def __init__(self, config) -> None:
        self.config = config
        self.sample: Optional[Dict[str, Any]] = {
            "id": "abc123",
            "recordedAt": "2024-06-01T12:00:00Z",
            "temperature": 45.0,
            "humidity": 40.0,
            "dustDensity": 50.0,
            "lightPercent": 80.0,
            "voltage": 12.0,
            "current": 1.5,
            "power": 18.0,
            "tiltAngle": None,
        }
        self.list_calls: List[Dict[str, Any]] = []
        self.cooldown_entries: List[Dict[str, Any]] = [
            {"kind": "DUST", "lastFiredAt": "2024-06-01T12:00:00Z"}
        ]
        self.closed = False

    def list_samples(self, **kwargs) -> List[Dict[str, Any]]:
        self.list_calls.append(kwargs)
        return [self.sample] if self.sample else []

    def latest_sample(self) -> Optional[Dict[str, Any]]:
        return self.sample

    def cooldowns(self) -> List[Dict[str, Any]]:
        return self.cooldown_entries

    def close(self) -> None:
        self.closed = True


@pytest.fixture()
def runner() -> CliRunner:
    return CliRunner()


def _install_stub(monkeypatch, stub: StubClient) -> None:
    def factory(config):
        stub.config = config
        return stub

    monkeypatch.setattr("cli.app.ApiClient", factory)


def test_samples_command_renders_table(monkeypatch, runner: CliRunner) -> None:
    stub = StubClient(config=None)
    _install_stub(monkeypatch, stub)

    result = runner.invoke(
        app,
        ["-b", "http://solar.local:9000/", "samples", "--start", "2024-06-01", "--order", "asc", "--limit", "5"],
    )

    assert result.exit_code == 0
    assert "Samples (1)" in result.stdout
    assert "18.00" in result.stdout
    assert stub.list_calls == [
        {"start": "2024-06-01", "end": None, "sort_by": None, "order": "asc", "limit": 5}
    ]
    assert stub.config.base_url == "http://solar.local:9000"
    assert stub.closed is True


def test_latest_command(monkeypatch, runner: CliRunner) -> None:
    stub = StubClient(config=None)
    _install_stub(monkeypatch, stub)

    result = runner.invoke(app, ["latest"])

    assert result.exit_code == 0
    assert "Latest Sample" in result.stdout
    assert "power: 18.00" in result.stdout
    assert "tiltAngle: -" in result.stdout


def test_latest_command_without_samples(monkeypatch, runner: CliRunner) -> None:
    stub = StubClient(config=None)
    stub.sample = None
    _install_stub(monkeypatch, stub)

    result = runner.invoke(app, ["latest"])

    assert result.exit_code == 1
    assert "No samples" in result.stdout


def test_cooldowns_command(monkeypatch, runner: CliRunner) -> None:
    stub = StubClient(config=None)
    _install_stub(monkeypatch, stub)

    result = runner.invoke(app, ["cooldowns"])

    assert result.exit_code == 0
    assert "DUST: last fired 2024-06-01T12:00:00Z" in result.stdout


def test_load_config_reads_environment(monkeypatch) -> None:
    monkeypatch.setenv("API_BASE_URL", "http://example.test/")
    monkeypatch.setenv("CLI_HTTP_TIMEOUT", "not-a-number")

    config = load_config()

    assert config.base_url == "http://example.test"
    assert config.timeout == 30.0
