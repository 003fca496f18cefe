"""Tests for the aiorch command line entry points."""

import json
import re

import pytest
import respx
from typer.testing import CliRunner

from src import __version__
from src.cli.main import app
from src.core.config.routing import DEFAULT_ROUTING_TABLE
from tests.fixtures.mock_http import GOOGLE_BASE, OPENAI_BASE

runner = CliRunner()


def _flat(output: str) -> str:
    return " ".join(output.split())


@pytest.mark.unit
def test_version_prints_package_version():
    result = runner.invoke(app, ["version"])

    assert result.exit_code == 0
    assert __version__ in result.output


@pytest.mark.unit
def test_config_docs_lists_environment_variables():
    result = runner.invoke(app, ["config", "docs"])

    assert result.exit_code == 0
    assert "AIORCH_" in result.output


@pytest.mark.unit
def test_config_validate_accepts_routing_file(tmp_path):
    config_file = tmp_path / "routing.json"
    config_file.write_text(json.dumps(DEFAULT_ROUTING_TABLE))

    result = runner.invoke(app, ["--config", str(config_file), "config", "validate"])

    assert result.exit_code == 0
    assert "2 providers" in _flat(result.output)


@pytest.mark.unit
def test_config_validate_reports_missing_file(tmp_path):
    result = runner.invoke(
        app, ["--config", str(tmp_path / "missing.json"), "config", "validate"]
    )

    assert result.exit_code == 1
    assert "file not found" in _flat(result.output)


@pytest.mark.unit
def test_config_validate_reports_bad_environment(monkeypatch):
    monkeypatch.setenv("AIORCH_CACHE_MAX_SIZE", "not-a-number")

    result = runner.invoke(app, ["config", "validate"])

    assert result.exit_code == 1
    assert "AIORCH_CACHE_MAX_SIZE" in _flat(result.output)


@pytest.mark.unit
def test_providers_list_rejects_unknown_capability():
    result = runner.invoke(app, ["providers", "list", "--capability", "teleportation"])

    assert result.exit_code != 0


@pytest.fixture
def cli_env(tmp_path, monkeypatch):
    """Routing table file, temporary caches and API keys for both providers."""
    config_file = tmp_path / "routing.json"
    config_file.write_text(json.dumps(DEFAULT_ROUTING_TABLE))
    cache_dir = tmp_path / "cache"
    monkeypatch.setenv("AIORCH_CACHE_DIR", str(cache_dir))
    monkeypatch.setenv("AIORCH_PREFERENCES_FILE", str(tmp_path / "preferences.json"))
    monkeypatch.setenv("AIORCH_CONFIG_FILE", str(config_file))
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    monkeypatch.setenv("GEMINI_API_KEY", "gm-test")
    return cache_dir


@pytest.fixture
def mock_api():
    """One router for both providers, matched on full URLs."""
    with respx.mock(assert_all_called=False) as router:
        yield router


def _row(output: str, name: str, value: str) -> bool:
    return re.search(rf"\b{name}\W+{value}\b", output) is not None


@pytest.mark.unit
def test_ask_prints_reply_and_provider(cli_env, mock_api, openai_chat_completion):
    route = mock_api.post(f"{OPENAI_BASE}/chat/completions").respond(json=openai_chat_completion)

    result = runner.invoke(app, ["ask", "text_generation", "Hello there"])

    assert result.exit_code == 0, result.output
    assert route.call_count == 1
    body = json.loads(route.calls[0].request.content)
    assert body["messages"][-1] == {"role": "user", "content": "Hello there"}
    output = _flat(result.output)
    assert "Response from openai" in output
    assert "Hello! How can I help you today?" in output


@pytest.mark.unit
def test_ask_falls_back_when_primary_rejects(cli_env, mock_api, gemini_text_response):
    mock_api.post(f"{OPENAI_BASE}/chat/completions").respond(
        400, json={"error": {"message": "bad request"}}
    )
    gemini = mock_api.post(f"{GOOGLE_BASE}/models/gemini-2.5-flash:generateContent").respond(
        json=gemini_text_response
    )

    result = runner.invoke(app, ["ask", "text_generation", "Hello there"])

    assert result.exit_code == 0, result.output
    assert gemini.call_count == 1
    assert "Hi from Gemini" in _flat(result.output)


@pytest.mark.unit
def test_cache_clear_reports_removed_counts(cli_env):
    files = ("audio/a.m4a", "audio/b.mp3", "images/c.png", "models/openai_models_cache.json")
    for relative in files:
        path = cli_env / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(b"x")

    result = runner.invoke(app, ["cache", "clear"])

    assert result.exit_code == 0, result.output
    assert "Cleared Caches" in result.output
    assert _row(result.output, "text", "0")
    assert _row(result.output, "audio", "2")
    assert _row(result.output, "image", "1")
    assert _row(result.output, "models", "1")
    assert not list((cli_env / "audio").iterdir())


@pytest.mark.unit
def test_cache_clear_single_target(cli_env):
    image = cli_env / "images" / "c.png"
    image.parent.mkdir(parents=True)
    image.write_bytes(b"x")

    result = runner.invoke(app, ["cache", "clear", "image"])

    assert result.exit_code == 0, result.output
    assert _row(result.output, "image", "1")
    assert "audio" not in result.output
    assert not image.exists()


@pytest.mark.unit
def test_providers_health_renders_table(cli_env, mock_api):
    mock_api.get(f"{OPENAI_BASE}/models").respond(json={"object": "list", "data": []})
    mock_api.get(f"{GOOGLE_BASE}/models").respond(503, json={"error": {"code": 503}})

    result = runner.invoke(app, ["providers", "health"])

    assert result.exit_code == 1
    assert "Provider Health" in result.output
    assert _row(result.output, "openai", "healthy")
    assert _row(result.output, "google", "unreachable")


@pytest.mark.unit
def test_providers_health_succeeds_when_all_healthy(cli_env, mock_api):
    mock_api.get(f"{OPENAI_BASE}/models").respond(json={"object": "list", "data": []})
    mock_api.get(f"{GOOGLE_BASE}/models").respond(json={"models": []})

    result = runner.invoke(app, ["providers", "health"])

    assert result.exit_code == 0, result.output
    assert "unreachable" not in result.output
