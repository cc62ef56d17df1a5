from __future__ import annotations

import argparse
import json
from unittest import mock

import pytest
import requests

from mcp_gateway import cli


def _make_serve_args(**overrides: object) -> argparse.Namespace:
    defaults: dict[str, object] = {
        "host": None,
        "port": None,
        "debug": False,
        "log_level": None,
    }
    defaults.update(overrides)
    return argparse.Namespace(**defaults)


@pytest.fixture()
def cli_context() -> cli._CLIContext:  # type: ignore[attr-defined]
    return cli._CLIContext(accent="cyan")  # type: ignore[attr-defined]


@pytest.fixture()
def gateway_env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    for name in ("HOST", "PORT", "DEBUG", "LOG_LEVEL", "GEMINI_MODEL"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("GEMINI_API_KEY", "test-key")
    return monkeypatch


def test_serve_command_runs_uvicorn_with_env_settings(mocker, cli_context, gateway_env) -> None:
    mock_print = mocker.patch("mcp_gateway.cli._print_panel")
    run_with_uvicorn = mocker.patch("mcp_gateway.cli._run_with_uvicorn")

    result = cli._serve_command(_make_serve_args(), cli_context)  # type: ignore[attr-defined]

    assert result == 0
    run_with_uvicorn.assert_called_once()
    settings = run_with_uvicorn.call_args[0][0]
    assert settings.api_key == "test-key"
    assert settings.host == "0.0.0.0"
    assert settings.port == 3005
    assert settings.debug is False
    mock_print.assert_called_once()


def test_serve_command_applies_overrides(mocker, cli_context, gateway_env) -> None:
    mocker.patch("mcp_gateway.cli._print_panel")
    run_with_uvicorn = mocker.patch("mcp_gateway.cli._run_with_uvicorn")

    args = _make_serve_args(host="127.0.0.1", port=9000, debug=True)
    result = cli._serve_command(args, cli_context)  # type: ignore[attr-defined]

    assert result == 0
    settings = run_with_uvicorn.call_args[0][0]
    assert settings.host == "127.0.0.1"
    assert settings.port == 9000
    assert settings.debug is True
    assert settings.log_level == "DEBUG"


@pytest.mark.failure_mode
def test_serve_command_requires_api_key(mocker, cli_context, gateway_env) -> None:
    gateway_env.setenv("GEMINI_API_KEY", "")
    print_panel = mocker.patch("mcp_gateway.cli._print_panel")
    run_with_uvicorn = mocker.patch("mcp_gateway.cli._run_with_uvicorn")

    result = cli._serve_command(_make_serve_args(), cli_context)  # type: ignore[attr-defined]

    assert result == 1
    run_with_uvicorn.assert_not_called()
    print_panel.assert_called_once_with("Server", mock.ANY, "red")
    assert "GEMINI_API_KEY" in print_panel.call_args.args[1]


@pytest.mark.failure_mode
def test_serve_command_reports_missing_server_dependencies(mocker, cli_context, gateway_env) -> None:
    mocker.patch("mcp_gateway.cli._print_panel")
    mocker.patch("mcp_gateway.cli._run_with_uvicorn", side_effect=ImportError("uvicorn"))

    result = cli._serve_command(_make_serve_args(), cli_context)  # type: ignore[attr-defined]

    assert result == 1


def test_serve_command_treats_interrupt_as_clean_exit(mocker, cli_context, gateway_env) -> None:
    print_panel = mocker.patch("mcp_gateway.cli._print_panel")
    mocker.patch("mcp_gateway.cli._run_with_uvicorn", side_effect=KeyboardInterrupt)

    result = cli._serve_command(_make_serve_args(), cli_context)  # type: ignore[attr-defined]

    assert result == 0
    print_panel.assert_any_call("Server", "Interrupted by user", "amber")


def test_health_command_renders_status(mocker, cli_context) -> None:
    print_panel = mocker.patch("mcp_gateway.cli._print_panel")
    response = mock.Mock()
    response.status_code = 200
    response.json.return_value = {
        "status": "healthy",
        "uptime": 12.5,
        "activeConnections": 3,
        "version": "0.1.0",
    }
    get = mocker.patch("mcp_gateway.cli.requests.get", return_value=response)

    args = argparse.Namespace(server_url="http://gateway:3005/")
    result = cli._health_command(args, cli_context)  # type: ignore[attr-defined]

    assert result == 0
    get.assert_called_once_with("http://gateway:3005/health", timeout=10)
    title, body, style = print_panel.call_args.args
    assert title == "Health"
    assert style == "green"
    assert "Status: healthy" in body
    assert "Active connections: 3" in body


@pytest.mark.failure_mode
def test_health_command_reports_draining_server(mocker, cli_context) -> None:
    print_panel = mocker.patch("mcp_gateway.cli._print_panel")
    response = mock.Mock()
    response.status_code = 503
    response.json.return_value = {"status": "shutting_down"}
    mocker.patch("mcp_gateway.cli.requests.get", return_value=response)

    result = cli._health_command(argparse.Namespace(server_url="http://gateway:3005"), cli_context)  # type: ignore[attr-defined]

    assert result == 1
    _title, body, style = print_panel.call_args.args
    assert style == "amber"
    assert "Status: shutting_down" in body


@pytest.mark.failure_mode
def test_health_command_handles_network_failure(mocker, cli_context) -> None:
    print_panel = mocker.patch("mcp_gateway.cli._print_panel")
    mocker.patch("mcp_gateway.cli.requests.get", side_effect=requests.RequestException("boom"))

    result = cli._health_command(argparse.Namespace(server_url="http://gateway:3005"), cli_context)  # type: ignore[attr-defined]

    assert result == 1
    print_panel.assert_called_once_with("Health", mock.ANY, "red")
    assert "boom" in print_panel.call_args.args[1]


@pytest.mark.failure_mode
def test_health_command_handles_non_json_body(mocker, cli_context) -> None:
    print_panel = mocker.patch("mcp_gateway.cli._print_panel")
    response = mock.Mock()
    response.status_code = 502
    response.json.side_effect = json.JSONDecodeError("bad", "", 0)
    response.text = "Bad Gateway"
    mocker.patch("mcp_gateway.cli.requests.get", return_value=response)

    result = cli._health_command(argparse.Namespace(server_url="http://gateway:3005"), cli_context)  # type: ignore[attr-defined]

    assert result == 1
    assert "Bad Gateway" in print_panel.call_args.args[1]


def test_build_parser_defaults() -> None:
    parser = cli.build_parser()

    serve = parser.parse_args(["serve"])
    health = parser.parse_args(["--accent", "violet", "health"])

    assert serve.command == "serve"
    assert serve.port is None
    assert serve.handler is cli._serve_command  # type: ignore[attr-defined]
    assert health.server_url == "http://localhost:3005"
    assert health.accent == "violet"


def test_main_dispatches_to_handler(mocker) -> None:
    handler = mocker.patch("mcp_gateway.cli._health_command", return_value=0)

    result = cli.main(["health", "--server-url", "http://gateway:3005"])

    assert result == 0
    handler.assert_called_once()
    args, context = handler.call_args.args
    assert args.server_url == "http://gateway:3005"
    assert context.accent == "cyan"


def test_panel_wraps_and_colours_lines() -> None:
    rendered = cli._panel("Title", "short line", "green")  # type: ignore[attr-defined]

    lines = rendered.splitlines()
    assert len(lines) == 5
    assert all(line.startswith("\033[38;5;48m") for line in lines)
    assert "short line" in lines[3]
