from __future__ import annotations

import argparse
import dataclasses
import json
import sys
import textwrap
from dataclasses import dataclass
from typing import Callable, Mapping

import requests

from mcp_gateway.config import ConfigurationError, GatewaySettings

_ACCENT_DEFAULT = "cyan"
_RESET = "\033[0m"
_COLOUR_CODES: Mapping[str, str] = {
    "cyan": "\033[38;5;45m",
    "violet": "\033[38;5;177m",
    "green": "\033[38;5;48m",
    "amber": "\033[38;5;214m",
    "red": "\033[38;5;203m",
}


@dataclass(slots=True)
class _CLIContext:
    accent: str


def _colourise(text: str, style: str) -> str:
    colour = _COLOUR_CODES.get(style, _COLOUR_CODES.get("cyan", ""))
    reset = _RESET if colour else ""
    return f"{colour}{text}{reset}"


def _panel(title: str, body: str, style: str = "cyan") -> str:
    raw_lines: list[str] = []
    for line in body.splitlines() or [""]:
        if not line.strip():
            raw_lines.append("")
            continue
        raw_lines.extend(textwrap.wrap(line, width=72) or [""])

    content_width = max([len(title), *(len(line) for line in raw_lines)])
    border = "=" * (content_width + 4)
    title_line = f"= {title.center(content_width)} ="
    body_lines = [f"| {line.ljust(content_width)} |" for line in (raw_lines or [""])]
    panel_lines = [border, title_line, border, *body_lines, border]
    return "\n".join(_colourise(line, style) for line in panel_lines)


def _print_panel(title: str, body: str, style: str = "cyan") -> None:
    print(_panel(title, body, style))


def _run_with_uvicorn(settings: GatewaySettings) -> None:
    from mcp_gateway.server import run

    run(settings)


def _settings_from_args(args: argparse.Namespace) -> GatewaySettings:
    settings = GatewaySettings.from_env()
    overrides: dict[str, object] = {}
    if args.host is not None:
        overrides["host"] = args.host
    if args.port is not None:
        overrides["port"] = args.port
    if args.debug:
        overrides["debug"] = True
        overrides["log_level"] = "DEBUG"
    if args.log_level is not None:
        overrides["log_level"] = args.log_level.upper()
    return dataclasses.replace(settings, **overrides)


def _serve_command(args: argparse.Namespace, ctx: _CLIContext) -> int:
    settings = _settings_from_args(args)
    try:
        settings.require_api_key()
    except ConfigurationError as exc:
        _print_panel("Server", str(exc), "red")
        return 1

    summary = f"Gateway on ws://{settings.host}:{settings.port}/ using model {settings.model}"
    if settings.debug:
        summary += " (debug)"
    _print_panel("Server", summary, ctx.accent)

    try:
        _run_with_uvicorn(settings)
    except KeyboardInterrupt:
        _print_panel("Server", "Interrupted by user", "amber")
        return 0
    except ImportError as exc:
        _print_panel("Server", f"Server dependencies are missing: {exc}", "red")
        return 1
    return 0


def _health_command(args: argparse.Namespace, ctx: _CLIContext) -> int:
    url = args.server_url.rstrip("/") + "/health"
    try:
        response = requests.get(url, timeout=10)
    except requests.RequestException as exc:
        _print_panel("Health", f"Health check failed: {exc}", "red")
        return 1

    status_style = "green" if response.status_code == requests.codes.ok else "amber"
    try:
        data = response.json()
    except json.JSONDecodeError:
        body = f"HTTP {response.status_code}\nStatus: {response.text or 'unknown'}"
    else:
        body = "\n".join(
            [
                f"HTTP {response.status_code}",
                f"Status: {data.get('status', 'unknown')}",
                f"Uptime: {data.get('uptime', 'unknown')}s",
                f"Active connections: {data.get('activeConnections', 'unknown')}",
                f"Version: {data.get('version', 'unknown')}",
            ]
        )

    _print_panel("Health", body, status_style)
    return 0 if response.status_code == requests.codes.ok else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Operate the MCP gateway from your terminal.")
    parser.add_argument(
        "--accent",
        default=_ACCENT_DEFAULT,
        choices=sorted(_COLOUR_CODES.keys()),
        help="Accent colour for decorated output.",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    serve_parser = subparsers.add_parser("serve", help="Run the WebSocket gateway under uvicorn.")
    serve_parser.add_argument("--host", default=None, help="Host interface to bind (defaults to HOST or 0.0.0.0).")
    serve_parser.add_argument("--port", type=int, default=None, help="Port to bind (defaults to PORT or 3005).")
    serve_parser.add_argument("--debug", action="store_true", help="Enable verbose debug logging.")
    serve_parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "debug", "info", "warning", "error"],
        help="Log level override.",
    )
    serve_parser.set_defaults(handler=_serve_command)

    health_parser = subparsers.add_parser("health", help="Check the health endpoint and display status.")
    health_parser.add_argument(
        "--server-url",
        default="http://localhost:3005",
        help="Base URL of the running gateway.",
    )
    health_parser.set_defaults(handler=_health_command)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    context = _CLIContext(accent=args.accent)
    handler: Callable[[argparse.Namespace, _CLIContext], int] = getattr(args, "handler", None)
    if handler is None:
        parser.print_help()
        return 1
    return handler(args, context)


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
