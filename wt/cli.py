#!/usr/bin/env python3
"""
CLI entry point for the wt Wi-Fi topology toolkit.

Defines the following commands:
  wt serve [--port 8787] [--demo]
  wt analyze [--duration 120] [--scan-interval 1000] [--json] [--out PATH] [--demo]
  wt version
"""

import asyncio
import json
import os
import platform
import sys
from argparse import ArgumentParser, Namespace
from datetime import datetime, timezone
from importlib.metadata import PackageNotFoundError, version as _get_version
from pathlib import Path

import uvicorn

from wt.analysis.config import PipelineConfig
from wt.analysis.report import build_markdown_report, format_analyze_summary, report_filename
from wt.errors import ConfigError, TopologyError
from wt.runtime import TopologyRuntime, run_analyze_session
from wt.scanner import DEFAULT_AIRPORT_PATH, AirportScanner, DemoScanner, Scanner
from wt.server import create_app
from wt.utils.log import get_logger

logger = get_logger(__name__)


def make_scanner(demo: bool, config: PipelineConfig) -> Scanner:
    """
    The synthetic scanner with `demo`, else the macOS airport scanner.
    """
    if demo:
        return DemoScanner()
    if platform.system() != "Darwin":
        logger.warning("Wi-Fi scanning is only supported on macOS; try --demo")
    return AirportScanner(
        airport_path=os.environ.get("AIRPORT_PATH") or DEFAULT_AIRPORT_PATH,
        timeout_ms=config.scan_timeout_ms,
    )


def serve(port: int, demo: bool) -> None:
    """
    Spin up FastAPI+Uvicorn with the live pipeline and WebSocket stream.

    Parameters
    ----------
    port
        Port on which to serve HTTP.
    demo
        Use synthetic networks instead of the system scanner.
    """
    config = PipelineConfig.from_env(base=PipelineConfig.live())
    logger.info("Serve: port=%d, demo=%s", port, demo)
    runtime = TopologyRuntime(make_scanner(demo, config), config)
    app = create_app(runtime)
    uvicorn.run(app, host="127.0.0.1", port=port)


def analyze(duration: float, scan_interval: int, as_json: bool, out: str | None, demo: bool) -> Path:
    """
    Scan for a fixed duration, then write a report and print a summary.

    Parameters
    ----------
    duration
        Run length in seconds.
    scan_interval
        Milliseconds between scans.
    as_json
        Write the raw summary as JSON instead of Markdown.
    out
        Report path; defaults to a timestamped file in the working directory.
    demo
        Use synthetic networks instead of the system scanner.

    Returns
    -------
    Path
        The written report.
    """
    if not duration > 0:
        raise ConfigError("duration must be positive")
    config = PipelineConfig.from_env(base=PipelineConfig.analyze()).updated({"scanIntervalMs": scan_interval})
    logger.info("Analyze: duration=%ss, scan_interval=%dms, demo=%s", duration, config.scan_interval_ms, demo)

    result = asyncio.run(run_analyze_session(make_scanner(demo, config), config, duration))
    summary = result.summary

    extension = "json" if as_json else "md"
    generated = datetime.fromtimestamp(summary["generatedAt"] / 1000, tz=timezone.utc)
    report_path = Path(out) if out else Path.cwd() / report_filename(generated, extension)
    if as_json:
        content = json.dumps(summary, indent=2) + "\n"
    else:
        content = build_markdown_report(summary)
    report_path.parent.mkdir(parents=True, exist_ok=True)
    report_path.write_text(content, encoding="utf-8")
    logger.info("Report written to %s", report_path)

    print(format_analyze_summary(summary))
    print(f"\nReport: {report_path}")
    return report_path


def version() -> None:
    """
    Print the installed wt package version.
    """
    try:
        ver = _get_version("wt-wifi-topology")
    except PackageNotFoundError:
        ver = "unknown"
    logger.info("wt version %s", ver)


def parse_args(argv: list[str] | None = None) -> Namespace:
    """
    Parse command-line arguments and return the populated namespace.
    """
    parser = ArgumentParser(prog="wt")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # wt serve
    p = subparsers.add_parser("serve", help="Serve the live viewer via FastAPI + Uvicorn.")
    p.add_argument(
        "--port", type=int, default=int(os.environ.get("PORT") or 8787), help="Port number to serve on."
    )
    p.add_argument("--demo", action="store_true", help="Use synthetic networks.")

    # wt analyze
    p = subparsers.add_parser("analyze", help="Scan for a while and write a report.")
    p.add_argument("--duration", type=float, default=120, help="Run length in seconds.")
    p.add_argument(
        "--scan-interval", dest="scan_interval", type=int, default=1000, help="Milliseconds between scans."
    )
    p.add_argument("--json", dest="as_json", action="store_true", help="Write the report as JSON.")
    p.add_argument("--out", type=str, help="Report output path.")
    p.add_argument("--demo", action="store_true", help="Use synthetic networks.")

    # wt version
    subparsers.add_parser("version", help="Show wt version and exit.")

    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    """
    Entry point: dispatch to the selected subcommand.
    """
    args = parse_args(argv)
    try:
        match args.command:
            case "serve":
                serve(args.port, args.demo)
            case "analyze":
                analyze(args.duration, args.scan_interval, args.as_json, args.out, args.demo)
            case "version":
                version()
            case _:
                sys.exit(1)
    except TopologyError as exc:
        logger.error("%s", exc)
        sys.exit(exc.exit_code)


if __name__ == "__main__":
    main()
