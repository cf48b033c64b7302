"""
Markdown and console renderings of an analysis summary.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Mapping

from wt.analysis.stats import clamp
from wt.utils.validate import HIDDEN_LABEL

AP_TABLE_HEADER = (
    "| SSID | BSSID | Band | Channel | Security | Mean RSSI | Latest RSSI | Variance | Stability |",
    "| --- | --- | --- | --- | --- | --- | --- | --- | --- |",
)


def build_ascii_bar(count: float, max_count: float, width: int = 10) -> str:
    safe_count = max(0, count or 0)
    safe_max = max(1, max_count or 1)
    filled = int(clamp(round(safe_count / safe_max * width), 0, width))
    return "#" * filled + "." * (width - filled)


def report_filename(generated_at: datetime, extension: str) -> str:
    return f"wifi-topology-report-{generated_at:%Y%m%d-%H%M%S}.{extension}"


def _escape_cell(value: Any) -> str:
    return str(value if value is not None else "").replace("|", "\\|")


def _format_rssi(value: float | None) -> str:
    return "n/a" if value is None else f"{round(value, 2)}"


def _channel_lines(rows: list[Mapping[str, int]]) -> list[str]:
    if not rows:
        return ["- (no data)"]
    max_count = max([r["count"] for r in rows] + [1])
    return [
        f"- ch {r['channel']} {build_ascii_bar(r['count'], max_count)} ({r['count']})"
        for r in rows
    ]


def _recommendation_lines(recommendations: Mapping[str, list]) -> list[str]:
    lines = []
    for key, band in (("band24", "2.4GHz"), ("band5", "5GHz")):
        rows = recommendations.get(key) or []
        if rows:
            lines.append(f"- {band}: " + ", ".join(f"ch {r['channel']}" for r in rows))
    return lines


def _ap_rows(aps: list[Mapping[str, Any]]) -> list[str]:
    if not aps:
        return ["| - | - | - | - | - | - | - | - | - |"]
    return [
        f"| {_escape_cell(ap['label'] or HIDDEN_LABEL)} | {ap['id']} | {ap['band']} | {ap['channel']} "
        f"| {_escape_cell(ap['security'])} | {_format_rssi(ap['meanValue'])} "
        f"| {_format_rssi(ap['latestValue'])} | {round(ap['variance'], 2)} | {round(ap['stability'], 2)} |"
        for ap in aps
    ]


def build_markdown_report(summary: Mapping[str, Any]) -> str:
    """
    Render the summary as a Markdown document.
    """
    lines = [
        "# Wi-Fi Topology Report",
        "",
        f"- Timestamp: {summary['timestampIso']}",
        f"- OS: {summary['os']}",
        f"- Scan source: {summary['scanSource']}",
        f"- Mode: {summary['mode']}",
    ]
    if summary.get("durationSec") is not None:
        lines.append(f"- Duration: {summary['durationSec']}s")
    elif summary.get("windowSize") is not None or summary.get("scanIntervalMs") is not None:
        window = summary.get("windowSize") or "n/a"
        interval = summary.get("scanIntervalMs") or "n/a"
        lines.append(f"- Rolling window: {window} samples @ {interval}ms")
    lines += [
        f"- APs observed: {summary['apsObserved']}",
        f"- APs tracked: {summary['apsTracked']}",
        "",
        "## Channel Density",
        "",
        "### 2.4GHz",
        *_channel_lines(summary["channelDensity"].get("band24") or []),
        "",
        "### 5GHz",
        *_channel_lines(summary["channelDensity"].get("band5") or []),
        "",
        "## Channel Recommendations (Heuristic)",
        "",
    ]
    lines += _recommendation_lines(summary["recommendations"]) or ["- No recommendation data available"]

    top = summary["topClusterSizes"]
    lines += [
        "",
        "## Clusters",
        "",
        f"- Clusters detected: {summary['clustersDetected']}",
        f"- Top cluster sizes: {', '.join(str(s) for s in top) if top else 'none'}",
        "",
        "## Top 5 Strongest APs",
        "",
        *AP_TABLE_HEADER,
        *_ap_rows(summary["strongestAps"]),
        "",
        "## Top 5 Most Volatile APs",
        "",
        *AP_TABLE_HEADER,
        *_ap_rows(summary["mostVolatileAps"]),
        "",
        "## Notes",
        "",
        "- Topology is correlation space, not floorplan.",
        "- Distance estimates are approximate.",
        "",
    ]
    return "\n".join(lines)


def format_analyze_summary(summary: Mapping[str, Any]) -> str:
    """
    Plain-text summary printed at the end of `wt analyze`.
    """
    duration = summary.get("durationSec")
    lines = [
        "Wi-Fi topology analyze summary",
        f"Timestamp: {summary['timestampIso']}",
        f"Mode: {summary['mode']}",
        f"OS: {summary['os']}",
        f"Scan source: {summary['scanSource']}",
        f"Duration: {duration if duration is not None else 'n/a'}s",
    ]
    if summary.get("scanCount") is not None:
        lines.append(f"Scans: {summary['scanCount']}")
    lines += [
        f"APs observed: {summary['apsObserved']}",
        f"APs tracked: {summary['apsTracked']}",
        f"Clusters detected: {summary['clustersDetected']}",
        "",
        "Channel density 2.4GHz:",
        *_channel_lines(summary["channelDensity"].get("band24") or []),
        "",
        "Channel density 5GHz:",
        *_channel_lines(summary["channelDensity"].get("band5") or []),
    ]

    recommended = _recommendation_lines(summary["recommendations"])
    if recommended:
        lines += ["", "Recommended low-congestion channels (heuristic):", *recommended]

    lines += ["", "Strongest APs:"]
    for ap in summary["strongestAps"]:
        lines.append(
            f"- {ap['label']} ({ap['id']}) mean {_format_rssi(ap['meanValue'])} dBm, "
            f"latest {_format_rssi(ap['latestValue'])} dBm, stability {round(ap['stability'], 2)}"
        )
    lines += ["", "Most volatile APs:"]
    for ap in summary["mostVolatileAps"]:
        lines.append(
            f"- {ap['label']} ({ap['id']}) variance {round(ap['variance'], 2)}, "
            f"stability {round(ap['stability'], 2)}"
        )
    return "\n".join(lines)
