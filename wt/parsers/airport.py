"""
macOS scanner parsers: `airport -s` text and `system_profiler SPAirPortDataType -json`.
"""

import json
import re
from typing import Any, Optional

from wt.utils.validate import BSSID_PATTERN, HIDDEN_LABEL, Observation, infer_band

BSSID_SEARCH = re.compile(r"(?:[0-9a-fA-F]{2}:){5}[0-9a-fA-F]{2}")
LINE_PATTERN = re.compile(
    r"^(?P<ssid>.*?)\s+(?P<bssid>(?:[0-9a-fA-F]{2}:){5}[0-9a-fA-F]{2})\s+"
    r"(?P<rssi>-?\d+)\s+(?P<channel>\S+)\s*(?P<rest>.*)$"
)
HEADER_COLUMNS = ("SSID", "BSSID", "RSSI", "CHANNEL", "HT", "CC", "SECURITY")
SECURITY_HINT = re.compile(r"wpa|wep|none|open|802\.1x|psk|sae", re.IGNORECASE)


def fnv1a_32(value: str) -> int:
    """
    32-bit FNV-1a hash of a string.
    """
    h = 2166136261
    for ch in value:
        h ^= ord(ch)
        h = (h * 16777619) & 0xFFFFFFFF
    return h


def synthetic_bssid(seed: str, salt: str = "wifi-space") -> str:
    """
    Stable locally-administered unicast MAC derived from `seed`.

    Parameters
    ----------
    seed : str
        Fingerprint of the network (ssid, channel, security, occurrence).
    salt : str
        Distinguishes the scanner that synthesized the id.

    Returns
    -------
    str
        Lower-case colon-separated MAC.
    """
    a = fnv1a_32(seed)
    b = fnv1a_32(f"{seed}::{salt}")
    octets = [a & 0xFF, (a >> 8) & 0xFF, (a >> 16) & 0xFF, (a >> 24) & 0xFF, b & 0xFF, (b >> 8) & 0xFF]
    # locally administered, unicast
    octets[0] = (octets[0] | 0x02) & 0xFE
    return ":".join(f"{o:02x}" for o in octets)


def infer_security(text: Optional[str]) -> str:
    cleaned = str(text or "").strip()
    if not cleaned:
        return "UNKNOWN"
    tokens = cleaned.split()
    # airport trailing columns are: HT CC SECURITY...
    if len(tokens) >= 3:
        return " ".join(tokens[2:]) or "UNKNOWN"
    if SECURITY_HINT.search(cleaned):
        return cleaned
    return "UNKNOWN"


def _normalize(ssid: str, bssid: str, rssi: int, channel: str, security: str) -> Optional[Observation]:
    bssid = bssid.lower()
    if not BSSID_PATTERN.match(bssid):
        return None
    return Observation.normalize(
        id=bssid, value=rssi, label=ssid, channel=channel, security=security, scan_source="airport",
    )


def _column_starts(header: str) -> dict[str, int]:
    return {col: header.index(col) for col in HEADER_COLUMNS if col in header}


def _next_start(starts: dict[str, int], current: int) -> Optional[int]:
    later = [v for v in starts.values() if v > current]
    return min(later) if later else None


def _parse_regex(line: str) -> Optional[Observation]:
    match = LINE_PATTERN.match(line)
    if not match:
        return None
    return _normalize(
        match["ssid"].strip(), match["bssid"], int(match["rssi"]), match["channel"], infer_security(match["rest"]),
    )


def _parse_columns(line: str, starts: Optional[dict[str, int]]) -> Optional[Observation]:
    if not starts or "BSSID" not in starts or "RSSI" not in starts:
        return None
    bssid_at, rssi_at = starts["BSSID"], starts["RSSI"]
    if len(line) < rssi_at:
        return None
    channel_at = starts.get("CHANNEL", _next_start(starts, rssi_at))

    bssid_tokens = line[bssid_at:rssi_at].split()
    if not bssid_tokens:
        return None
    rssi_tokens = line[rssi_at:channel_at].split()
    try:
        rssi = int(rssi_tokens[0])
    except (IndexError, ValueError):
        return None

    channel = ""
    if channel_at is not None:
        channel_tokens = line[channel_at:_next_start(starts, channel_at)].split()
        channel = channel_tokens[0] if channel_tokens else ""
    rest = line[starts["SECURITY"]:].strip() if "SECURITY" in starts else ""

    return _normalize(line[:bssid_at].strip(), bssid_tokens[0], rssi, channel, infer_security(rest))


def parse_airport_output(raw: str) -> list[Observation]:
    """
    Parse `airport -s` output, keeping the strongest reading per BSSID.
    """
    lines = [ln.rstrip() for ln in (raw or "").splitlines() if ln.strip()]
    if not lines:
        return []

    header_idx = next((i for i, ln in enumerate(lines) if "BSSID" in ln and "RSSI" in ln), None)
    starts = _column_starts(lines[header_idx]) if header_idx is not None else None
    data = lines[header_idx + 1:] if header_idx is not None else lines

    by_bssid: dict[str, Observation] = {}
    for line in data:
        obs = _parse_regex(line) or _parse_columns(line, starts)
        if obs is None:
            continue
        existing = by_bssid.get(obs.id)
        if existing is None or obs.value > existing.value:
            by_bssid[obs.id] = obs
    return list(by_bssid.values())


def _signal_from_noise(text: Any) -> Optional[int]:
    match = re.search(r"(-?\d+)\s*dBm", str(text or ""), re.IGNORECASE)
    return int(match.group(1)) if match else None


def _profiler_security(mode: Any) -> str:
    cleaned = re.sub(r"^s?pairport_security_mode_", "", str(mode or "").strip()).replace("_", " ").strip()
    return cleaned.upper() if cleaned else "UNKNOWN"


def _profiler_network(network: Any, seen: dict[str, int]) -> Optional[dict[str, Any]]:
    if not isinstance(network, dict):
        return None
    ssid = str(network.get("_name") or "").strip() or HIDDEN_LABEL
    channel_text = str(network.get("spairport_network_channel") or "").strip()
    digits = re.search(r"\d+", channel_text)
    channel = digits.group(0) if digits else ""
    security = _profiler_security(network.get("spairport_security_mode"))

    key = f"{ssid}::{channel or '?'}::{security}"
    seen[key] = seen.get(key, 0) + 1
    rssi = _signal_from_noise(network.get("spairport_signal_noise"))
    return {
        "id": synthetic_bssid(f"{key}::{seen[key]}"),
        "label": ssid,
        "value": rssi,
        "channel": channel,
        "band": infer_band(channel_text or channel),
        "security": security,
        "estimated": rssi is None,
    }


def parse_system_profiler_output(raw: str) -> list[dict[str, Any]]:
    """
    Parse `system_profiler SPAirPortDataType -json`.

    BSSIDs are withheld by the tool, so ids are synthesized from the network
    fingerprint. Returns raw dicts: `value` may be None when no signal/noise
    figure is reported; the scanner fills those in as estimates.
    """
    try:
        parsed = json.loads(raw or "")
    except ValueError:
        return []
    sections = parsed.get("SPAirPortDataType") if isinstance(parsed, dict) else None
    if not isinstance(sections, list):
        return []

    interfaces = [
        item
        for section in sections if isinstance(section, dict)
        for item in section.get("spairport_airport_interfaces") or []
    ]
    iface = (
        next((i for i in interfaces if i.get("_name") == "en0"), None)
        or next((i for i in interfaces if isinstance(i.get("spairport_airport_other_local_wireless_networks"), list)), None)
        or (interfaces[0] if interfaces else None)
    )
    if not iface:
        return []

    seen: dict[str, int] = {}
    networks = []
    current = iface.get("spairport_current_network_information")
    if current:
        networks.append(_profiler_network(current, seen))
    for net in iface.get("spairport_airport_other_local_wireless_networks") or []:
        networks.append(_profiler_network(net, seen))

    by_id: dict[str, dict[str, Any]] = {}
    for net in networks:
        if net is None:
            continue
        existing = by_id.get(net["id"])
        if existing is None or (existing["value"] is None and net["value"] is not None):
            by_id[net["id"]] = net
    return list(by_id.values())
