import asyncio
import json

from wt.analysis.store import WEIGHT_ESTIMATED, WEIGHT_LOW_FIDELITY, derive_sample_weight
from wt.parsers.airport import (
    fnv1a_32,
    infer_security,
    parse_airport_output,
    parse_system_profiler_output,
    synthetic_bssid,
)
from wt.scanner import AirportScanner, DemoScanner

AIRPORT_OUTPUT = """\
                            SSID BSSID             RSSI CHANNEL HT CC SECURITY (auth/unicast/group)
                        HomeNet aa:bb:cc:dd:ee:01 -45  6       Y  US WPA2(PSK/AES/AES)
                     HomeNet 5G AA:BB:CC:DD:EE:02 -52  36,+1   Y  US WPA2(PSK/AES/AES)
                                11:22:33:44:55:66 -80  11      N  -- NONE
                        HomeNet aa:bb:cc:dd:ee:01 -40  6       Y  US WPA2(PSK/AES/AES)
garbage line without a mac
"""


def profiler_payload(networks, current=None):
    iface = {"_name": "en0", "spairport_airport_other_local_wireless_networks": networks}
    if current:
        iface["spairport_current_network_information"] = current
    return json.dumps({"SPAirPortDataType": [{"spairport_airport_interfaces": [iface]}]})


def test_fnv1a_known_values():
    assert fnv1a_32("") == 2166136261
    assert fnv1a_32("a") == 0xE40C292C


def test_synthetic_bssid_is_stable_and_local():
    mac = synthetic_bssid("Cafe::6::WPA2::1")
    assert mac == synthetic_bssid("Cafe::6::WPA2::1")
    assert mac != synthetic_bssid("Cafe::6::WPA2::2")
    first_octet = int(mac.split(":")[0], 16)
    assert first_octet & 0x02
    assert not first_octet & 0x01


def test_infer_security():
    assert infer_security("Y US WPA2(PSK/AES/AES)") == "WPA2(PSK/AES/AES)"
    assert infer_security("WPA3") == "WPA3"
    assert infer_security("") == "UNKNOWN"
    assert infer_security("Y") == "UNKNOWN"


def test_parse_airport_output():
    networks = {obs.id: obs for obs in parse_airport_output(AIRPORT_OUTPUT)}
    assert set(networks) == {"aa:bb:cc:dd:ee:01", "aa:bb:cc:dd:ee:02", "11:22:33:44:55:66"}

    home = networks["aa:bb:cc:dd:ee:01"]
    assert home.value == -40
    assert home.label == "HomeNet"
    assert home.band == "2.4ghz"
    assert home.security == "WPA2(PSK/AES/AES)"

    five = networks["aa:bb:cc:dd:ee:02"]
    assert five.label == "HomeNet 5G"
    assert five.channel == "36,+1"
    assert five.band == "5ghz"

    hidden = networks["11:22:33:44:55:66"]
    assert hidden.label == "<hidden>"
    assert hidden.security == "NONE"


def test_parse_airport_empty():
    assert parse_airport_output("") == []


def test_parse_system_profiler_output():
    raw = profiler_payload(
        [
            {"_name": "Cafe", "spairport_network_channel": "149 (5GHz, 80MHz)",
             "spairport_security_mode": "spairport_security_mode_wpa2_personal",
             "spairport_signal_noise": "-61 dBm / -92 dBm"},
            {"_name": "", "spairport_network_channel": "1 (2GHz, 20MHz)"},
        ],
        current={"_name": "Home", "spairport_network_channel": "6 (2GHz, 20MHz)",
                 "spairport_signal_noise": "-48 dBm / -90 dBm"},
    )
    networks = parse_system_profiler_output(raw)
    by_label = {net["label"]: net for net in networks}
    assert set(by_label) == {"Home", "Cafe", "<hidden>"}
    assert by_label["Cafe"]["value"] == -61
    assert by_label["Cafe"]["channel"] == "149"
    assert by_label["Cafe"]["band"] == "5ghz"
    assert by_label["Cafe"]["security"] == "WPA2 PERSONAL"
    assert by_label["<hidden>"]["value"] is None
    assert by_label["<hidden>"]["estimated"] is True
    assert by_label["Home"]["estimated"] is False


def test_parse_system_profiler_rejects_garbage():
    assert parse_system_profiler_output("not json") == []
    assert parse_system_profiler_output(json.dumps({"other": []})) == []


def test_profiler_estimates_are_flagged_and_low_weight():
    scanner = AirportScanner()
    raw = parse_system_profiler_output(profiler_payload([
        {"_name": "Quiet", "spairport_network_channel": "36"},
        {"_name": "Loud", "spairport_network_channel": "1", "spairport_signal_noise": "-10 dBm / -90 dBm"},
    ]))
    observations = {obs.label: obs for obs in scanner._fill_estimates(raw, now=1000.0)}

    quiet = observations["Quiet"]
    assert quiet.estimated and not quiet.synthetic_id
    assert quiet.scan_source == "system_profiler"
    assert -92 <= quiet.value <= -45

    # measured readings are clamped to a plausible range
    assert observations["Loud"].value == -20
    assert not observations["Loud"].estimated

    assert derive_sample_weight(quiet) == WEIGHT_ESTIMATED
    assert derive_sample_weight(observations["Loud"]) == WEIGHT_LOW_FIDELITY


def test_demo_scanner_is_reproducible():
    first = asyncio.run(DemoScanner(seed=7).scan())
    second = asyncio.run(DemoScanner(seed=7).scan())
    assert [o.value for o in first] == [o.value for o in second]
    assert len({o.id for o in first}) == len(first)
    assert all(-95 <= o.value <= -20 for o in first)
    assert any(o.label == "<hidden>" for o in first)
