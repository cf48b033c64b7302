import json
import logging

import pytest

from wt import cli

from helpers import FakeScanner


def test_parse_args_defaults():
    args = cli.parse_args(["analyze"])
    assert args.command == "analyze"
    assert args.duration == 120
    assert args.scan_interval == 1000
    assert args.as_json is False
    assert args.out is None
    assert args.demo is False

    args = cli.parse_args(["serve", "--demo"])
    assert args.port == 8787
    assert args.demo is True


def test_analyze_demo_writes_markdown(tmp_path, capsys):
    out = tmp_path / "report.md"
    cli.main(["analyze", "--demo", "--duration", "1", "--scan-interval", "300", "--out", str(out)])

    report = out.read_text()
    assert report.startswith("# Wi-Fi Topology Report")
    assert "- Scan source: demo" in report
    printed = capsys.readouterr().out
    assert "Wi-Fi topology analyze summary" in printed
    assert f"Report: {out}" in printed


def test_analyze_json_report(tmp_path, capsys):
    out = tmp_path / "report.json"
    cli.main(["analyze", "--demo", "--duration", "0.6", "--scan-interval", "300", "--json", "--out", str(out)])
    summary = json.loads(out.read_text())
    assert summary["mode"] == "analyze"
    assert summary["apsObserved"] == 10
    assert summary["scanCount"] >= 2


def test_analyze_without_networks_exits_2(tmp_path, monkeypatch):
    monkeypatch.setattr(cli, "make_scanner", lambda demo, config: FakeScanner([]))
    with pytest.raises(SystemExit) as info:
        cli.main(["analyze", "--duration", "0.4", "--scan-interval", "300", "--out", str(tmp_path / "r.md")])
    assert info.value.code == 2
    assert not (tmp_path / "r.md").exists()


def test_analyze_rejects_bad_interval(tmp_path):
    with pytest.raises(SystemExit) as info:
        cli.main(["analyze", "--demo", "--scan-interval", "50", "--out", str(tmp_path / "r.md")])
    assert info.value.code == 1


def test_analyze_rejects_non_positive_duration(tmp_path):
    with pytest.raises(SystemExit) as info:
        cli.main(["analyze", "--demo", "--duration", "0", "--out", str(tmp_path / "r.md")])
    assert info.value.code == 1


def test_version_logs(caplog):
    with caplog.at_level(logging.INFO):
        cli.main(["version"])
    assert "wt version" in caplog.text
