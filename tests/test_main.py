"""Tests for the command-line entry point."""

import json

import pytest
import yaml

from ntfy_tv.main import run


def test_check_config_prints_resolved_config(tmp_path, capsys):
    path = tmp_path / "ntfy-tv.yaml"
    path.write_text(yaml.dump({"subscriptions": ["alerts"]}))

    run(["-c", str(path), "--check-config"])

    printed = json.loads(capsys.readouterr().out)
    assert printed["subscriptions"] == ["alerts"]
    assert printed["relay"]["url"] == "wss://ntfy.sh"


def test_missing_config_exits(tmp_path, capsys):
    with pytest.raises(SystemExit) as exc:
        run(["-c", str(tmp_path / "missing.yaml")])
    assert exc.value.code == 1
    assert "Config file not found" in capsys.readouterr().err


def test_invalid_config_exits(tmp_path, capsys):
    path = tmp_path / "bad.yaml"
    path.write_text(yaml.dump({"notifications": {"display_duration_seconds": 30}}))
    with pytest.raises(SystemExit):
        run(["-c", str(path), "--check-config"])
    assert "Configuration error" in capsys.readouterr().err
