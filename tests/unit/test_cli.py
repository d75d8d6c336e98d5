# tests/unit/test_cli.py
from __future__ import annotations

import json

import pytest

from geoguard.cli.main import ExitCode, main
from geoguard.settings import AppSettings


def _settings() -> AppSettings:
    return AppSettings(_env_file=None)


def run(argv, capsys):
    code = main(argv, settings_factory=_settings)
    out = capsys.readouterr()
    return code, out.out, out.err


def test_version(capsys):
    code, out, _ = run(["version"], capsys)
    assert code == ExitCode.OK
    assert json.loads(out)["app"] == "geoguard-core"


def test_policy_show_json(capsys, tmp_path):
    f = tmp_path / "policy.json"
    f.write_text(json.dumps({"enabled": True, "allowedCountries": ["us"]}), encoding="utf-8")
    code, out, _ = run(["policy", "show", "--json", "--policy", str(f)], capsys)
    assert code == ExitCode.OK
    data = json.loads(out)
    assert data["enabled"] is True
    assert data["allowed_countries"] == ["US"]
    assert data["country_mode"] == "allowlist"


def test_policy_show_text(capsys):
    code, out, _ = run(["policy", "show"], capsys)
    assert code == ExitCode.OK
    assert "country mode:       blocklist" in out


def test_check_blocked_country(capsys):
    code, out, _ = run(["check", "--enable", "--ip", "198.51.100.9", "--country", "RU", "--audit"], capsys)
    assert code == ExitCode.BLOCKED
    data = json.loads(out)
    assert data["decision"]["reason"] == "country_blocked"
    assert data["audit"][0]["event"] == "location_blocked"


def test_check_allowed(capsys):
    code, out, _ = run(["check", "--enable", "--ip", "198.51.100.9", "--country", "DE", "--risk", "10"], capsys)
    assert code == ExitCode.OK
    assert json.loads(out)["decision"]["blocked"] is False


@pytest.mark.parametrize("fail_open, expected", [(False, ExitCode.BLOCKED), (True, ExitCode.OK)])
def test_check_lookup_failure(capsys, tmp_path, fail_open, expected):
    f = tmp_path / "policy.json"
    f.write_text(json.dumps({"enabled": True, "failOpen": fail_open}), encoding="utf-8")
    code, out, _ = run(["check", "--ip", "198.51.100.9", "--lookup-fails", "--policy", str(f)], capsys)
    assert code == expected
    assert "error" in json.loads(out)


@pytest.mark.parametrize("content", ["{not json", "[1, 2]", json.dumps({"blockedContinents": ["EU"]})])
def test_bad_policy_file_is_config_error(capsys, tmp_path, content):
    f = tmp_path / "policy.json"
    f.write_text(content, encoding="utf-8")
    code, _, err = run(["policy", "show", "--policy", str(f)], capsys)
    assert code == ExitCode.CONFIG_ERROR
    assert "Config error" in err


def test_missing_policy_file_is_config_error(capsys, tmp_path):
    code, _, _ = run(["policy", "show", "--policy", str(tmp_path / "absent.json")], capsys)
    assert code == ExitCode.CONFIG_ERROR


def test_config_show_hides_admin_keys(capsys):
    def settings_with_key() -> AppSettings:
        return AppSettings(_env_file=None, admin={"api_keys": "super-secret"})

    code = main(["config", "show"], settings_factory=settings_with_key)
    out = capsys.readouterr().out
    assert code == ExitCode.OK
    data = json.loads(out)
    assert data["admin"]["api_keys"] == "***"
    assert data["policy"]["risk_threshold"] == 70
    assert "super-secret" not in out
