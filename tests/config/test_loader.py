from __future__ import annotations

import json
from pathlib import Path

import pytest

from imap_to_filesystem.config.loader import AppConfig, load_config, save_config
from imap_to_filesystem.config.paths import ENV_IMAP_PASSWORD, ENV_IMAP_USER
from imap_to_filesystem.errors import ConfigError, ConfigMissing

SAMPLE = {
    "imap": {
        "user": "me@example.test",
        "password": "secret",
        "host": "imap.example.test",
        "port": 993,
        "tls": True,
    },
    "filters": [
        {
            "name": "Invoices",
            "rules": ["UNSEEN", ["FROM", "billing@example.test"]],
            "path": "/srv/invoices",
            "renameRule": "%YEAR%-%MONTH%-%DAY%_%NAME%",
            "mailBoxToWatch": "Billing",
            "mailBoxDone": "Billing/Done",
            "filterFilename": ".pdf",
        },
        {"name": "Old", "rules": ["ALL"], "path": "/tmp", "renameRule": "", "disabled": True},
    ],
    "logger": {"debug": True, "useConsole": False},
}


def _write(tmp_path: Path, data: object) -> Path:
    path = tmp_path / "config.json"
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


@pytest.fixture(autouse=True)
def _no_env_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv(ENV_IMAP_USER, raising=False)
    monkeypatch.delenv(ENV_IMAP_PASSWORD, raising=False)


def test_load_config_maps_original_keys(tmp_path: Path) -> None:
    config = load_config(_write(tmp_path, SAMPLE))

    imap = config.require_imap()
    assert (imap.host, imap.port, imap.user, imap.password, imap.tls) == (
        "imap.example.test",
        993,
        "me@example.test",
        "secret",
        True,
    )
    first, second = config.filters
    assert first.name == "Invoices"
    assert first.criteria == ("UNSEEN", ("FROM", "billing@example.test"))
    assert first.destination_path == "/srv/invoices"
    assert first.rename_template == "%YEAR%-%MONTH%-%DAY%_%NAME%"
    assert first.watched_mailbox == "Billing"
    assert first.done_mailbox == "Billing/Done"
    assert first.filename_filter == ".pdf"
    assert first.disabled is False
    assert second.disabled is True
    assert config.logger.debug is True
    assert config.logger.use_console is False
    assert config.logger.use_seq is False


def test_filter_defaults_follow_the_config_format(tmp_path: Path) -> None:
    config = load_config(_write(tmp_path, {"imap": SAMPLE["imap"], "filters": [{}]}))

    rule = config.filters[0]
    assert (rule.name, rule.criteria, rule.destination_path, rule.rename_template) == ("Filter", (), ".", "")
    assert rule.watched_mailbox is None


def test_missing_file_is_config_missing(tmp_path: Path) -> None:
    with pytest.raises(ConfigMissing):
        load_config(tmp_path / "nope.json")


def test_missing_imap_section_is_reported_on_access(tmp_path: Path) -> None:
    config = load_config(_write(tmp_path, {"filters": []}))

    with pytest.raises(ConfigMissing):
        config.require_imap()


def test_invalid_documents_raise_config_error(tmp_path: Path) -> None:
    bad_json = tmp_path / "bad.json"
    bad_json.write_text("{", encoding="utf-8")

    with pytest.raises(ConfigError):
        load_config(bad_json)
    with pytest.raises(ConfigError):
        load_config(_write(tmp_path, {"filters": [{"rules": [["OR", "SEEN"]]}]}))
    with pytest.raises(ConfigError):
        load_config(_write(tmp_path, {"filters": [{"disabled": "yes"}]}))


def test_env_overrides_credentials(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv(ENV_IMAP_USER, "env-user")
    monkeypatch.setenv(ENV_IMAP_PASSWORD, "env-secret")

    imap = load_config(_write(tmp_path, SAMPLE)).require_imap()

    assert (imap.user, imap.password) == ("env-user", "env-secret")


def test_save_config_writes_loadable_document(tmp_path: Path) -> None:
    config = load_config(_write(tmp_path, SAMPLE))
    target = tmp_path / "out" / "config.json"

    save_config(target, config)
    payload = json.loads(target.read_text(encoding="utf-8"))

    assert payload["filters"][0]["rules"] == ["UNSEEN", ["FROM", "billing@example.test"]]
    assert payload["filters"][0]["mailBoxToWatch"] == "Billing"
    assert "mailBoxToWatch" not in payload["filters"][1]
    assert load_config(target) == config


def test_empty_config_has_no_imap() -> None:
    assert AppConfig().imap is None
