from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from imap_to_filesystem.config.paths import ENV_IMAP_PASSWORD, ENV_IMAP_USER
from imap_to_filesystem.errors import ConfigError, ConfigMissing
from imap_to_filesystem.imap.client import ImapConfig
from imap_to_filesystem.rules.core import FilterRule, freeze_criteria
from imap_to_filesystem.rules.criteria import normalize_criteria

DEFAULT_SEQ_URL = "http://localhost:5341"


@dataclass(frozen=True)
class LoggerConfig:
    server_url: str = DEFAULT_SEQ_URL
    api_key: str = ""
    use_seq: bool = False
    debug: bool = False
    use_console: bool = True


@dataclass(frozen=True)
class AppConfig:
    imap: Optional[ImapConfig] = None
    filters: List[FilterRule] = field(default_factory=list)
    logger: LoggerConfig = field(default_factory=LoggerConfig)

    def require_imap(self) -> ImapConfig:
        if self.imap is None:
            raise ConfigMissing("No imap configuration found.")
        return self.imap


def _as_bool(raw: Any, source: str, default: bool) -> bool:
    if raw is None:
        return default
    if isinstance(raw, bool):
        return raw
    raise ConfigError(f"{source} must be true or false, got {raw!r}")


def _as_str(raw: Any, source: str, default: str = "") -> str:
    if raw is None:
        return default
    if not isinstance(raw, str):
        raise ConfigError(f"{source} must be a string, got {raw!r}")
    return raw


def _as_optional_str(raw: Any, source: str) -> Optional[str]:
    # Empty strings mean "not set", as in the config files people already have.
    value = _as_str(raw, source).strip()
    return value or None


def _as_number(raw: Any, source: str, default: float) -> float:
    if raw is None:
        return default
    if isinstance(raw, bool) or not isinstance(raw, (int, float)) or raw <= 0:
        raise ConfigError(f"{source} must be a positive number, got {raw!r}")
    return raw


def _parse_imap(raw: Any) -> Optional[ImapConfig]:
    if raw is None:
        return None
    if not isinstance(raw, dict):
        raise ConfigError("imap must be an object")

    user = os.getenv(ENV_IMAP_USER) or _as_str(raw.get("user"), "imap.user")
    password = os.getenv(ENV_IMAP_PASSWORD) or _as_str(raw.get("password"), "imap.password")
    host = _as_str(raw.get("host"), "imap.host").strip()
    if not host:
        return None

    return ImapConfig(
        host=host,
        user=user,
        password=password,
        port=int(_as_number(raw.get("port"), "imap.port", 993)),
        tls=_as_bool(raw.get("tls"), "imap.tls", True),
        timeout=float(_as_number(raw.get("timeout"), "imap.timeout", 30.0)),
        idle_renew_seconds=float(_as_number(raw.get("idleRenewSeconds"), "imap.idleRenewSeconds", 300.0)),
    )


def _parse_filter(raw: Any, index: int) -> FilterRule:
    source = f"filters[{index}]"
    if not isinstance(raw, dict):
        raise ConfigError(f"{source} must be an object")

    rules = raw.get("rules", [])
    if not isinstance(rules, list):
        raise ConfigError(f"{source}.rules must be a list")
    criteria = freeze_criteria(rules)
    # Fail at load time rather than on the first sweep.
    try:
        normalize_criteria(criteria)
    except ConfigError as exc:
        raise ConfigError(f"{source}.rules: {exc}") from exc

    return FilterRule(
        name=_as_str(raw.get("name"), f"{source}.name", "Filter"),
        criteria=criteria,
        destination_path=_as_str(raw.get("path"), f"{source}.path", "."),
        rename_template=_as_str(raw.get("renameRule"), f"{source}.renameRule"),
        watched_mailbox=_as_optional_str(raw.get("mailBoxToWatch"), f"{source}.mailBoxToWatch"),
        done_mailbox=_as_optional_str(raw.get("mailBoxDone"), f"{source}.mailBoxDone"),
        filename_filter=_as_optional_str(raw.get("filterFilename"), f"{source}.filterFilename"),
        disabled=_as_bool(raw.get("disabled"), f"{source}.disabled", False),
    )


def _parse_logger(raw: Any) -> LoggerConfig:
    if raw is None:
        return LoggerConfig()
    if not isinstance(raw, dict):
        raise ConfigError("logger must be an object")
    return LoggerConfig(
        server_url=_as_str(raw.get("serverUrl"), "logger.serverUrl") or DEFAULT_SEQ_URL,
        api_key=_as_str(raw.get("apiKey"), "logger.apiKey"),
        use_seq=_as_bool(raw.get("useSeq"), "logger.useSeq", False),
        debug=_as_bool(raw.get("debug"), "logger.debug", False),
        use_console=_as_bool(raw.get("useConsole"), "logger.useConsole", True),
    )


def parse_config(data: Any) -> AppConfig:
    if not isinstance(data, dict):
        raise ConfigError("Config root must be an object")

    filters = data.get("filters") or []
    if not isinstance(filters, list):
        raise ConfigError("filters must be a list")

    return AppConfig(
        imap=_parse_imap(data.get("imap")),
        filters=[_parse_filter(raw, index) for index, raw in enumerate(filters)],
        logger=_parse_logger(data.get("logger")),
    )


def load_config(path: Path) -> AppConfig:
    if not path.exists():
        raise ConfigMissing(f"Config file not found: {path}")
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Invalid JSON in {path}: {exc}") from exc
    return parse_config(data)


def _dump_filter(rule: FilterRule) -> Dict[str, Any]:
    out: Dict[str, Any] = {
        "name": rule.name,
        "rules": rule.criteria,
        "path": rule.destination_path,
        "renameRule": rule.rename_template,
    }
    if rule.watched_mailbox:
        out["mailBoxToWatch"] = rule.watched_mailbox
    if rule.done_mailbox:
        out["mailBoxDone"] = rule.done_mailbox
    if rule.filename_filter:
        out["filterFilename"] = rule.filename_filter
    if rule.disabled:
        out["disabled"] = True
    return out


def dump_config(config: AppConfig) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    if config.imap is not None:
        out["imap"] = {
            "user": config.imap.user,
            "password": config.imap.password,
            "host": config.imap.host,
            "port": config.imap.port,
            "tls": config.imap.tls,
            "timeout": config.imap.timeout,
            "idleRenewSeconds": config.imap.idle_renew_seconds,
        }
    out["filters"] = [_dump_filter(rule) for rule in config.filters]
    out["logger"] = {
        "serverUrl": config.logger.server_url,
        "apiKey": config.logger.api_key,
        "useSeq": config.logger.use_seq,
        "debug": config.logger.debug,
        "useConsole": config.logger.use_console,
    }
    return out


def save_config(path: Path, config: AppConfig) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    # Tuples (frozen criteria) serialize as JSON arrays.
    path.write_text(json.dumps(dump_config(config), indent=2), encoding="utf-8")
