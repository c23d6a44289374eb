from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return bool(default)
    s = str(raw).strip().lower()
    if s in {"1", "true", "yes", "y", "on"}:
        return True
    if s in {"0", "false", "no", "n", "off"}:
        return False
    return bool(default)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return int(default)
    try:
        return int(str(raw).strip())
    except Exception:
        return int(default)


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return float(default)
    try:
        return float(str(raw).strip())
    except Exception:
        return float(default)


def _env_str(name: str, default: str) -> str:
    raw = os.getenv(name)
    if raw is None:
        return str(default)
    s = str(raw).strip()
    return s if s else str(default)


def _inventory_text_default() -> str:
    # Inline text wins over the file; ACCOUNTS_LIST is the name older deployments used.
    inline = os.getenv("TUNNEL_WATCH_INVENTORY") or os.getenv("ACCOUNTS_LIST") or ""
    if inline.strip():
        return inline
    path = os.getenv("TUNNEL_WATCH_INVENTORY_FILE", "").strip()
    if path and Path(path).is_file():
        return Path(path).read_text(encoding="utf-8")
    return ""


@dataclass(frozen=True)
class Settings:
    inventory_text: str = field(default_factory=_inventory_text_default)

    # Notification gateway is disabled unless both are set.
    telegram_bot_token: str = field(default_factory=lambda: os.getenv("TELEGRAM_BOT_TOKEN", "").strip())
    telegram_chat_id: str = field(default_factory=lambda: os.getenv("TELEGRAM_CHAT_ID", "").strip())
    # Compared against the X-Telegram-Bot-Api-Secret-Token header of inbound callbacks.
    webhook_secret: str = field(default_factory=lambda: os.getenv("TELEGRAM_WEBHOOK_SECRET", "").strip())
    # Bearer token for the manual trigger/mute endpoints. Empty leaves them open.
    admin_token: str = field(default_factory=lambda: os.getenv("TUNNEL_WATCH_ADMIN_TOKEN", "").strip())

    max_concurrent: int = field(default_factory=lambda: _env_int("TUNNEL_WATCH_MAX_CONCURRENT", 5))
    fetch_timeout_seconds: float = field(
        default_factory=lambda: _env_float("TUNNEL_WATCH_FETCH_TIMEOUT_SECONDS", 8.0)
    )
    remediation_timeout_seconds: float = field(
        default_factory=lambda: _env_float("TUNNEL_WATCH_REMEDIATION_TIMEOUT_SECONDS", 15.0)
    )

    # Policy
    daily_cap: int = field(default_factory=lambda: _env_int("TUNNEL_WATCH_DAILY_CAP", 3))
    mute_hours: float = field(default_factory=lambda: _env_float("TUNNEL_WATCH_MUTE_HOURS", 24.0))
    quota_timezone: str = field(default_factory=lambda: _env_str("TUNNEL_WATCH_TIMEZONE", "Asia/Shanghai"))
    # When true a mute only silences the alert; remediation still runs through the quota gate.
    muted_units_remediate: bool = field(
        default_factory=lambda: _env_bool("TUNNEL_WATCH_MUTED_UNITS_REMEDIATE", False)
    )
    alert_on_fetch_error: bool = field(
        default_factory=lambda: _env_bool("TUNNEL_WATCH_ALERT_ON_FETCH_ERROR", True)
    )

    state_path: str = field(
        default_factory=lambda: _env_str("TUNNEL_WATCH_STATE_PATH", "/data/tunnel-watch-state.json")
    )
    # 0 disables the timer trigger.
    interval_seconds: int = field(default_factory=lambda: _env_int("TUNNEL_WATCH_INTERVAL_SECONDS", 300))

    workflow_file: str = field(default_factory=lambda: _env_str("TUNNEL_WATCH_WORKFLOW_FILE", "main.yml"))
    default_branch: str = field(default_factory=lambda: _env_str("TUNNEL_WATCH_DEFAULT_BRANCH", "main"))

    cloudflare_api_base: str = field(
        default_factory=lambda: _env_str("CLOUDFLARE_API_BASE", "https://api.cloudflare.com/client/v4")
    )
    github_api_base: str = field(default_factory=lambda: _env_str("GITHUB_API_BASE", "https://api.github.com"))
    telegram_api_base: str = field(
        default_factory=lambda: _env_str("TELEGRAM_API_BASE", "https://api.telegram.org")
    )

    @property
    def telegram_enabled(self) -> bool:
        return bool(self.telegram_bot_token and self.telegram_chat_id)

    @property
    def mute_ttl_seconds(self) -> float:
        return max(1.0, float(self.mute_hours) * 3600.0)


def load_yaml_config(path: Path) -> dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError("Config YAML must be a mapping")
    return data


def load_settings(path: Path | None = None) -> Settings:
    """Env-backed settings, overlaid by a YAML mapping when `path` is given.

    Unknown keys in the YAML file are rejected so typos do not silently fall back to defaults.
    """
    if path is None:
        return Settings()
    data = load_yaml_config(path)
    known = {f.name for f in fields(Settings)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ValueError(f"Unknown settings keys in {path}: {', '.join(unknown)}")
    return Settings(**data)
