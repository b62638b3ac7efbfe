"""
rogrouper.config — YAML Configuration Loader
=============================================

Reads ``config.yaml`` for soft, non-secret settings (sweep cadence, cache
lifetimes, bootstrap admins).  Secrets (OAuth client, bot cookie, database
URL, JWT secret) come from the environment / ``.env``.

Usage::

    from rogrouper.config import load_config

    cfg = load_config()          # reads ./config.yaml by default
    print(cfg.suspension_sweep_interval_seconds)   # 60
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

import yaml


# ---------------------------------------------------------------------------
# Typed settings object
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class RogrouperConfig:
    """Immutable configuration loaded from ``config.yaml``."""

    # Dashboard
    dashboard_port: int = 8000

    # Roblox ids written to siteConfig/admins on first startup only
    bootstrap_admin_ids: tuple[str, ...] = field(default_factory=tuple)

    # Suspension sweep cadence; 0 disables the background loop
    suspension_sweep_interval_seconds: int = 60

    # How long the bot's own profile stays cached
    bot_info_ttl_seconds: int = 3600

    # Timeout for every outbound Roblox call
    http_timeout_seconds: float = 10.0


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path = "config.yaml") -> RogrouperConfig:
    """Read *path* and return a :class:`RogrouperConfig` instance.

    Every key is optional; missing keys fall back to the dataclass defaults.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    ValueError
        If a numeric setting is negative.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    defaults = RogrouperConfig()
    cfg = RogrouperConfig(
        dashboard_port=int(raw.get("dashboard_port", defaults.dashboard_port)),
        bootstrap_admin_ids=tuple(str(i) for i in raw.get("bootstrap_admin_ids") or ()),
        suspension_sweep_interval_seconds=int(
            raw.get("suspension_sweep_interval_seconds", defaults.suspension_sweep_interval_seconds)
        ),
        bot_info_ttl_seconds=int(raw.get("bot_info_ttl_seconds", defaults.bot_info_ttl_seconds)),
        http_timeout_seconds=float(raw.get("http_timeout_seconds", defaults.http_timeout_seconds)),
    )

    for name in (
        "suspension_sweep_interval_seconds",
        "bot_info_ttl_seconds",
        "http_timeout_seconds",
    ):
        if getattr(cfg, name) < 0:
            raise ValueError(f"{name} must be >= 0")
    return cfg
