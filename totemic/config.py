"""
totemic.config — YAML Configuration Loader
===========================================

Reads ``config.yaml`` for **infrastructure-only** settings: the service
name, the reference clock used for quota day rollover, and the retry
budget of the engagement engine.  Gameplay tuning (refresh allotments per
tier) lives in the ``settings`` database table and is read through
:class:`~totemic.engine.cache.SettingsCache`.

Usage::

    from totemic.config import load_config

    cfg = load_config()          # reads ./config.yaml by default
    print(cfg.max_retries)       # 5
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import yaml

from totemic.engine.ledger import RestoreAnchor


# ---------------------------------------------------------------------------
# Typed settings object
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class TotemicConfig:
    """Immutable configuration loaded from ``config.yaml``."""

    # Identity
    service_name: str

    # Reference clock for calendar-day quota rollover (IANA zone name)
    default_timezone: str = "UTC"

    # Optimistic transaction retry
    max_retries: int = 5
    backoff_base_seconds: float = 0.05
    backoff_max_seconds: float = 2.0

    # Which timestamp a restored like keeps decaying from
    restore_anchor: RestoreAnchor = RestoreAnchor.LAST_UPDATED


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path = "config.yaml") -> TotemicConfig:
    """Read *path* and return a :class:`TotemicConfig` instance.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    KeyError
        If a required key is missing from the YAML file.
    ValueError
        If a value is out of range (negative retries, unknown restore anchor).
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    engagement: dict = raw.get("engagement") or {}
    max_retries = int(engagement.get("max_retries", 5))
    if max_retries < 0:
        raise ValueError(f"engagement.max_retries must be >= 0, got {max_retries}")

    return TotemicConfig(
        service_name=raw["service_name"],
        default_timezone=str(raw.get("default_timezone") or "UTC"),
        max_retries=max_retries,
        backoff_base_seconds=float(engagement.get("backoff_base_seconds", 0.05)),
        backoff_max_seconds=float(engagement.get("backoff_max_seconds", 2.0)),
        restore_anchor=RestoreAnchor(engagement.get("restore_anchor", RestoreAnchor.LAST_UPDATED)),
    )
