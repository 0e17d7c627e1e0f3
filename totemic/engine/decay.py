"""
totemic.engine.decay — Crispness Decay Model
=============================================

Pure functions, no DB or clock access: callers pass ``now`` explicitly.

A like's weight falls linearly from 1.0 (updated "now") to 0.0 at exactly
one week of inactivity and stays at zero afterwards.  Crispness is the
weight-averaged like value of the *active* events, as a percentage::

    crispness = 100 * Σ(weight · value) / Σ weight

Likes at zero weight drop out of both sums.  When every active like has
decayed to zero the ratio is 0/0, defined as 0.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import TYPE_CHECKING

from totemic.constants import WEEK_MS

if TYPE_CHECKING:
    from totemic.engine.ledger import LikeEvent

__all__ = ["crispness", "weight"]


def weight(now: int, last_updated_at: int, window_ms: int = WEEK_MS) -> float:
    """Freshness weight in ``[0.0, 1.0]`` of a like last updated at *last_updated_at*.

    A timestamp in the future (clock skew) is treated as "now".
    """
    elapsed = max(0, now - last_updated_at)
    return max(0.0, 1.0 - elapsed / window_ms)


def crispness(events: Iterable[LikeEvent], now: int, window_ms: int = WEEK_MS) -> float:
    """Time-weighted average like value of the active *events*, 0–100."""
    total_weight = 0.0
    weighted_sum = 0.0
    for event in events:
        if not event.is_active:
            continue
        w = weight(now, event.last_updated_at, window_ms)
        if w <= 0.0:
            continue
        weighted_sum += w * event.value
        total_weight += w

    if total_weight <= 0.0:
        return 0.0
    return 100.0 * weighted_sum / total_weight
