"""
totemic.engine.transitions — Like State Machine
================================================

Per (label, user) pair::

    NO_HISTORY ──like──▶ ACTIVE ◀──restore / refresh── INACTIVE
                           │                               ▲
                           └────────────unlike─────────────┘

A plain toggle on an INACTIVE pair never reactivates silently: it stops at
``DECIDE`` and the caller must come back with an explicit restore (keep
the stale decay clock, free) or refresh (reset the clock, costs quota).
"""

from __future__ import annotations

import enum

from totemic.engine.ledger import Label, find_event
from totemic.errors import ValidationError


class LikeState(enum.StrEnum):
    NO_HISTORY = "no_history"
    ACTIVE = "active"
    INACTIVE = "inactive"


class Action(enum.StrEnum):
    """What an engine call did (or, for ``DECIDE``, is waiting on)."""
    LIKE = "like"
    UNLIKE = "unlike"
    DECIDE = "decide"
    RESTORE = "restore"
    REFRESH = "refresh"


def classify(label: Label, user_id: str) -> LikeState:
    event = find_event(label, user_id)
    if event is None:
        return LikeState.NO_HISTORY
    return LikeState.ACTIVE if event.is_active else LikeState.INACTIVE


def plan_toggle(state: LikeState) -> Action:
    """Transition a plain toggle takes from *state*."""
    if state is LikeState.NO_HISTORY:
        return Action.LIKE
    if state is LikeState.ACTIVE:
        return Action.UNLIKE
    return Action.DECIDE


def check_restore(state: LikeState, label_name: str) -> None:
    """Restore is only defined from INACTIVE."""
    if state is LikeState.NO_HISTORY:
        raise ValidationError(f"You haven't liked {label_name!r} before, so there is nothing to restore.")
    if state is LikeState.ACTIVE:
        raise ValidationError(f"You've already liked {label_name!r}!")


def check_refresh(state: LikeState, label_name: str) -> None:
    """Refresh needs an existing like, active or not."""
    if state is LikeState.NO_HISTORY:
        raise ValidationError(f"You haven't liked {label_name!r} yet!")
