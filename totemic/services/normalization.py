"""
totemic.services.normalization — Legacy Record Shape Normalization
===================================================================

The single place that knows about historical record layouts.  Every post
document passes through :func:`normalize_answers` on its way out of the
record store, so the engine only ever sees the canonical shape described
in :mod:`totemic.engine.ledger`.

Layouts handled:

* like-event user key: ``userId`` | ``firebaseUid`` | ``userID`` | ``user_id``
* label list on an answer: ``totems`` | ``labels``; label name:
  ``name`` | ``totemName``
* timestamps: epoch ms (int/float/numeric string), ISO-8601 strings,
  Firestore-style ``{"seconds": ..., "nanoseconds": ...}`` maps
* parallel arrays ``likedBy`` / ``likeTimes`` / ``likeValues`` (oldest
  totem shape) when no ``likeHistory`` is present
* duplicate events for one user, collapsed into one

Normalization is idempotent: a canonical document comes back equal.
"""

from __future__ import annotations

import logging
import math
from datetime import UTC, datetime
from typing import Any

from totemic.constants import DEFAULT_LIKE_VALUE, MembershipTier

logger = logging.getLogger(__name__)

USER_ID_KEYS: tuple[str, ...] = ("userId", "firebaseUid", "userID", "user_id")
LABEL_LIST_KEYS: tuple[str, ...] = ("totems", "labels")
LABEL_NAME_KEYS: tuple[str, ...] = ("name", "totemName")

# Keys consumed while mapping; anything else on a label is carried through
_LEGACY_LABEL_KEYS = frozenset({"totemName", "likedBy", "likeTimes", "likeValues"})


def _first(raw: dict[str, Any], keys: tuple[str, ...]) -> Any:
    for key in keys:
        value = raw.get(key)
        if value not in (None, ""):
            return value
    return None


# ---------------------------------------------------------------------------
# Scalars
# ---------------------------------------------------------------------------
def normalize_timestamp(value: Any) -> int | None:
    """Coerce any historical timestamp representation to epoch milliseconds."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        if not math.isfinite(value):
            logger.warning("Non-finite timestamp %r — dropping", value)
            return None
        return int(value)
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return int(value.timestamp() * 1000)
    if isinstance(value, dict):
        seconds = value.get("seconds", value.get("_seconds"))
        if seconds is None:
            return None
        nanos = value.get("nanoseconds", value.get("_nanoseconds", 0)) or 0
        return int(seconds) * 1000 + int(nanos) // 1_000_000
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            return int(float(text))
        except OverflowError:
            logger.warning("Non-finite timestamp %r — dropping", value)
            return None
        except ValueError:
            pass
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            logger.warning("Unparseable timestamp %r — dropping", value)
            return None
        return normalize_timestamp(parsed)
    logger.warning("Unsupported timestamp type %s — dropping", type(value).__name__)
    return None


# ---------------------------------------------------------------------------
# Like events
# ---------------------------------------------------------------------------
_FALSE_STRINGS = frozenset({"false", "0", "no", "off", ""})


def _parse_bool(value: Any) -> bool:
    """Stored flags are sometimes strings; ``bool("false")`` is True."""
    if isinstance(value, str):
        return value.strip().lower() not in _FALSE_STRINGS
    return bool(value)


def normalize_like_event(raw: dict[str, Any], fallback_ts: int | None = None) -> dict[str, Any] | None:
    """Map one historical like record to the canonical event dict.

    Returns ``None`` for records with no recoverable user id or timestamp.
    """
    user_id = _first(raw, USER_ID_KEYS)
    if user_id is None:
        logger.warning("Like event without a user id — dropping: %r", raw)
        return None

    original = normalize_timestamp(raw.get("originalTimestamp"))
    last = normalize_timestamp(raw.get("lastUpdatedAt"))
    if original is None:
        original = last if last is not None else fallback_ts
    if original is None:
        logger.warning("Like event for %r without timestamps — dropping", user_id)
        return None
    if last is None or last < original:
        last = original

    value = raw.get("value", DEFAULT_LIKE_VALUE)
    try:
        value = float(value)
    except (TypeError, ValueError):
        value = DEFAULT_LIKE_VALUE

    return {
        "userId": str(user_id),
        "originalTimestamp": original,
        "lastUpdatedAt": last,
        "isActive": _parse_bool(raw.get("isActive", True)),
        "value": value,
    }


def _collapse_duplicates(events: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Merge events sharing a user id, keeping first-seen order."""
    merged: dict[str, dict[str, Any]] = {}
    for event in events:
        current = merged.get(event["userId"])
        if current is None:
            merged[event["userId"]] = dict(event)
            continue
        logger.info("Collapsing duplicate like events for user %r", event["userId"])
        current["originalTimestamp"] = min(current["originalTimestamp"], event["originalTimestamp"])
        current["lastUpdatedAt"] = max(current["lastUpdatedAt"], event["lastUpdatedAt"])
        current["isActive"] = current["isActive"] or event["isActive"]
    return list(merged.values())


def _events_from_parallel_arrays(raw: dict[str, Any]) -> list[dict[str, Any]]:
    liked_by = raw.get("likedBy") or []
    like_times = raw.get("likeTimes") or []
    like_values = raw.get("likeValues") or []
    events = []
    for idx, user_id in enumerate(liked_by):
        ts = like_times[idx] if idx < len(like_times) else None
        value = like_values[idx] if idx < len(like_values) else DEFAULT_LIKE_VALUE
        events.append({
            "userId": user_id,
            "originalTimestamp": ts,
            "lastUpdatedAt": ts,
            "isActive": True,
            "value": value,
        })
    return events


# ---------------------------------------------------------------------------
# Labels, answers
# ---------------------------------------------------------------------------
def normalize_label(raw: dict[str, Any]) -> dict[str, Any] | None:
    name = _first(raw, LABEL_NAME_KEYS)
    if name is None:
        logger.warning("Totem without a name — dropping: %r", raw)
        return None

    fallback_ts = normalize_timestamp(raw.get("createdAt"))
    history = raw.get("likeHistory")
    if history is None:
        history = _events_from_parallel_arrays(raw)

    events = []
    for item in history:
        if not isinstance(item, dict):
            continue
        event = normalize_like_event(item, fallback_ts)
        if event is not None:
            events.append(event)
    events = _collapse_duplicates(events)

    label = {k: v for k, v in raw.items() if k not in _LEGACY_LABEL_KEYS}
    label["name"] = str(name)
    label["likeHistory"] = events
    label["crispness"] = float(raw.get("crispness") or 0.0)
    label["likes"] = sum(1 for e in events if e["isActive"])
    return label


def normalize_answer(raw: dict[str, Any], index: int) -> dict[str, Any]:
    labels_raw = _first(raw, LABEL_LIST_KEYS) or []
    labels = []
    for item in labels_raw:
        if isinstance(item, str):
            item = {"name": item}
        if not isinstance(item, dict):
            continue
        label = normalize_label(item)
        if label is not None:
            labels.append(label)

    answer = {k: v for k, v in raw.items() if k not in LABEL_LIST_KEYS}
    answer["id"] = str(raw.get("id") or f"answer-{index}")
    answer["totems"] = labels
    return answer


def normalize_answers(raw_answers: Any) -> list[dict[str, Any]]:
    """Canonical answers array for a post document of any historical shape."""
    if not isinstance(raw_answers, list):
        return []
    return [
        normalize_answer(raw, idx)
        for idx, raw in enumerate(raw_answers)
        if isinstance(raw, dict)
    ]


# ---------------------------------------------------------------------------
# Profiles
# ---------------------------------------------------------------------------
def normalize_profile(raw: dict[str, Any], now: int) -> dict[str, Any]:
    """Map a legacy user-profile record to the ``profiles`` row fields."""
    user_id = _first(raw, USER_ID_KEYS)
    if user_id is None:
        raise ValueError("Profile record has no user id")

    tier = raw.get("membershipTier") or MembershipTier.FREE.value
    if tier not in {t.value for t in MembershipTier}:
        logger.warning("Unknown membership tier %r for %r — using free", tier, user_id)
        tier = MembershipTier.FREE.value

    remaining = raw.get("refreshesRemaining")
    try:
        remaining = max(0, int(remaining))
    except (TypeError, ValueError):
        remaining = None

    reset_at = normalize_timestamp(raw.get("refreshResetTime", raw.get("refreshResetAt")))
    return {
        "user_id": str(user_id),
        "membership_tier": tier,
        "refreshes_remaining": remaining,
        "refresh_reset_at": reset_at if reset_at is not None else now,
        "timezone": raw.get("timezone"),
    }
