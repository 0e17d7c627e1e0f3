"""
totemic.engine.ledger — Like Ledger Value Types & Operations
=============================================================

In-memory model of one Post document and the ledger operations that
mutate a label's like history.  No DB I/O: the engagement service loads a
:class:`PostDocument`, applies these functions, and hands the result back
to the record store.

Persisted shape (camelCase keys, JSON)::

    Post.answers = [
        {"id": ..., "totems": [
            {"name": ..., "crispness": ..., "likes": ...,
             "likeHistory": [
                 {"userId": ..., "originalTimestamp": ..., "lastUpdatedAt": ...,
                  "isActive": ..., "value": ...},
             ]},
        ]},
    ]

Documents are assumed canonical here; legacy layouts are mapped by
:mod:`totemic.services.normalization` before they reach this module.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field, replace
from typing import Any

from totemic.constants import DEFAULT_LIKE_VALUE
from totemic.engine.decay import crispness as compute_crispness
from totemic.errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

__all__ = [
    "Answer",
    "Label",
    "LikeEvent",
    "PostDocument",
    "RestoreAnchor",
    "active_events",
    "find_event",
    "like_count",
    "locate_label",
    "recompute_label",
    "touch",
    "upsert_event",
]


class RestoreAnchor(enum.StrEnum):
    """Which stored timestamp a restored (not refreshed) like decays from."""
    LAST_UPDATED = "last_updated"
    ORIGINAL = "original"


# ---------------------------------------------------------------------------
# Value types
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class LikeEvent:
    """One user's like on one label.  Never deleted, only toggled."""

    user_id: str
    original_timestamp: int
    last_updated_at: int
    is_active: bool = True
    value: float = DEFAULT_LIKE_VALUE

    def __post_init__(self) -> None:
        if self.last_updated_at < self.original_timestamp:
            raise ValueError(
                f"lastUpdatedAt ({self.last_updated_at}) precedes "
                f"originalTimestamp ({self.original_timestamp}) for {self.user_id!r}"
            )

    def to_dict(self) -> dict[str, Any]:
        return {
            "userId": self.user_id,
            "originalTimestamp": self.original_timestamp,
            "lastUpdatedAt": self.last_updated_at,
            "isActive": self.is_active,
            "value": self.value,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> LikeEvent:
        return cls(
            user_id=str(raw["userId"]),
            original_timestamp=int(raw["originalTimestamp"]),
            last_updated_at=int(raw["lastUpdatedAt"]),
            is_active=bool(raw.get("isActive", True)),
            value=float(raw.get("value", DEFAULT_LIKE_VALUE)),
        )


@dataclass(slots=True)
class Label:
    """A named totem on an answer, with its like history and cached score."""

    name: str
    like_history: list[LikeEvent] = field(default_factory=list)
    crispness: float = 0.0
    likes: int = 0
    updated_at: int | None = None
    last_interaction: int | None = None
    # Fields this engine does not own (description, category, ...) round-trip untouched.
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data = dict(self.extra)
        data.update({
            "name": self.name,
            "likeHistory": [e.to_dict() for e in self.like_history],
            "crispness": self.crispness,
            "likes": self.likes,
        })
        if self.updated_at is not None:
            data["updatedAt"] = self.updated_at
        if self.last_interaction is not None:
            data["lastInteraction"] = self.last_interaction
        return data

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> Label:
        known = {"name", "likeHistory", "crispness", "likes", "updatedAt", "lastInteraction"}
        return cls(
            name=str(raw["name"]),
            like_history=[LikeEvent.from_dict(e) for e in raw.get("likeHistory", [])],
            crispness=float(raw.get("crispness", 0.0)),
            likes=int(raw.get("likes", 0)),
            updated_at=raw.get("updatedAt"),
            last_interaction=raw.get("lastInteraction"),
            extra={k: v for k, v in raw.items() if k not in known},
        )


@dataclass(slots=True)
class Answer:
    id: str
    labels: list[Label] = field(default_factory=list)
    updated_at: int | None = None
    last_interaction: int | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def find_label(self, name: str) -> Label | None:
        """Exact, case-sensitive label lookup."""
        for label in self.labels:
            if label.name == name:
                return label
        return None

    def to_dict(self) -> dict[str, Any]:
        data = dict(self.extra)
        data.update({
            "id": self.id,
            "totems": [label.to_dict() for label in self.labels],
        })
        if self.updated_at is not None:
            data["updatedAt"] = self.updated_at
        if self.last_interaction is not None:
            data["lastInteraction"] = self.last_interaction
        return data

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> Answer:
        known = {"id", "totems", "updatedAt", "lastInteraction"}
        return cls(
            id=str(raw["id"]),
            labels=[Label.from_dict(t) for t in raw.get("totems", [])],
            updated_at=raw.get("updatedAt"),
            last_interaction=raw.get("lastInteraction"),
            extra={k: v for k, v in raw.items() if k not in known},
        )


@dataclass(slots=True)
class PostDocument:
    """The whole Post — the unit the engine reads and writes atomically."""

    id: str
    answers: list[Answer] = field(default_factory=list)

    def find_answer(self, answer_id: str) -> Answer | None:
        for answer in self.answers:
            if answer.id == answer_id:
                return answer
        return None

    def answers_document(self) -> list[dict[str, Any]]:
        """Serialize the answers array for the ``posts.answers`` column."""
        return [answer.to_dict() for answer in self.answers]

    @classmethod
    def from_answers(cls, post_id: str, answers: list[dict[str, Any]]) -> PostDocument:
        return cls(id=post_id, answers=[Answer.from_dict(a) for a in answers])


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------
def locate_label(
    post: PostDocument, label_name: str, answer_id: str | None = None
) -> tuple[Answer, Label]:
    """Find the (answer, label) pair a caller is addressing.

    With *answer_id*, the label must exist on that answer.  Without it,
    the first answer carrying an exact-name match wins.

    Raises
    ------
    NotFoundError
        The answer, or any answer carrying the label, does not exist.
    ValidationError
        The answer exists but has no label called *label_name*.
    """
    if answer_id is not None:
        answer = post.find_answer(answer_id)
        if answer is None:
            raise NotFoundError(f"Answer {answer_id!r} not found on post {post.id!r}.")
        label = answer.find_label(label_name)
        if label is None:
            raise ValidationError(
                f"Totem {label_name!r} is not attached to answer {answer_id!r}."
            )
        return answer, label

    for answer in post.answers:
        label = answer.find_label(label_name)
        if label is not None:
            return answer, label
    raise NotFoundError(f"Totem {label_name!r} not found on post {post.id!r}.")


def find_event(label: Label, user_id: str) -> LikeEvent | None:
    """Linear scan of the label's history for *user_id*'s event."""
    for event in label.like_history:
        if event.user_id == user_id:
            return event
    return None


def active_events(label: Label) -> list[LikeEvent]:
    return [e for e in label.like_history if e.is_active]


def like_count(label: Label) -> int:
    return sum(1 for e in label.like_history if e.is_active)


# ---------------------------------------------------------------------------
# Mutation
# ---------------------------------------------------------------------------
def upsert_event(
    label: Label,
    user_id: str,
    is_active: bool,
    now: int,
    use_refresh: bool = False,
    *,
    restore_anchor: RestoreAnchor | None = None,
) -> LikeEvent:
    """Create or update *user_id*'s event on *label* and return it.

    * No event yet: append a fresh one stamped ``now``.
    * ``use_refresh``: activate and reset ``lastUpdatedAt`` to ``now``
      whatever the prior state.  Quota is charged by the caller.
    * Deactivating: flip ``isActive`` only; an inactive like no longer
      contributes, so its timestamp is kept for a later restore.
    * Re-activating with *restore_anchor*: keep the stale timestamp
      (``LAST_UPDATED``) or rewind to ``originalTimestamp`` (``ORIGINAL``).
    * Re-activating without an anchor: ``lastUpdatedAt = now``.

    The label keeps at most one event per user; an update replaces the
    existing event in place so history order is preserved.
    """
    for idx, existing in enumerate(label.like_history):
        if existing.user_id == user_id:
            break
    else:
        event = LikeEvent(
            user_id=user_id,
            original_timestamp=now,
            last_updated_at=now,
            is_active=is_active,
        )
        label.like_history.append(event)
        return event

    if use_refresh:
        updated = replace(
            existing, is_active=True, last_updated_at=max(now, existing.original_timestamp)
        )
    elif not is_active:
        updated = replace(existing, is_active=False)
    elif existing.is_active:
        updated = existing
    elif restore_anchor is RestoreAnchor.ORIGINAL:
        updated = replace(
            existing, is_active=True, last_updated_at=existing.original_timestamp
        )
    elif restore_anchor is RestoreAnchor.LAST_UPDATED:
        updated = replace(existing, is_active=True)
    else:
        updated = replace(
            existing, is_active=True, last_updated_at=max(now, existing.original_timestamp)
        )

    label.like_history[idx] = updated
    return updated


def recompute_label(label: Label, now: int) -> float:
    """Refresh the cached ``crispness`` and ``likes`` of *label* and return crispness."""
    label.crispness = round(compute_crispness(label.like_history, now), 2)
    label.likes = like_count(label)
    return label.crispness


def touch(post: PostDocument, answer: Answer, label: Label, now: int) -> None:
    """Stamp interaction times on the mutated label and its answer."""
    label.updated_at = now
    label.last_interaction = now
    answer.updated_at = now
    answer.last_interaction = now
    logger.debug("Touched %s/%s/%s at %d", post.id, answer.id, label.name, now)
