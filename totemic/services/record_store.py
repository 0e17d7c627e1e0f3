"""
totemic.services.record_store — Post & Profile Persistence
===========================================================

Thin layer between the engagement engine and the ``posts`` / ``profiles``
tables.  Reads are normalized (see :mod:`totemic.services.normalization`)
so the engine only ever sees canonical documents.

A :class:`PostUnit` is one database transaction.  Everything loaded and
saved through it commits together, or not at all.  Both tables carry a
``version`` column used as an optimistic compare-and-swap token, so a
concurrent writer turns the commit into a :class:`RecordConflictError`
that the engine answers by re-reading and re-applying.

Usage::

    store = PostRecordStore(engine)
    with store.transaction() as unit:
        post = unit.load_post("p1")
        ...
        unit.save_post(post, now)
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from sqlalchemy import Engine, select
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from totemic.database.models import Post, Profile
from totemic.engine.ledger import PostDocument
from totemic.errors import NotFoundError
from totemic.services.normalization import normalize_answers

logger = logging.getLogger(__name__)


class RecordConflictError(Exception):
    """Another writer committed first; the whole transaction was rolled back."""


class TransientStoreError(Exception):
    """The database was unreachable or aborted the transaction; nothing was written."""


# SQLSTATE unique_violation
_PG_UNIQUE_VIOLATION = "23505"


def _is_unique_violation(exc: IntegrityError) -> bool:
    """True for a duplicate-key insert, the only integrity error worth retrying."""
    code = getattr(exc.orig, "pgcode", None)
    if code is not None:
        return code == _PG_UNIQUE_VIOLATION
    return "UNIQUE constraint failed" in str(exc.orig)


class PostUnit:
    """One read-modify-write transaction over posts and profiles."""

    def __init__(self, session: Session) -> None:
        self.session = session
        self._rows: dict[str, Post] = {}

    def load_post(self, post_id: str) -> PostDocument:
        row = self.session.get(Post, post_id)
        if row is None:
            raise NotFoundError(f"Post {post_id!r} not found.")
        self._rows[post_id] = row
        return PostDocument.from_answers(post_id, normalize_answers(row.answers))

    def stored_answers(self, post_id: str) -> list:
        """The answers column exactly as stored, before normalization."""
        return self._rows[post_id].answers

    def save_post(self, post: PostDocument, now: int | None) -> None:
        """Stage *post* for commit.  Must have been loaded through this unit.

        ``now=None`` keeps the stored ``last_interaction``.
        """
        row = self._rows[post.id]
        # Reassign: JSON columns don't track in-place mutation
        row.answers = post.answers_document()
        if now is not None:
            row.last_interaction = now

    def load_profile(self, user_id: str) -> Profile | None:
        return self.session.get(Profile, user_id)

    def add_profile(self, profile: Profile) -> None:
        self.session.add(profile)


class PostRecordStore:
    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    # -------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------
    def read_post(self, post_id: str) -> PostDocument:
        """Point read of one post, outside any write transaction."""
        with Session(self.engine) as session:
            row = session.get(Post, post_id)
            if row is None:
                raise NotFoundError(f"Post {post_id!r} not found.")
            return PostDocument.from_answers(post_id, normalize_answers(row.answers))

    def post_ids(self) -> list[str]:
        with Session(self.engine) as session:
            return list(session.scalars(select(Post.id).order_by(Post.id)).all())

    def profile_ids(self) -> list[str]:
        with Session(self.engine) as session:
            return list(session.scalars(select(Profile.user_id).order_by(Profile.user_id)).all())

    # -------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------
    @contextmanager
    def transaction(self) -> Iterator[PostUnit]:
        """Yield a :class:`PostUnit`; commit on exit, roll back on any error.

        Raises
        ------
        RecordConflictError
            A versioned row changed since it was read, or a row this unit
            inserted was inserted concurrently.
        TransientStoreError
            Connection loss, serialization failure or similar driver error.

        Any other database error (a CHECK or NOT NULL violation, bad SQL,
        an oversized value) is re-raised unchanged.
        """
        session = Session(self.engine)
        try:
            yield PostUnit(session)
            session.commit()
        except StaleDataError as exc:
            session.rollback()
            raise RecordConflictError(str(exc)) from exc
        except IntegrityError as exc:
            session.rollback()
            if not _is_unique_violation(exc):
                raise
            raise RecordConflictError(str(exc.orig)) from exc
        except (OperationalError, InterfaceError) as exc:
            session.rollback()
            raise TransientStoreError(str(exc.orig)) from exc
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def create_post(
        self, post_id: str, answers: list[dict[str, Any]], question: str = ""
    ) -> PostDocument:
        """Insert a new post.  *answers* may be in any historical layout."""
        canonical = normalize_answers(answers)
        with Session(self.engine) as session:
            session.add(Post(id=post_id, question=question, answers=canonical))
            session.commit()
        logger.info("Created post %s with %d answers", post_id, len(canonical))
        return PostDocument.from_answers(post_id, canonical)
