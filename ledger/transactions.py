"""Transaction boundary used by every mutating ledger operation."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Iterable, Optional, TypeVar

from flask import current_app, has_app_context
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from extensions import db

from .errors import ConcurrentModification

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 3

_CONFLICT_MARKERS = (
    "could not serialize",
    "deadlock detected",
    "database is locked",
    "lock wait timeout",
)


def is_write_conflict(exc: BaseException) -> bool:
    """Return ``True`` if ``exc`` is a transient write conflict worth retrying."""

    if isinstance(exc, StaleDataError):
        return True
    if isinstance(exc, IntegrityError) or not isinstance(exc, DBAPIError):
        return False

    orig = getattr(exc, "orig", None)
    pgcode = getattr(orig, "pgcode", None)
    if pgcode in {"40001", "40P01"}:
        return True
    message = str(orig if orig is not None else exc).lower()
    return any(marker in message for marker in _CONFLICT_MARKERS)


def _configured_attempts() -> int:
    if has_app_context():
        try:
            value = int(current_app.config.get("TRANSACTION_MAX_ATTEMPTS", DEFAULT_MAX_ATTEMPTS))
        except (TypeError, ValueError):
            value = DEFAULT_MAX_ATTEMPTS
        return max(1, value)
    return DEFAULT_MAX_ATTEMPTS


def atomic(
    work: Callable[[], T],
    *,
    operation: str,
    attempts: Optional[int] = None,
    retry_if: Optional[Callable[[BaseException], bool]] = None,
) -> T:
    """Run ``work`` and commit it as one unit.

    ``work`` must re-read everything it depends on; it is called again from
    scratch after a conflict. ``retry_if`` widens what counts as a conflict
    for one operation. Any other failure rolls back and propagates.
    """

    max_attempts = attempts if attempts is not None else _configured_attempts()
    attempt = 0
    while True:
        attempt += 1
        try:
            result = work()
            db.session.commit()
            return result
        except Exception as exc:
            db.session.rollback()
            if not (is_write_conflict(exc) or (retry_if is not None and retry_if(exc))):
                raise
            if attempt >= max_attempts:
                logger.error(
                    {"event": "transaction_conflict_exhausted", "operation": operation, "attempts": attempt}
                )
                raise ConcurrentModification() from exc
            logger.warning({"event": "transaction_retry", "operation": operation, "attempt": attempt})


def lock_for_update(query):
    """Apply ``SELECT ... FOR UPDATE`` where the backend supports it."""

    return query.with_for_update()


def touch(rows: Iterable[db.Model]) -> None:
    """Mark versioned rows dirty so their ``version_id`` is checked and bumped."""

    now = datetime.utcnow()
    for row in rows:
        row.updated_at = now


def is_unique_violation(exc: IntegrityError, *keywords: str) -> bool:
    """Return ``True`` if ``exc`` represents a unique constraint violation."""

    orig = getattr(exc, "orig", None)
    diag = getattr(orig, "diag", None)
    constraint_name = getattr(diag, "constraint_name", None)
    message_detail = getattr(diag, "message_detail", None)

    haystacks: list[str] = []
    if constraint_name:
        haystacks.append(constraint_name.lower())
    if message_detail:
        haystacks.append(message_detail.lower())
    if orig is not None:
        haystacks.append(str(orig).lower())
    else:
        haystacks.append(str(exc).lower())

    lowered_keywords = [keyword.lower() for keyword in keywords]
    for haystack in haystacks:
        if haystack and all(keyword in haystack for keyword in lowered_keywords):
            return True
    return False
