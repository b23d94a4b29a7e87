from __future__ import annotations

from typing import Any, Literal, TypeVar

from sqlalchemy import select
from sqlalchemy.orm import Session

T = TypeVar("T")


def flush(db: Session) -> None:
    """Flush, unless the session is already in the middle of a flush."""
    if not db._flushing:
        db.flush()


def create(db: Session, model: type[T], **kwargs: Any) -> tuple[T, Literal[True]]:
    """Add a new row and flush it, so it has its primary key."""
    created = model(**kwargs)
    db.add(created)
    flush(db)
    return created, True


def get_one(db: Session, model: type[T], **kwargs: Any) -> T | None:
    """The one row whose columns match `kwargs`, if there is one.

    :raise sqlalchemy.exc.MultipleResultsFound: If several rows match.
    """
    return db.execute(select(model).filter_by(**kwargs)).scalar_one_or_none()
