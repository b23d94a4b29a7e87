from __future__ import annotations

from collections.abc import Sequence

from pymarc import Record
from sqlalchemy import select
from sqlalchemy.orm import Session

from palace.ill.core.exceptions import PalaceValueError
from palace.ill.sqlalchemy.model.illrequest import IllRequest, IllRequestAttribute
from palace.ill.sqlalchemy.model.library import Library
from palace.ill.sqlalchemy.model.patron import Patron
from palace.ill.sqlalchemy.model.staging import Biblio, StagedRecord
from palace.ill.sqlalchemy.util import create, flush, get_one
from palace.ill.util.log import LoggerMixin


class SqlRequestStore(LoggerMixin):
    """Keeps ILL requests and their attributes in our own tables.

    Changes are flushed but never committed; the caller owns the
    transaction.
    """

    def __init__(self, db: Session) -> None:
        self._db = db

    def find_request(self, request_id: int) -> IllRequest | None:
        return self._db.get(IllRequest, request_id)

    def store(self, request: IllRequest) -> IllRequest:
        self._db.add(request)
        flush(self._db)
        return request

    def find_attributes(self, request_id: int) -> Sequence[IllRequestAttribute]:
        return (
            self._db.execute(
                select(IllRequestAttribute)
                .where(IllRequestAttribute.illrequest_id == request_id)
                .order_by(IllRequestAttribute.id)
            )
            .scalars()
            .all()
        )

    def store_attribute(
        self, request_id: int, type: str, value: str
    ) -> IllRequestAttribute:
        attribute, _ = create(
            self._db,
            IllRequestAttribute,
            illrequest_id=request_id,
            type=type,
            value=value,
        )
        return attribute

    def update_attribute_value(
        self, request_id: int, type: str, value: str
    ) -> IllRequestAttribute | None:
        attribute = get_one(
            self._db, IllRequestAttribute, illrequest_id=request_id, type=type
        )
        if attribute is None:
            return None
        attribute.value = value
        flush(self._db)
        return attribute


class SqlDirectory:
    """Looks patrons and branches up in our own tables."""

    def __init__(self, db: Session) -> None:
        self._db = db

    def find_patron_by_card_number(self, cardnumber: str) -> Patron | None:
        return get_one(self._db, Patron, cardnumber=cardnumber)

    def find_patron_by_id(self, patron_id: int) -> Patron | None:
        return self._db.get(Patron, patron_id)

    def search_patrons_by_field(self, field: str, value: str) -> Sequence[Patron]:
        if field not in Patron.SEARCHABLE_FIELDS:
            raise PalaceValueError(f"Patrons cannot be searched by '{field}'.")
        column = getattr(Patron, field)
        return (
            self._db.execute(
                select(Patron).where(column == value).order_by(Patron.id)
            )
            .scalars()
            .all()
        )

    def find_library(self, branchcode: str) -> Library | None:
        return self._db.get(Library, branchcode)


class SqlStagingArea:
    """Holds records found by remote searches until one is imported."""

    def __init__(self, db: Session) -> None:
        self._db = db

    def stage_marc_record(self, target: str, marc: bytes) -> str:
        staged, _ = create(self._db, StagedRecord, target=target, marc=marc)
        return str(staged.id)

    def fetch_staged_marc_record(self, reference: str) -> bytes | None:
        try:
            staged_id = int(reference)
        except (TypeError, ValueError):
            return None
        staged = self._db.get(StagedRecord, staged_id)
        return staged.marc if staged is not None else None


class SqlCatalog:
    """Commits imported records as rows in the biblios table."""

    def __init__(self, db: Session) -> None:
        self._db = db

    def commit_record(self, record: Record, framework: str) -> int:
        biblio, _ = create(
            self._db,
            Biblio,
            framework=framework,
            title=record.title,
            marc=record.as_marc(),
        )
        return biblio.id
