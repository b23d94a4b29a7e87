from __future__ import annotations

import datetime
from enum import StrEnum

from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Integer,
    Unicode,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, relationship, validates

from palace.ill.core.exceptions import PalaceValueError
from palace.ill.sqlalchemy.model.base import Base
from palace.ill.sqlalchemy.model.library import Library
from palace.ill.sqlalchemy.model.patron import Patron
from palace.ill.sqlalchemy.model.staging import Biblio
from palace.ill.util.datetime_helpers import to_utc, utc_now


class IllRequestStatus(StrEnum):
    """The lifecycle status of an ILL request.

    The values are stable codes the host dispatches its UI on.
    """

    NEW = "NEW"
    REQ = "REQ"
    REQREV = "REQREV"
    QUEUED = "QUEUED"
    COMPLETE = "COMP"
    MIG = "MIG"

    @property
    def description(self) -> str:
        return _STATUS_DESCRIPTIONS[self]


_STATUS_DESCRIPTIONS = {
    IllRequestStatus.NEW: "New request",
    IllRequestStatus.REQ: "Requested",
    IllRequestStatus.REQREV: "Request reverted",
    IllRequestStatus.QUEUED: "Queued request",
    IllRequestStatus.COMPLETE: "Completed",
    IllRequestStatus.MIG: "Backend Migration",
}


class RemoteStatus(StrEnum):
    """Values of the `status` attribute, which tracks the request on the
    partner's side rather than in our own workflow."""

    ON_ORDER = "On order"
    RECEIVED = "Received"
    RENEWED = "Renewed"
    REVERTED = "Reverted"


class AttributeType(StrEnum):
    """The attribute keys the broker knows about.

    Anything else stored against a request is backend-specific extension
    data and is kept as an opaque string.
    """

    BIB_ID = "bib_id"
    TITLE = "title"
    AUTHOR = "author"
    TARGET = "target"
    STATUS = "status"
    MIGRATED_FROM = "migrated_from"

    # Search fields, carried forward when a request is migrated.
    ISBN = "isbn"
    ISSN = "issn"
    DEWEY = "dewey"
    SUBJECT = "subject"
    LCCALL = "lccall"
    CONTROLNUMBER = "controlnumber"
    STDID = "stdid"
    SRCHANY = "srchany"

    @classmethod
    def search_fields(cls) -> tuple[AttributeType, ...]:
        return (
            cls.ISBN,
            cls.ISSN,
            cls.TITLE,
            cls.AUTHOR,
            cls.DEWEY,
            cls.SUBJECT,
            cls.LCCALL,
            cls.CONTROLNUMBER,
            cls.STDID,
            cls.SRCHANY,
        )

    @classmethod
    def is_known(cls, key: str) -> bool:
        return key in cls._value2member_map_


class IllRequest(Base):
    """An inter-library loan request placed against a partner catalog."""

    __tablename__ = "illrequests"
    id: Mapped[int] = Column(Integer, primary_key=True)

    borrower_id = Column(Integer, ForeignKey("patrons.id"), index=True)
    borrower: Mapped[Patron | None] = relationship("Patron")

    branchcode = Column(Unicode, ForeignKey("libraries.branchcode"), index=True)
    library: Mapped[Library | None] = relationship("Library")

    # The name of the backend that owns this request.
    backend = Column(Unicode, index=True)

    status: Mapped[str] = Column(
        Unicode, nullable=False, index=True, default=IllRequestStatus.NEW.value
    )

    # Identifier assigned by the partner once the request is confirmed.
    order_id = Column(Unicode)
    cost = Column(Unicode)
    access_url = Column(Unicode)

    placed_at = Column(DateTime(timezone=True))
    updated_at = Column(DateTime(timezone=True))

    # The suppressed local record created when the request was placed.
    biblio_id = Column(Integer, ForeignKey("biblios.id"), index=True)
    biblio: Mapped[Biblio | None] = relationship("Biblio")

    attributes: Mapped[list[IllRequestAttribute]] = relationship(
        "IllRequestAttribute",
        back_populates="request",
        cascade="all, delete-orphan",
        order_by="IllRequestAttribute.id",
    )

    @validates("status")
    def _validate_status(self, key: str, value: str) -> str:
        try:
            return IllRequestStatus(value).value
        except ValueError:
            raise PalaceValueError(
                f"'{value}' is not a valid ILL request status."
            ) from None

    def place(self, now: datetime.datetime | None = None) -> None:
        """Stamp a newly created request."""
        now = now or utc_now()
        self.placed_at = now
        self.updated_at = now

    def touch(self, now: datetime.datetime | None = None) -> None:
        """Record that the request has been modified.

        The update time never moves before the time the request was placed.
        """
        now = now or utc_now()
        placed_at = to_utc(self.placed_at)
        if placed_at is not None and now < placed_at:
            now = placed_at
        self.updated_at = now

    def __repr__(self) -> str:
        return f"<IllRequest {self.id} status={self.status} backend={self.backend}>"


class IllRequestAttribute(Base):
    """A key/value pair attached to an ILL request."""

    __tablename__ = "illrequestattributes"
    __table_args__ = (UniqueConstraint("illrequest_id", "type"),)

    id: Mapped[int] = Column(Integer, primary_key=True)
    illrequest_id: Mapped[int] = Column(
        Integer,
        ForeignKey("illrequests.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )
    request: Mapped[IllRequest] = relationship(
        "IllRequest", back_populates="attributes"
    )
    type: Mapped[str] = Column(Unicode, nullable=False)
    value: Mapped[str] = Column(Unicode, nullable=False)

    def __repr__(self) -> str:
        return f"<IllRequestAttribute {self.illrequest_id} {self.type}={self.value!r}>"
