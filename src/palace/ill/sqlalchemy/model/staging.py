from __future__ import annotations

import datetime

from sqlalchemy import Column, DateTime, Integer, LargeBinary, Unicode
from sqlalchemy.orm import Mapped

from palace.ill.sqlalchemy.model.base import Base
from palace.ill.util.datetime_helpers import utc_now


class StagedRecord(Base):
    """A MARC record found by a remote search, waiting to be imported.

    Staged records are tied to the search that found them. Their id is the
    reference handed to the host alongside each search result.
    """

    __tablename__ = "staged_records"
    id: Mapped[int] = Column(Integer, primary_key=True)

    # The name of the target the record was found on.
    target: Mapped[str] = Column(Unicode, nullable=False)

    # The record in ISO 2709 format.
    marc: Mapped[bytes] = Column(LargeBinary, nullable=False)

    created: Mapped[datetime.datetime] = Column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )


class Biblio(Base):
    """A bibliographic record in the local catalog."""

    __tablename__ = "biblios"
    id: Mapped[int] = Column(Integer, primary_key=True)
    framework: Mapped[str] = Column(Unicode, nullable=False)
    title = Column(Unicode)
    marc: Mapped[bytes] = Column(LargeBinary, nullable=False)
    created: Mapped[datetime.datetime] = Column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
