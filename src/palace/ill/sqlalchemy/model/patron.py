from __future__ import annotations

from sqlalchemy import Column, ForeignKey, Integer, Unicode
from sqlalchemy.orm import Mapped, relationship

from palace.ill.sqlalchemy.model.base import Base
from palace.ill.sqlalchemy.model.library import Library


class Patron(Base):
    __tablename__ = "patrons"
    id: Mapped[int] = Column(Integer, primary_key=True)

    # The number printed on the patron's library card. Unique when present.
    cardnumber = Column(Unicode, unique=True, index=True)

    surname = Column(Unicode, index=True)
    firstname = Column(Unicode, index=True)

    # The patron's home branch.
    branchcode = Column(Unicode, ForeignKey("libraries.branchcode"), index=True)
    library: Mapped[Library | None] = relationship("Library")

    # Fields the directory can be searched by.
    SEARCHABLE_FIELDS = frozenset({"cardnumber", "surname", "firstname"})

    def __repr__(self) -> str:
        return f"<Patron {self.id} card={self.cardnumber} {self.surname}, {self.firstname}>"
