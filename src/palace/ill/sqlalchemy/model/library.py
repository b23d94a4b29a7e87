from __future__ import annotations

from sqlalchemy import Column, Unicode
from sqlalchemy.orm import Mapped

from palace.ill.sqlalchemy.model.base import Base


class Library(Base):
    """A branch of the host library, identified by its branch code."""

    __tablename__ = "libraries"
    branchcode: Mapped[str] = Column(Unicode, primary_key=True)
    name = Column(Unicode)

    def __repr__(self) -> str:
        return f"<Library {self.branchcode} ({self.name})>"
