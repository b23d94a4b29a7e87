from __future__ import annotations

from collections.abc import Sequence
from enum import Enum, auto
from typing import NamedTuple

from palace.ill.api.interfaces import Directory
from palace.ill.sqlalchemy.model.patron import Patron
from palace.ill.util.log import LoggerMixin


class ResolutionMode(Enum):
    # The operator typed something in: try it as a card number.
    DEFAULT = auto()
    # The operator picked one patron out of an ambiguous match, so the
    # identifier is a patron's internal id.
    CONTINUATION = auto()


class BorrowerMatch(NamedTuple):
    count: int
    borrower: Patron | Sequence[Patron] | None

    @property
    def patron(self) -> Patron | None:
        """The matched patron, if the match was unambiguous."""
        if self.count == 1 and isinstance(self.borrower, Patron):
            return self.borrower
        return None

    @property
    def candidates(self) -> Sequence[Patron]:
        if self.count > 1 and self.borrower is not None:
            return self.borrower  # type: ignore[return-value]
        if (patron := self.patron) is not None:
            return [patron]
        return []


class BorrowerResolver(LoggerMixin):
    """Resolve the identifier an operator typed in to a local patron.

    An exact match on card number wins. Failing that, each field in
    FALLBACK_FIELDS is tried in order, and the first one that matches
    anyone decides the result, even if it matches more than one patron.
    """

    # Free text that is not a card number is tried as a surname, then as
    # a first name. Matching on first name alone is loose; this order is
    # kept because operators rely on it, but it is a policy worth
    # revisiting.
    FALLBACK_FIELDS: tuple[str, ...] = ("surname", "firstname")

    def __init__(self, directory: Directory) -> None:
        self._directory = directory

    def resolve(
        self, identifier: str | int | None, mode: ResolutionMode = ResolutionMode.DEFAULT
    ) -> BorrowerMatch:
        if identifier is None or str(identifier).strip() == "":
            return BorrowerMatch(0, None)
        identifier = str(identifier).strip()

        if mode is ResolutionMode.CONTINUATION:
            patron = self._find_by_id(identifier)
        else:
            patron = self._directory.find_patron_by_card_number(identifier)
        if patron is not None:
            return BorrowerMatch(1, patron)

        for field in self.FALLBACK_FIELDS:
            patrons = list(self._directory.search_patrons_by_field(field, identifier))
            if len(patrons) == 1:
                return BorrowerMatch(1, patrons[0])
            if patrons:
                self.log.info(
                    f"Identifier {identifier!r} matched {len(patrons)} patrons by {field}."
                )
                return BorrowerMatch(len(patrons), patrons)

        return BorrowerMatch(0, None)

    def _find_by_id(self, identifier: str) -> Patron | None:
        try:
            patron_id = int(identifier)
        except ValueError:
            return None
        return self._directory.find_patron_by_id(patron_id)
