"""The host collaborators the broker depends on.

The broker never talks to the host's database directly. Everything it
needs from the host goes through one of these protocols, so a host can
plug in its own persistence, patron directory and cataloging service.
`palace.ill.sqlalchemy.store` provides implementations backed by our own
SQLAlchemy models.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol

from pymarc import Record

from palace.ill.sqlalchemy.model.illrequest import IllRequest, IllRequestAttribute
from palace.ill.sqlalchemy.model.library import Library
from palace.ill.sqlalchemy.model.patron import Patron


class RequestStore(Protocol):
    def find_request(self, request_id: int) -> IllRequest | None: ...

    def store(self, request: IllRequest) -> IllRequest:
        """Persist the request, assigning it an id if it is new."""
        ...

    def find_attributes(self, request_id: int) -> Sequence[IllRequestAttribute]: ...

    def store_attribute(
        self, request_id: int, type: str, value: str
    ) -> IllRequestAttribute: ...

    def update_attribute_value(
        self, request_id: int, type: str, value: str
    ) -> IllRequestAttribute | None:
        """Update an attribute in place. Returns None if it does not exist."""
        ...


class Directory(Protocol):
    def find_patron_by_card_number(self, cardnumber: str) -> Patron | None: ...

    def find_patron_by_id(self, patron_id: int) -> Patron | None: ...

    def search_patrons_by_field(self, field: str, value: str) -> Sequence[Patron]: ...

    def find_library(self, branchcode: str) -> Library | None: ...


class StagingArea(Protocol):
    def stage_marc_record(self, target: str, marc: bytes) -> str:
        """Hold a record found by a search. Returns the staging reference."""
        ...

    def fetch_staged_marc_record(self, reference: str) -> bytes | None: ...


class Catalog(Protocol):
    def commit_record(self, record: Record, framework: str) -> int:
        """Add the record to the local catalog. Returns the new record's id."""
        ...
