from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from frozendict import frozendict

from palace.ill.core.exceptions import PalaceValueError
from palace.ill.sqlalchemy.model.illrequest import AttributeType


class MissingQuery(PalaceValueError):
    """None of the recognized search fields has a value."""


# CQL index used for each search field.
CQL_INDEXES: Mapping[AttributeType, str] = frozendict(
    {
        AttributeType.ISBN: "bath.isbn",
        AttributeType.ISSN: "bath.issn",
        AttributeType.TITLE: "dc.title",
        AttributeType.AUTHOR: "dc.creator",
        AttributeType.DEWEY: "bath.deweyClassification",
        AttributeType.SUBJECT: "dc.subject",
        AttributeType.LCCALL: "bath.lcCallNumber",
        AttributeType.CONTROLNUMBER: "rec.id",
        AttributeType.STDID: "bath.standardIdentifier",
        AttributeType.SRCHANY: "cql.anywhere",
    }
)

# Accepted as another name for srchany.
GENERIC_QUERY_KEY = "query"


def quote_term(term: str) -> str:
    escaped = term.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


@dataclass(frozen=True)
class SearchQuery:
    """A bibliographic search, one term per recognized search field."""

    terms: frozendict[AttributeType, str] = field(default_factory=frozendict)
    page: int = 1

    @classmethod
    def from_params(cls, params: Mapping[str, Any]) -> SearchQuery:
        """Pick the search fields out of a parameter mapping.

        Unrecognized keys are ignored, as are blank values. A `query`
        value is used for srchany when srchany itself is blank.
        """
        terms: dict[AttributeType, str] = {}
        for search_field in AttributeType.search_fields():
            value = params.get(search_field.value)
            if value is not None and str(value).strip():
                terms[search_field] = str(value).strip()

        generic = params.get(GENERIC_QUERY_KEY)
        if (
            AttributeType.SRCHANY not in terms
            and generic is not None
            and str(generic).strip()
        ):
            terms[AttributeType.SRCHANY] = str(generic).strip()

        try:
            page = int(params.get("page") or 1)
        except (TypeError, ValueError):
            page = 1

        return cls(terms=frozendict(terms), page=max(page, 1))

    @property
    def is_empty(self) -> bool:
        return not self.terms

    def start_record(self, page_size: int) -> int:
        """The 1-based position of the first record on this page."""
        return (self.page - 1) * page_size + 1

    def to_cql(self) -> str:
        if self.is_empty:
            raise MissingQuery("A search needs at least one search term.")
        return " and ".join(
            f"{CQL_INDEXES[search_field]}={quote_term(self.terms[search_field])}"
            for search_field in AttributeType.search_fields()
            if search_field in self.terms
        )

    def as_dict(self) -> dict[str, Any]:
        """The query as plain data, for handing back to the host."""
        data: dict[str, Any] = {key.value: value for key, value in self.terms.items()}
        data["page"] = self.page
        return data
