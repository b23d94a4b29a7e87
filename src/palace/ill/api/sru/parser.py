from __future__ import annotations

from dataclasses import dataclass, field
from io import BytesIO
from typing import TYPE_CHECKING
from xml.sax import SAXException

from lxml import etree
from pymarc import Record, parse_xml_to_array
from pymarc.exceptions import PymarcException

from palace.ill.core.exceptions import PalaceValueError
from palace.ill.util.log import LoggerMixin
from palace.ill.util.xmlparser import XMLParser

if TYPE_CHECKING:
    from lxml.etree import _Element


class MalformedResponse(PalaceValueError):
    """The body of an SRU response could not be understood at all."""


@dataclass(frozen=True)
class Diagnostic:
    uri: str
    message: str | None = None
    details: str | None = None

    # SRU diagnostic for "System temporarily unavailable".
    TEMPORARILY_UNAVAILABLE = "info:srw/diagnostic/1/2"

    @property
    def is_unavailable(self) -> bool:
        return self.uri == self.TEMPORARILY_UNAVAILABLE

    def __str__(self) -> str:
        parts = [self.uri]
        if self.message:
            parts.append(self.message)
        if self.details:
            parts.append(f"({self.details})")
        return " ".join(parts)


@dataclass
class SRUResponse:
    number_of_records: int | None = None
    records: list[Record] = field(default_factory=list)
    # One message for each record that was present but could not be read.
    bad_records: list[str] = field(default_factory=list)
    diagnostics: list[Diagnostic] = field(default_factory=list)


class SRUResponseParser(XMLParser, LoggerMixin):
    """Parse an SRU 1.2 searchRetrieve response carrying MARCXML records."""

    NAMESPACES = {
        "zs": "http://www.loc.gov/zing/srw/",
        "diag": "http://www.loc.gov/zing/srw/diagnostic/",
        "marc": "http://www.loc.gov/MARC21/slim",
    }

    def parse(self, body: bytes | str) -> SRUResponse:
        try:
            tree = self._load_xml(body)
        except (etree.XMLSyntaxError, PalaceValueError) as e:
            raise MalformedResponse(f"Could not parse SRU response: {e}") from e

        root = tree.getroot()
        if etree.QName(root).localname != "searchRetrieveResponse":
            raise MalformedResponse(
                f"Expected a searchRetrieveResponse, got <{etree.QName(root).localname}>."
            )

        response = SRUResponse()
        try:
            response.number_of_records = self.int_of_optional_subtag(
                root, "zs:numberOfRecords"
            )
        except ValueError:
            self.log.warning("Ignoring non-numeric numberOfRecords in SRU response.")

        for tag in self._xpath(root, "//zs:diagnostics/diag:diagnostic"):
            response.diagnostics.append(self._diagnostic(tag))

        for position, tag in enumerate(
            self._xpath(root, "//zs:records/zs:record"), start=1
        ):
            try:
                response.records.append(self._record(tag))
            except MalformedResponse as e:
                response.bad_records.append(f"Record {position}: {e}")

        return response

    def _diagnostic(self, tag: _Element) -> Diagnostic:
        return Diagnostic(
            uri=self.text_of_optional_subtag(tag, "diag:uri") or "",
            message=self.text_of_optional_subtag(tag, "diag:message"),
            details=self.text_of_optional_subtag(tag, "diag:details"),
        )

    def _record(self, tag: _Element) -> Record:
        data = self._xpath1(tag, "zs:recordData")
        if data is None:
            raise MalformedResponse("No recordData.")

        marc = self._xpath1(data, "marc:record | record")
        if marc is not None:
            document = etree.tostring(marc)
        elif data.text and data.text.strip():
            # recordPacking=string puts the escaped record in the text.
            document = data.text.strip().encode("utf8")
        else:
            raise MalformedResponse("Empty recordData.")

        try:
            records = parse_xml_to_array(BytesIO(document))
        except (SAXException, PymarcException, ValueError, KeyError) as e:
            raise MalformedResponse(f"Not a MARCXML record: {e}") from e

        if not records or records[0] is None or not records[0].fields:
            raise MalformedResponse("Not a MARCXML record.")
        return records[0]
