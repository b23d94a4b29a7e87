from __future__ import annotations

from io import BytesIO
from typing import TYPE_CHECKING

from lxml import etree

from palace.ill.core.exceptions import PalaceValueError

if TYPE_CHECKING:
    from lxml.etree import _Element, _ElementTree


class XMLParser:
    """Shared helpers for reading partner responses with lxml.

    Subclasses set NAMESPACES to the prefixes their XPath expressions use.
    """

    NAMESPACES: dict[str, str] = {}

    @classmethod
    def _xpath(
        cls, tag: _Element, expression: str, namespaces: dict[str, str] | None = None
    ) -> list[_Element]:
        return tag.xpath(expression, namespaces=namespaces or cls.NAMESPACES)  # type: ignore[no-any-return]

    @classmethod
    def _xpath1(
        cls, tag: _Element, expression: str, namespaces: dict[str, str] | None = None
    ) -> _Element | None:
        values = cls._xpath(tag, expression, namespaces=namespaces)
        return values[0] if values else None

    def text_of_optional_subtag(
        self, tag: _Element, name: str, namespaces: dict[str, str] | None = None
    ) -> str | None:
        """The stripped text of the first match, or None if it is blank."""
        found = self._xpath1(tag, name, namespaces=namespaces)
        if found is None or found.text is None:
            return None
        return str(found.text).strip() or None

    def int_of_optional_subtag(
        self, tag: _Element, name: str, namespaces: dict[str, str] | None = None
    ) -> int | None:
        """
        :raise ValueError: If the text is present but not a number.
        """
        text = self.text_of_optional_subtag(tag, name, namespaces=namespaces)
        return int(text) if text else None

    @staticmethod
    def _load_xml(xml: str | bytes | _ElementTree) -> _ElementTree:
        """Parse a response body, leniently.

        Partners send all sorts of slightly broken XML, so the parser
        recovers from what it can. Null bytes are the exception, since
        lxml stops reading at the first one, so they are dropped first.

        :raise etree.XMLSyntaxError: If the document cannot be parsed.
        :raise PalaceValueError: If no element could be recovered.
        """
        if not isinstance(xml, (str, bytes)):
            return xml
        if isinstance(xml, str):
            xml = xml.encode("utf8")

        tree = etree.parse(
            BytesIO(xml.replace(b"\x00", b"")), etree.XMLParser(recover=True)
        )
        if tree.getroot() is None:
            raise PalaceValueError("Document contains no XML elements.")
        return tree
