from __future__ import annotations

from typing import NamedTuple

from lxml import etree

from palace.ill.core.exceptions import PalaceValueError
from palace.ill.util.xmlparser import XMLParser


class ServiceResponse(NamedTuple):
    """The interesting parts of an ILS-DI service response.

    `code` is only present when the service reports an error.
    """

    code: str | None
    value: str | None


class ILSDIResponseParser(XMLParser):
    """Read the result of an ILS-DI service call.

    ILS-DI reports errors inside an HTTP 200 response, as a `code`
    element under the service's root element. On success the same root
    element carries the value we are after instead.
    """

    def parse(self, service: str, value_tag: str, body: bytes | str) -> ServiceResponse:
        """
        :raise PalaceValueError: If the body is not XML at all.
        """
        try:
            tree = self._load_xml(body)
        except etree.XMLSyntaxError as e:
            raise PalaceValueError(f"Could not parse {service} response: {e}") from e

        root = tree.getroot()
        return ServiceResponse(
            code=self.text_of_optional_subtag(root, f"//{service}/code"),
            value=self.text_of_optional_subtag(root, f"//{service}/{value_tag}"),
        )
