from __future__ import annotations

from palace.ill.core.exceptions import BasePalaceException


class HoldsError(BasePalaceException):
    """Placing a hold with a partner failed."""


class HoldsTransportError(HoldsError):
    """The holds endpoint could not be reached, or answered with an error
    status instead of an ILS-DI document."""

    def __init__(self, url: str, status: str, content: str) -> None:
        super().__init__(
            f"ILS-DI Service Error: Request - {url}, Status - {status}, Content - {content}"
        )
        self.url = url
        self.status = status
        self.content = content


class HoldsProtocolError(HoldsError):
    """The holds endpoint answered, but the answer was an error code."""

    PREFIX = "Service Error"

    def __init__(self, code: str) -> None:
        super().__init__(f"{self.PREFIX}: {code}")
        self.code = code


class AuthenticationFailed(HoldsProtocolError):
    PREFIX = "Service Authentication Error"

    # The response carried neither an error code nor a patron id.
    NO_PATRON_ID = "NoPatronId"


class HoldPlacementFailed(HoldsProtocolError):
    PREFIX = "Service Request Error"

    # The response carried neither an error code nor a pickup location.
    NO_PICKUP_LOCATION = "NoPickupLocation"
