from __future__ import annotations

from urllib.parse import urlparse

import requests

from palace.ill.core.exceptions import IntegrationException


class RemoteIntegrationException(IntegrationException):
    """Talking to a partner system over HTTP failed.

    `url` is the URL that failed, or a service name such as "ILS-DI" when
    there is no single URL to blame. `service` is the URL's host, or the
    service name.
    """

    internal_message = "Error accessing %s: %s"

    def __init__(
        self, url_or_service: str, message: str, debug_message: str | None = None
    ) -> None:
        self.url = url_or_service
        if url_or_service.startswith(("http:", "https:")):
            self.service = urlparse(url_or_service).netloc
        else:
            self.service = url_or_service
        super().__init__(message, debug_message)

    def __str__(self) -> str:
        details = super().__str__()
        if self.debug_message:
            details = f"{details}\n\n{self.debug_message}"
        return self.internal_message % (self.url, details)


class BadResponseException(RemoteIntegrationException):
    """The partner answered, but not with anything we can use."""

    internal_message = "Bad response from %s: %s"

    BAD_STATUS_CODE_MESSAGE = (
        "Got status code %s from external server, cannot continue."
    )

    def __init__(
        self,
        url_or_service: str,
        message: str,
        response: requests.Response,
        debug_message: str | None = None,
    ):
        super().__init__(
            url_or_service,
            message,
            (
                debug_message
                if debug_message is not None
                else f"Status code: {response.status_code}\nContent: {response.text}"
            ),
        )
        self.response = response

    @property
    def status_line(self) -> str:
        """e.g. '500 Internal Server Error', or just '500' with no reason."""
        return f"{self.response.status_code} {self.response.reason or ''}".strip()

    @property
    def content(self) -> str:
        return self.response.text


class RequestNetworkException(RemoteIntegrationException):
    """No response came back from the partner at all."""

    internal_message = "Network error contacting %s: %s"


class RequestTimedOut(RequestNetworkException):
    internal_message = "Timeout accessing %s: %s"
