from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from urllib.parse import quote, quote_plus, urlencode

from palace.ill.api.ilsdi.exception import (
    AuthenticationFailed,
    HoldPlacementFailed,
    HoldsTransportError,
)
from palace.ill.api.ilsdi.parser import ILSDIResponseParser, ServiceResponse
from palace.ill.api.settings import TargetSettings
from palace.ill.core.exceptions import PalaceValueError
from palace.ill.util.http import (
    HTTP,
    BadResponseException,
    RequestNetworkException,
)
from palace.ill.util.log import LoggerMixin, elapsed_time_logging


@dataclass(frozen=True)
class HoldResult:
    patron_id: str
    bib_id: str
    pickup_location: str


class RemoteHoldsClient(LoggerMixin):
    """Place holds on a partner's records through its ILS-DI service.

    We hold the partner's records as a patron of the partner library,
    using the service account configured for the target.
    """

    AUTHENTICATE_PATRON = "AuthenticatePatron"
    HOLD_TITLE = "HoldTitle"

    def __init__(
        self,
        timeout: float = HTTP.DEFAULT_REQUEST_TIMEOUT,
        max_retry_count: int = 0,
        request_location: str = "127.0.0.1",
        parser: ILSDIResponseParser | None = None,
    ) -> None:
        self.timeout = timeout
        self.max_retry_count = max_retry_count
        self.request_location = request_location
        self.parser = parser or ILSDIResponseParser()

    def place_hold(
        self, name: str, target: TargetSettings, bib_id: str
    ) -> HoldResult:
        """
        :raise HoldsTransportError: If either call fails at the HTTP level.
        :raise AuthenticationFailed: If the service account is refused.
        :raise HoldPlacementFailed: If the partner refuses the hold.
        """
        if not target.can_place_holds:
            raise PalaceValueError(f"Target '{name}' cannot place holds.")

        with elapsed_time_logging(
            log_method=self.log.info,
            message_prefix=f"Hold on {name} record {bib_id}",
            skip_start=True,
        ):
            patron_id = self.authenticate(target)
            pickup_location = self.hold_title(target, patron_id, bib_id)
        self.log.info(
            f"Placed hold on {name} record {bib_id} for patron {patron_id}, "
            f"pickup at {pickup_location}."
        )
        return HoldResult(
            patron_id=patron_id, bib_id=bib_id, pickup_location=pickup_location
        )

    def authenticate(self, target: TargetSettings) -> str:
        response = self._call(
            target,
            self.AUTHENTICATE_PATRON,
            "id",
            {"username": target.username or "", "password": target.password or ""},
        )
        if response.code is not None:
            self.log.warning(f"Authentication against {target.holds_url} failed: {response.code}")
            raise AuthenticationFailed(response.code)
        if response.value is None:
            self.log.error(
                f"{self.AUTHENTICATE_PATRON} response from {target.holds_url} "
                "had neither an error code nor a patron id."
            )
            raise AuthenticationFailed(AuthenticationFailed.NO_PATRON_ID)
        return response.value

    def hold_title(self, target: TargetSettings, patron_id: str, bib_id: str) -> str:
        response = self._call(
            target,
            self.HOLD_TITLE,
            "pickup_location",
            {
                "patron_id": patron_id,
                "bib_id": bib_id,
                "request_location": self.request_location,
            },
        )
        if response.code is not None:
            self.log.warning(f"Hold on record {bib_id} refused: {response.code}")
            raise HoldPlacementFailed(response.code)
        if response.value is None:
            self.log.warning(f"Hold on record {bib_id} returned no pickup location.")
            raise HoldPlacementFailed(HoldPlacementFailed.NO_PICKUP_LOCATION)
        return response.value

    @staticmethod
    def display_url(url: str, params: Mapping[str, str]) -> str:
        """The request URL, with any password masked."""
        shown = {
            key: ("********" if key == "password" else value)
            for key, value in params.items()
        }
        return f"{url}?{urlencode(shown, safe='*')}"

    @staticmethod
    def mask_password(text: str, params: Mapping[str, str]) -> str:
        """Mask the password wherever it appears in `text`.

        Network errors from requests quote the request URL, query string
        included, so the password can turn up there in any of its encodings.
        """
        password = params.get("password")
        if not password:
            return text
        for encoded in sorted(
            {quote_plus(password), quote(password), password}, key=len, reverse=True
        ):
            text = text.replace(encoded, "********")
        return text

    def _call(
        self,
        target: TargetSettings,
        service: str,
        value_tag: str,
        params: Mapping[str, str],
    ) -> ServiceResponse:
        url = str(target.holds_url)
        query = {"service": service, **params}
        try:
            response = HTTP.get_with_timeout(
                url,
                params=query,
                timeout=self.timeout,
                max_retry_count=self.max_retry_count,
                allowed_response_codes=["2xx"],
            )
        except BadResponseException as e:
            self.log.warning(f"{service} call failed: {e.status_line}")
            raise HoldsTransportError(
                self.display_url(url, query), e.status_line, e.content
            ) from e
        except RequestNetworkException as e:
            status = self.mask_password(e.message or "", query)
            self.log.warning(f"{service} call failed: {status}")
            raise HoldsTransportError(self.display_url(url, query), status, "") from e

        try:
            return self.parser.parse(service, value_tag, response.content)
        except PalaceValueError as e:
            status_line = f"{response.status_code} {response.reason or ''}".strip()
            raise HoldsTransportError(
                self.display_url(url, query), status_line, response.text
            ) from e
