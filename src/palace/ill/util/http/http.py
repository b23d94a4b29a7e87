from __future__ import annotations

import time
from collections.abc import Callable, Mapping
from typing import Literal, TypedDict, Unpack

import requests
from requests import Session as RequestsSession
from requests.adapters import HTTPAdapter, Response
from requests.auth import AuthBase
from urllib3 import Retry

from palace.ill.core.exceptions import PalaceValueError
from palace.ill.util.http.base import (
    ResponseCodesTypes,
    get_default_headers,
    raise_for_bad_response,
)
from palace.ill.util.http.exception import (
    RequestNetworkException,
    RequestTimedOut,
)
from palace.ill.util.log import LoggerMixin
from palace.ill.util.sentinel import SentinelType

MakeRequestT = (
    RequestsSession | Callable[..., Response] | Literal[SentinelType.NotGiven]
)


class GetRequestKwargs(TypedDict, total=False):
    params: Mapping[str, str | int | float | None] | None
    headers: Mapping[str, str] | None
    auth: tuple[str, str] | AuthBase | None
    timeout: float | int | None
    allow_redirects: bool
    verify: bool | None

    allowed_response_codes: ResponseCodesTypes
    disallowed_response_codes: ResponseCodesTypes
    max_retry_count: int
    backoff_factor: float

    make_request_with: MakeRequestT


class RequestKwargs(GetRequestKwargs, total=False):
    data: str | bytes | Mapping[str, str] | None


class HTTP(LoggerMixin):
    """Makes requests to partner catalogs.

    Both partner protocols are plain HTTP, so every call goes through here.
    Transport failures come out as RequestTimedOut or
    RequestNetworkException, and unusable responses as
    BadResponseException, never as a requests exception.
    """

    DEFAULT_REQUEST_RETRIES = 5
    DEFAULT_REQUEST_TIMEOUT = 20
    DEFAULT_BACKOFF_FACTOR = 1.0

    # Responses worth retrying, when retries are enabled at all.
    RETRY_STATUS_CODES = [429, 500, 502, 503, 504]

    # Only these settings configure the session. Everything else is
    # passed through to requests.
    _SESSION_SETTINGS = ("max_retry_count", "backoff_factor")

    @classmethod
    def retry_strategy(
        cls, max_retry_count: int | None = None, backoff_factor: float | None = None
    ) -> Retry:
        return Retry(
            total=(
                cls.DEFAULT_REQUEST_RETRIES
                if max_retry_count is None
                else max_retry_count
            ),
            backoff_factor=(
                cls.DEFAULT_BACKOFF_FACTOR if backoff_factor is None else backoff_factor
            ),
            status_forcelist=cls.RETRY_STATUS_CODES,
            # Once retries run out, the last response is judged by
            # raise_for_bad_response like any other.
            raise_on_status=False,
        )

    @classmethod
    def session(
        cls,
        max_retry_count: int | None = None,
        backoff_factor: float | None = None,
    ) -> RequestsSession:
        """A new session that retries according to the given settings.

        Sessions are not thread-safe. Each search worker gets its own.
        """
        adapter = HTTPAdapter(
            max_retries=cls.retry_strategy(max_retry_count, backoff_factor)
        )
        session = RequestsSession()
        for prefix in ("http://", "https://"):
            session.mount(prefix, adapter)
        return session

    @classmethod
    def get_with_timeout(cls, url: str, **kwargs: Unpack[GetRequestKwargs]) -> Response:
        return cls.request_with_timeout("GET", url, **kwargs)

    @classmethod
    def request_with_timeout(
        cls, http_method: str, url: str, **kwargs: Unpack[RequestKwargs]
    ) -> Response:
        return cls._request_with_timeout(http_method, url, **kwargs)

    @classmethod
    def _validate_kwargs(cls, kwargs: RequestKwargs) -> None:
        # A session brings its own retry settings.
        if not isinstance(kwargs.get("make_request_with"), RequestsSession):
            return
        given = [f"'{name}'" for name in cls._SESSION_SETTINGS if name in kwargs]
        if given:
            raise PalaceValueError(
                f"Cannot set {', '.join(given)} when 'make_request_with' is a Session."
            )

    @classmethod
    def _request_with_timeout(
        cls, http_method: str, url: str, **kwargs: Unpack[RequestKwargs]
    ) -> Response:
        """Make the request and check its response.

        :param make_request_with: A session, or a callable with the
            signature of `requests.request`. By default a new session with
            the requested retry settings is used for this one request.
        """
        cls._validate_kwargs(kwargs)

        make_request_with: MakeRequestT = kwargs.pop(
            "make_request_with", SentinelType.NotGiven
        )
        allowed_response_codes = kwargs.pop("allowed_response_codes", [])
        disallowed_response_codes = kwargs.pop("disallowed_response_codes", [])
        max_retry_count = kwargs.pop("max_retry_count", None)
        backoff_factor = kwargs.pop("backoff_factor", None)

        kwargs.setdefault("timeout", cls.DEFAULT_REQUEST_TIMEOUT)
        headers = get_default_headers()
        headers.update(kwargs.get("headers") or {})
        kwargs["headers"] = headers

        started = time.perf_counter()
        try:
            if make_request_with is SentinelType.NotGiven:
                with cls.session(max_retry_count, backoff_factor) as session:
                    response = session.request(http_method, url, **kwargs)  # type: ignore[misc]
            elif isinstance(make_request_with, RequestsSession):
                response = make_request_with.request(http_method, url, **kwargs)  # type: ignore[misc]
            else:
                response = make_request_with(http_method, url, **kwargs)
        except requests.exceptions.Timeout as e:
            raise RequestTimedOut(url, str(e)) from e
        except requests.exceptions.RequestException as e:
            raise RequestNetworkException(url, str(e)) from e

        cls.logger().debug(
            f"{http_method} {url} answered {response.status_code} "
            f"in {time.perf_counter() - started:.2f} seconds"
        )
        return raise_for_bad_response(
            url, response, allowed_response_codes, disallowed_response_codes
        )
