from __future__ import annotations

from collections.abc import Collection
from typing import Literal

import requests

from palace import ill
from palace.ill.util.http.exception import BadResponseException

# Sent when the package was not installed from a release build.
DEFAULT_USER_AGENT_VERSION = "x.x.x"

ResponseCodesStringLiterals = Literal["2xx", "3xx", "4xx", "5xx"]
ResponseCodesTypes = Collection[ResponseCodesStringLiterals | int]


def get_user_agent() -> str:
    return f"Palace ILL/{ill.__version__ or DEFAULT_USER_AGENT_VERSION}"


def get_default_headers() -> dict[str, str]:
    """Headers sent with every request to a partner, unless overridden."""
    return {"User-Agent": get_user_agent()}


def get_series(status_code: int) -> ResponseCodesStringLiterals:
    """'4xx' for 404, and so on."""
    return f"{int(status_code) // 100}xx"  # type: ignore[return-value]


def status_code_matches(status_code: int, code_collection: ResponseCodesTypes) -> bool:
    """Whether the code, or its series, appears in the collection."""
    wanted = {str(code) for code in code_collection}
    return str(status_code) in wanted or get_series(status_code) in wanted


def raise_for_bad_response(
    url: str,
    response: requests.Response,
    allowed_response_codes: ResponseCodesTypes,
    disallowed_response_codes: ResponseCodesTypes,
) -> requests.Response:
    """Return the response if the broker can carry on with it.

    A code in `allowed_response_codes` is always accepted. Otherwise a 5xx
    code, or one in `disallowed_response_codes`, is rejected, and so is
    anything at all outside a non-empty `allowed_response_codes`.

    :raise BadResponseException: If the response is rejected.
    """
    status_code = response.status_code
    if status_code_matches(status_code, allowed_response_codes):
        return response

    if get_series(status_code) == "5xx" or status_code_matches(
        status_code, disallowed_response_codes
    ):
        message = BadResponseException.BAD_STATUS_CODE_MESSAGE % status_code
    elif allowed_response_codes:
        allowed = ", ".join(sorted(str(code) for code in allowed_response_codes))
        message = (
            f"Got status code {status_code} from external server, "
            f"but can only continue on: {allowed}."
        )
    else:
        return response

    raise BadResponseException(
        str(url),
        message,
        debug_message=f"Response content: {response.text}",
        response=response,
    )
