from typing import Annotated, Any

from frozendict import frozendict
from pydantic import (
    AfterValidator,
    BeforeValidator,
    HttpUrl as HttpUrlPydantic,
    PlainSerializer,
    TypeAdapter,
)

_http_url_adapter = TypeAdapter(HttpUrlPydantic)


def _validate_http_url(value: Any) -> str:
    # Pydantic's URL type is not a str, and it adds a trailing slash to
    # bare hosts. Partner endpoint URLs are used as given, without one.
    return str(_http_url_adapter.validate_python(str(value))).rstrip("/")


HttpUrl = Annotated[str, BeforeValidator(_validate_http_url)]
"""An http(s) URL, validated by pydantic but kept as a plain string."""


type FrozenDict[K, V] = Annotated[
    dict[K, V], AfterValidator(lambda value: frozendict(value)), PlainSerializer(dict)
]
"""A mapping that is validated like a dict and stored as a frozendict."""
