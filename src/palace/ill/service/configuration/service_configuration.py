from __future__ import annotations

from typing import Any

from pydantic import ValidationError
from pydantic_core import ErrorDetails
from pydantic_settings import BaseSettings, SettingsConfigDict

from palace.ill.core.config import CannotLoadConfiguration


class ServiceConfiguration(BaseSettings):
    """Settings read from the environment.

    Subclasses declare their settings as pydantic fields and give
    themselves their own `env_prefix`. A setting that fails to validate is
    reported by the name of the environment variable that sets it, since
    that is what an operator has to fix.
    """

    model_config = SettingsConfigDict(
        env_prefix="PALACE_ILL_",
        str_strip_whitespace=True,
        # Settings are loaded once and shared between threads.
        frozen=True,
        env_file=".env",
        env_nested_delimiter="__",
        extra="ignore",
    )

    def __init__(self, *args: Any, **kwargs: Any):
        try:
            super().__init__(*args, **kwargs)
        except ValidationError as e:
            lines = ["Error loading settings from environment:"]
            lines.extend(f"  {self._describe(error)}" for error in e.errors())
            raise CannotLoadConfiguration("\n".join(lines)) from e

    @classmethod
    def _describe(cls, error: ErrorDetails) -> str:
        location = error["loc"]
        if not location:
            return error["msg"]

        name, *nested = (str(part) for part in location)
        if name in cls.model_fields:
            name = f"{cls.model_config.get('env_prefix', '')}{name}"
        delimiter = cls.model_config.get("env_nested_delimiter") or "__"
        variable = delimiter.join(part.upper() for part in (name, *nested))
        return f"{variable}:  {error['msg']}"
