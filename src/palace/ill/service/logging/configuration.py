from __future__ import annotations

import logging
from enum import StrEnum

from pydantic_settings import SettingsConfigDict

from palace.ill.service.configuration.service_configuration import (
    ServiceConfiguration,
)


class LogLevel(StrEnum):
    """The log levels the broker can be configured with.

    Values are the level names the logging module uses, so a member can
    be handed straight to it.
    """

    debug = "DEBUG"
    info = "INFO"
    warning = "WARNING"
    error = "ERROR"

    @property
    def levelno(self) -> int:
        return logging.getLevelNamesMapping()[self.value]

    @classmethod
    def from_level(cls, level: int | str) -> LogLevel:
        """Look up a level given as a number or a name in any case."""
        name = logging.getLevelName(level) if isinstance(level, int) else level.upper()
        try:
            return cls(name)
        except ValueError:
            raise ValueError(f"'{level}' is not a valid LogLevel") from None


class LoggingConfiguration(ServiceConfiguration):
    level: LogLevel = LogLevel.info
    # Used for chatty libraries, see VERBOSE_LOGGERS.
    verbose_level: LogLevel = LogLevel.warning

    model_config = SettingsConfigDict(env_prefix="PALACE_ILL_LOG_")
