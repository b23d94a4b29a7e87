from __future__ import annotations

from typing import Any, Self

import yaml
from frozendict import frozendict
from pydantic import (
    BaseModel,
    ConfigDict,
    NonNegativeInt,
    PositiveFloat,
    PositiveInt,
    field_validator,
)
from pydantic_settings import SettingsConfigDict

from palace.ill.core.config import CannotLoadConfiguration
from palace.ill.service.configuration.service_configuration import (
    ServiceConfiguration,
)
from palace.ill.util.pydantic import FrozenDict, HttpUrl


class TargetSettings(BaseModel):
    """A remote partner catalog.

    A target is searched over SRU (`search_url`) and holds are placed
    against it over ILS-DI (`holds_url`). Either endpoint may be missing,
    in which case the target only takes part in the operations it supports.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    search_url: HttpUrl | None = None
    holds_url: HttpUrl | None = None

    # The numeric id the partner is known by in the host catalog's list
    # of search servers.
    catalog_id: int | None = None

    # Service account used to authenticate against the holds endpoint.
    username: str | None = None
    password: str | None = None

    @property
    def can_search(self) -> bool:
        return self.search_url is not None

    @property
    def can_place_holds(self) -> bool:
        return (
            self.holds_url is not None
            and self.username is not None
            and self.password is not None
        )


class IllBrokerConfiguration(ServiceConfiguration):
    """Process-wide configuration for the ILL broker.

    Loaded once at startup (from the environment or a YAML document) and
    never mutated afterwards, so it can be shared by concurrent requests.
    """

    targets: FrozenDict[str, TargetSettings] = frozendict()

    # The cataloging framework imported records are committed under.
    framework: str = "ILL"

    page_size: PositiveInt = 20
    search_timeout: PositiveFloat = 20.0
    holds_timeout: PositiveFloat = 20.0
    max_retry_count: NonNegativeInt = 0

    # Sent to the holds endpoint as the originating location of the request.
    request_location: str = "127.0.0.1"

    # The holds protocol does not report a cost, so confirmed requests
    # are given this one.
    placeholder_cost: str = "0 GBP"

    remote_id_tag: str = "999"
    remote_id_subfield: str = "c"
    suppression_tag: str = "942"
    suppression_subfield: str = "n"

    model_config = SettingsConfigDict(env_prefix="PALACE_ILL_")

    @field_validator("remote_id_tag", "suppression_tag")
    @classmethod
    def _validate_tag(cls, value: str) -> str:
        if len(value) != 3 or not (value.isascii() and value.isdigit()):
            raise ValueError(f"'{value}' is not a MARC data field tag.")
        if value < "010":
            raise ValueError(f"'{value}' is a control field, not a data field.")
        return value

    @field_validator("remote_id_subfield", "suppression_subfield")
    @classmethod
    def _validate_subfield(cls, value: str) -> str:
        if len(value) != 1:
            raise ValueError(f"'{value}' is not a MARC subfield code.")
        return value

    @property
    def search_targets(self) -> frozendict[str, TargetSettings]:
        """The targets with a search endpoint, in name order."""
        return frozendict(
            (name, self.targets[name])
            for name in sorted(self.targets)
            if self.targets[name].can_search
        )

    @classmethod
    def from_yaml(cls, document: str, **overrides: Any) -> Self:
        """Load the configuration from a YAML document.

        The document uses the same keys as the environment variables,
        without the prefix. For example:

            framework: ILL
            targets:
              KOHA DEMO:
                catalog_id: 6
                search_url: https://koha.example.org:9999/biblios
                holds_url: https://koha.example.org/cgi-bin/koha/ilsdi.pl
                username: ill_service
                password: secret
        """
        try:
            data = yaml.safe_load(document) or {}
        except yaml.YAMLError as e:
            raise CannotLoadConfiguration(
                f"Error parsing configuration document: {e}"
            ) from e

        if not isinstance(data, dict):
            raise CannotLoadConfiguration(
                "Configuration document must be a mapping, "
                f"got {type(data).__name__}."
            )

        return cls(**{**data, **overrides})

