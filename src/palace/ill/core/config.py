from palace.ill.core.exceptions import IntegrationException


class CannotLoadConfiguration(IntegrationException):
    """The broker's configuration could not be loaded or is invalid.

    This is raised at startup, before any request is handled, so the
    operator can fix the environment (or YAML document) and try again.
    """
