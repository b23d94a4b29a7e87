class BasePalaceException(Exception):
    """Base class for the broker's own exceptions.

    `message` is kept as an attribute so handlers can show it without the
    decoration a subclass's `__str__` may add.
    """

    def __init__(self, message: str | None = None):
        super().__init__(message)
        self.message = message


class PalaceValueError(BasePalaceException, ValueError): ...


class IntegrationException(BasePalaceException):
    """The broker could not work with a partner system.

    Either talking to it failed (RemoteIntegrationException), or the
    broker's configuration for it is missing or wrong
    (CannotLoadConfiguration).

    :param debug_message: Extra detail for staff, such as the body of a
        failed response.
    """

    def __init__(self, message: str | None, debug_message: str | None = None) -> None:
        super().__init__(message)
        self.debug_message = debug_message
