from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping
from typing import Any

from palace.ill.api.interfaces import RequestStore
from palace.ill.api.lifecycle.envelope import (
    Operation,
    ResultEnvelope,
    ResultStatus,
    Stage,
)
from palace.ill.sqlalchemy.model.illrequest import (
    AttributeType,
    IllRequest,
    IllRequestStatus,
)
from palace.ill.util.log import LoggerMixin

Params = Mapping[str, Any]
Handler = Callable[[IllRequest | None, Params], ResultEnvelope]


class IllBackend(LoggerMixin, ABC):
    """A way of fulfilling ILL requests, as seen by the host.

    The host calls `dispatch` with an operation name, the request being
    worked on and whatever the operator submitted. Backends must support
    `create` and `confirm`; the other operations answer "not implemented"
    unless a backend overrides them.
    """

    def __init__(self, store: RequestStore) -> None:
        self.store = store

    @abstractmethod
    def name(self) -> str: ...

    def capabilities(self, name: str) -> Callable[..., ResultEnvelope] | None:
        """Look up an optional capability, such as unmediated ILL.

        None of them are implemented.
        """
        return None

    def status_graph(self) -> dict[str, dict[str, Any]]:
        """Statuses this backend adds to the host's request workflow."""
        return {
            IllRequestStatus.MIG.value: {
                "prev_actions": [
                    IllRequestStatus.NEW.value,
                    IllRequestStatus.REQREV.value,
                    IllRequestStatus.QUEUED.value,
                ],
                "id": IllRequestStatus.MIG.value,
                "name": IllRequestStatus.MIG.description,
                "ui_method_name": "Switch provider",
                "method": Operation.MIGRATE.value,
                "next_actions": [],
                "ui_method_icon": "fa-search",
            }
        }

    def metadata(self, request: IllRequest) -> dict[str, str | None]:
        """The canonical details of a request, for display."""
        attributes = self.attributes(request)
        return {
            "ID": attributes.get(AttributeType.BIB_ID),
            "Title": attributes.get(AttributeType.TITLE),
            "Author": attributes.get(AttributeType.AUTHOR),
            "Target": attributes.get(AttributeType.TARGET),
        }

    def attributes(self, request: IllRequest | None) -> dict[str, str]:
        """The request's attributes as a plain mapping."""
        if request is None or request.id is None:
            return {}
        return {
            attribute.type: attribute.value
            for attribute in self.store.find_attributes(request.id)
        }

    def dispatch(
        self, operation: str, request: IllRequest | None, params: Params
    ) -> ResultEnvelope:
        handlers: dict[str, Handler] = {
            Operation.CREATE: self.create,
            Operation.CONFIRM: self.confirm,
            Operation.RENEW: self.renew,
            Operation.CANCEL: self.cancel,
            Operation.STATUS: self.status,
            Operation.MIGRATE: self.migrate,
        }
        handler = handlers.get(operation)
        if handler is None:
            self.log.warning(f"Unknown operation '{operation}' requested.")
            return ResultEnvelope.failure(
                operation,
                str(params.get("stage") or ""),
                ResultStatus.UNKNOWN_OPERATION,
                f"Unknown operation: {operation}",
            )
        return handler(request, params)

    @abstractmethod
    def create(self, request: IllRequest | None, params: Params) -> ResultEnvelope: ...

    @abstractmethod
    def confirm(self, request: IllRequest | None, params: Params) -> ResultEnvelope: ...

    def renew(self, request: IllRequest | None, params: Params) -> ResultEnvelope:
        return self._not_implemented(Operation.RENEW)

    def cancel(self, request: IllRequest | None, params: Params) -> ResultEnvelope:
        return self._not_implemented(Operation.CANCEL)

    def status(self, request: IllRequest | None, params: Params) -> ResultEnvelope:
        return self._not_implemented(Operation.STATUS)

    def migrate(self, request: IllRequest | None, params: Params) -> ResultEnvelope:
        return self._not_implemented(Operation.MIGRATE)

    @staticmethod
    def _not_implemented(operation: Operation) -> ResultEnvelope:
        return ResultEnvelope.failure(
            operation, Stage.FAKE, ResultStatus.NOT_IMPLEMENTED
        )
