from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


class Operation(StrEnum):
    CREATE = "create"
    CONFIRM = "confirm"
    RENEW = "renew"
    CANCEL = "cancel"
    STATUS = "status"
    MIGRATE = "migrate"


class Stage(StrEnum):
    INIT = "init"
    SEARCH_FORM = "search_form"
    # Continue a search after the operator picked one of several borrowers.
    SEARCH_CONT = "search_cont"
    BORROWERS = "borrowers"
    SEARCH_RESULTS = "search_results"
    CONFIRM = "confirm"
    RENEW = "renew"
    CANCEL = "cancel"
    STATUS = "status"
    IMMIGRATE = "immigrate"
    EMIGRATE = "emigrate"
    COMMIT = "commit"
    # Answered by operations a backend does not implement.
    FAKE = "fake"


class Next(StrEnum):
    ILLVIEW = "illview"
    ILLLIST = "illlist"
    EMIGRATE = "emigrate"


class ResultStatus(StrEnum):
    OK = ""

    MISSING_BRANCH = "missing_branch"
    INVALID_BRANCH = "invalid_branch"
    INVALID_BORROWER = "invalid_borrower"
    MISSING_QUERY = "missing_query"
    INVALID_TARGET = "invalid_target"
    UNKNOWN_STAGE = "unknown_stage"
    UNKNOWN_REQUEST = "unknown_request"
    UNKNOWN_OPERATION = "unknown_operation"

    IMPORT_FAILED = "import_failed"
    REMOTE_TRANSPORT_ERROR = "remote_transport_error"
    REMOTE_AUTHENTICATION_ERROR = "remote_authentication_error"
    REMOTE_REQUEST_ERROR = "remote_request_error"

    NOT_RENEWED = "not_renewed"
    NOT_IMPLEMENTED = "not_implemented"


_DEFAULT_MESSAGES = {
    ResultStatus.MISSING_BRANCH: "A branch must be selected.",
    ResultStatus.INVALID_BRANCH: "The selected branch does not exist.",
    ResultStatus.INVALID_BORROWER: "No patron matches the given identifier.",
    ResultStatus.MISSING_QUERY: "At least one search term is required.",
    ResultStatus.INVALID_TARGET: "The request's target cannot accept holds.",
    ResultStatus.UNKNOWN_STAGE: "Unknown stage.",
    ResultStatus.UNKNOWN_REQUEST: "The request is not known to this backend.",
    ResultStatus.UNKNOWN_OPERATION: "Unknown operation.",
    ResultStatus.NOT_RENEWED: "The request is still on order and cannot be renewed.",
    ResultStatus.NOT_IMPLEMENTED: "Not Implemented",
}


@dataclass(frozen=True)
class ResultEnvelope:
    """What every lifecycle operation returns to the host.

    `stage` tells the host which stage to render next, and `value`
    carries whatever the host needs to carry on from there.
    """

    error: bool
    status: str
    message: str
    operation: str
    stage: str
    next: str | None = None
    value: Any = field(default_factory=dict)

    @classmethod
    def success(
        cls,
        operation: Operation,
        stage: Stage | str,
        value: Any = None,
        next: Next | None = None,
    ) -> ResultEnvelope:
        return cls(
            error=False,
            status=ResultStatus.OK,
            message="",
            operation=operation,
            stage=stage,
            next=next,
            value=value if value is not None else {},
        )

    @classmethod
    def failure(
        cls,
        operation: Operation | str,
        stage: Stage | str,
        status: ResultStatus,
        message: str | None = None,
        value: Any = None,
    ) -> ResultEnvelope:
        return cls(
            error=True,
            status=status,
            message=message if message is not None else _DEFAULT_MESSAGES.get(status, ""),
            operation=operation,
            stage=stage,
            value=value if value is not None else {},
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.error,
            "status": str(self.status),
            "message": self.message,
            "operation": str(self.operation),
            "stage": str(self.stage),
            "next": str(self.next) if self.next is not None else None,
            "value": self.value,
        }

