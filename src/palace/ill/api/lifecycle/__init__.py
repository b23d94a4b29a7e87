from palace.ill.api.lifecycle.backend import IllBackend
from palace.ill.api.lifecycle.envelope import (
    Next,
    Operation,
    ResultEnvelope,
    ResultStatus,
    Stage,
)
from palace.ill.api.lifecycle.lifecycle import RequestLifecycle

__all__ = [
    "IllBackend",
    "Next",
    "Operation",
    "RequestLifecycle",
    "ResultEnvelope",
    "ResultStatus",
    "Stage",
]
