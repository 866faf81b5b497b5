"""Error taxonomy shared by the engine, the workflow services and the API.

Every exception carries a machine-readable ``code`` and the HTTP status the
API layer renders it with, so route handlers never translate errors by hand.
"""

from __future__ import annotations


class RiskGateError(Exception):
    """Base class for all engine errors.

    Attributes:
        code: Stable taxonomy identifier returned to API callers.
        status_code: HTTP status used when the error reaches the API layer.
        message: Human-readable description.
    """

    code: str = "internal"
    status_code: int = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, str]:
        return {"error": self.code, "message": self.message}


class NotFoundError(RiskGateError):
    """A booking, host or charge identifier did not resolve."""

    code = "not_found"
    status_code = 404


class InvalidRequestError(RiskGateError):
    """Malformed action name, missing payload or out-of-range value."""

    code = "invalid_request"
    status_code = 400


class InvalidTransitionError(InvalidRequestError):
    """A verification status change that the state machine does not allow."""

    code = "invalid_transition"
    status_code = 409


class StoreUnavailableError(RiskGateError):
    """A read or write against the signal store failed."""

    code = "store_unavailable"
    status_code = 503


class AnalysisTimeoutError(StoreUnavailableError):
    """The risk analysis fan-out did not finish within its time budget."""

    code = "analysis_timeout"
    status_code = 504


class InternalError(RiskGateError):
    """Unexpected failure while scoring."""

    code = "internal"
    status_code = 500
