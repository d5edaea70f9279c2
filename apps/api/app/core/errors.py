"""Service error taxonomy shared by every conversation operation.

Each error carries a stable machine-readable ``code`` and the HTTP status
the API layer renders it with. Services raise these; routers never build
HTTPExceptions for domain failures.
"""

from __future__ import annotations


class ServiceError(Exception):
    """Base exception for service errors."""

    code = "INTERNAL_SERVER_ERROR"
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, str]:
        return {"code": self.code, "detail": self.message}


class ValidationError(ServiceError):
    """Malformed or inconsistent caller input."""

    code = "UNPROCESSABLE_CONTENT"
    status_code = 422


class NotFoundError(ServiceError):
    """Referenced entity does not exist within the organization."""

    code = "NOT_FOUND"
    status_code = 404


class UnauthorizedError(ServiceError):
    """Actor lacks the required membership, permission or sender grant."""

    code = "UNAUTHORIZED"
    status_code = 403


class InternalError(ServiceError):
    """Storage failure or invariant violation.

    The message is always generic; details go to the log.
    """

    code = "INTERNAL_SERVER_ERROR"
    status_code = 500

    def __init__(self, message: str = "Something went wrong, please contact support"):
        super().__init__(message)


class OutboundDispatchError(ServiceError):
    """Mail bridge rejected or failed an outbound send.

    Raised only after the entry has been committed, so the caller can still
    locate the persisted conversation and entry.
    """

    code = "MAIL_DISPATCH_FAILED"
    status_code = 502

    def __init__(self, message: str, *, convo_public_id: str, entry_public_id: str):
        super().__init__(message)
        self.convo_public_id = convo_public_id
        self.entry_public_id = entry_public_id

    def to_dict(self) -> dict[str, str]:
        payload = super().to_dict()
        payload["convo_public_id"] = self.convo_public_id
        payload["entry_public_id"] = self.entry_public_id
        return payload
