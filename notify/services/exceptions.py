"""
Service-level exceptions for Notify.
"""

from typing import Optional


class NotifyError(Exception):
    """Base class for domain errors raised by the services layer."""

    code = "notify_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self):
        return {"error": self.code, "message": self.message}


class NotFoundError(NotifyError):
    code = "not_found"

    def __init__(self, kind: str, entity_id: str):
        super().__init__(f"{kind} '{entity_id}' not found")
        self.kind = kind
        self.entity_id = entity_id


class InvalidTransition(NotifyError):
    code = "invalid_transition"


class ProviderError(NotifyError):
    """An external provider call failed; the caller may retry."""

    code = "provider_error"

    def __init__(self, provider: str, message: str, status_code: Optional[int] = None):
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.status_code = status_code

    def to_dict(self):
        data = super().to_dict()
        data["provider"] = self.provider
        return data


class ProviderNotConfigured(ProviderError):
    code = "provider_not_configured"

    def __init__(self, provider: str):
        super().__init__(provider, "provider credentials are not configured")


class RefundRejected(NotifyError):
    """A refund precondition did not hold. Nothing was written."""

    code = "refund_rejected"

    NOT_PAID = "not_paid"
    ALREADY_REFUNDED = "already_refunded"
    WINDOW_EXPIRED = "window_expired"

    def __init__(self, reason: str, message: str):
        super().__init__(message)
        self.reason = reason

    def to_dict(self):
        data = super().to_dict()
        data["reason"] = self.reason
        return data


class RefundFailed(NotifyError):
    """A refund step failed after earlier steps were applied and then compensated."""

    code = "refund_failed"

    def __init__(self, transaction_id: str, step: str, cause: Exception):
        super().__init__(f"Refund of '{transaction_id}' failed at step '{step}': {cause}")
        self.transaction_id = transaction_id
        self.step = step
        self.cause = cause
