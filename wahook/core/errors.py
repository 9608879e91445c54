"""Error taxonomy surfaced to API callers."""

from __future__ import annotations

from typing import Any


class GatewayError(RuntimeError):
    """Base error carrying a machine-checkable kind and an HTTP status."""

    kind: str = "internal_error"
    status_code: int = 500

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"success": False, "error": self.message, "kind": self.kind}
        if self.details:
            payload.update(self.details)
        return payload


class InvalidRequest(GatewayError):
    kind = "invalid_request"
    status_code = 400


class NotReady(GatewayError):
    """Session not authenticated/ready. Callers poll status and retry."""

    kind = "not_ready"
    status_code = 503

    def __init__(self, message: str = "WhatsApp client not ready", **details: Any):
        super().__init__(message, status="not_ready", **details)


class ConversationUnavailable(GatewayError):
    kind = "conversation_unavailable"
    status_code = 404


class MessageNotFound(GatewayError):
    kind = "message_not_found"
    status_code = 404


class MediaFetchFailed(GatewayError):
    kind = "media_fetch_failed"
    status_code = 400


class SendFailed(GatewayError):
    kind = "send_failed"
    status_code = 500


class DeliveryTimeout(GatewayError):
    """Webhook call exceeded its timeout. Logged, never re-queued."""

    kind = "delivery_timeout"
    status_code = 504


class AuthExhausted(GatewayError):
    """Authentication attempts exhausted. Triggers session reset and restart."""

    kind = "auth_exhausted"
    status_code = 500
