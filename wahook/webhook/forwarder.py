"""Forward inbound chat messages to the configured webhook consumer."""

from __future__ import annotations

from typing import Any

import httpx
from loguru import logger

from wahook.config.schema import WebhookConfig
from wahook.core.errors import DeliveryTimeout
from wahook.core.models import InboundMessage, MediaPayload
from wahook.core.ports import ConnectionPort
from wahook.utils.helpers import is_broadcast_status


def build_payload(
    message: InboundMessage,
    media: MediaPayload | None,
    *,
    confirmation_timeout_s: int,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "from": message.sender_id,
        "chatId": message.chat_id,
        "author": message.author,
        "body": message.body,
        "messageId": message.message_id,
        "timestamp": message.timestamp,
        "type": message.message_type,
        "isGroup": message.is_group,
        "hasMedia": message.has_media,
        "confirmationTimeout": confirmation_timeout_s,
    }
    if media is not None:
        payload["media"] = {
            "mimetype": media.mimetype,
            "data": media.data,
            "filename": media.filename,
        }
    return payload


class WebhookForwarder:
    """Single timed POST per inbound message; failures are logged, never retried."""

    def __init__(
        self,
        config: WebhookConfig,
        connection: ConnectionPort | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config
        self._connection = connection
        self._transport = transport
        self.delivered = 0
        self.failed = 0
        self.last_error: DeliveryTimeout | None = None

    def should_forward(self, message: InboundMessage) -> bool:
        if message.from_me:
            return False
        if is_broadcast_status(message.chat_id) or is_broadcast_status(message.sender_id):
            return False
        return True

    async def __call__(self, message: InboundMessage) -> None:
        await self.forward(message)

    async def forward(self, message: InboundMessage) -> bool:
        """Deliver one message. Returns True when the consumer answered 2xx."""
        if not self.config.enabled or not self.should_forward(message):
            return False

        media = await self._collect_media(message)
        payload = build_payload(
            message, media, confirmation_timeout_s=self.config.confirmation_timeout_s
        )
        headers = {"Content-Type": "application/json"}
        if self.config.secret:
            headers[self.config.secret_header] = self.config.secret

        timeout = self.config.resolved_timeout_s
        try:
            async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
                response = await client.post(self.config.url, json=payload, headers=headers)
        except httpx.TimeoutException:
            self.failed += 1
            self.last_error = DeliveryTimeout(
                f"Webhook delivery for {message.message_id} timed out after {timeout:.0f}s"
            )
            logger.error(self.last_error.message)
            return False
        except httpx.HTTPError as e:
            self.failed += 1
            logger.error(f"Webhook delivery for {message.message_id} failed: {e}")
            return False

        if response.is_success:
            self.delivered += 1
            logger.info(f"Forwarded message {message.message_id} from {message.sender_id}")
            return True

        self.failed += 1
        logger.warning(
            f"Webhook returned {response.status_code} for message {message.message_id}"
        )
        return False

    async def _collect_media(self, message: InboundMessage) -> MediaPayload | None:
        if not message.has_media or not self.config.include_media:
            return None
        if message.media is not None:
            return message.media
        if self._connection is None:
            return None
        try:
            return await self._connection.download_media(message.message_id)
        except Exception as e:
            logger.warning(f"Failed to download media for {message.message_id}: {e}")
            return None
