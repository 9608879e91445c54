"""FastAPI-based inbound API for wahook.

Endpoints:
- GET /health - Readiness and uptime (no auth required)
- GET /status - Session lifecycle view (auth required)
- GET /qr - Outstanding pairing challenge (auth required)
- POST /send-message, /send-reply, /send-reaction, /send-media,
  /send-location, /send-contact, /send-typing, /send-bulk-messages

Security:
- Shared-secret header (``api.api_key_header``) compared in constant time
"""

from __future__ import annotations

import hmac
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Literal

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger
from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from wahook.core.errors import GatewayError, InvalidRequest
from wahook.core.models import MediaSource, TypingContext

if TYPE_CHECKING:
    from wahook.app.bootstrap import GatewayRuntime
    from wahook.config.schema import Config

_TO = AliasChoices("to", "conversationId", "chatId")
_MESSAGE_ID = AliasChoices("messageId", "message_id")


class _Body(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class SendMessageBody(_Body):
    to: str | None = Field(default=None, validation_alias=_TO)
    text: str | None = None
    typing_duration: int | None = Field(
        default=None, validation_alias=AliasChoices("typing_duration", "typingDuration")
    )
    enable_typing: bool = Field(
        default=True, validation_alias=AliasChoices("enable_typing", "enableTyping")
    )
    message_delay: int = Field(
        default=0, validation_alias=AliasChoices("message_delay", "messageDelay")
    )
    message_type: str | None = Field(
        default=None, validation_alias=AliasChoices("message_type", "messageType")
    )
    complexity: str | None = None
    urgency: str | None = None

    def typing_context(self) -> TypingContext:
        return TypingContext(
            message_type=self.message_type,
            complexity=self.complexity,
            urgency=self.urgency,
        )


class ReplyBody(_Body):
    message_id: str | None = Field(default=None, validation_alias=_MESSAGE_ID)
    text: str | None = None


class ReactionBody(_Body):
    message_id: str | None = Field(default=None, validation_alias=_MESSAGE_ID)
    emoji: str | None = None


class MediaBody(_Body):
    to: str | None = Field(default=None, validation_alias=_TO)
    kind: Literal["image", "document", "audio", "video"] | None = None
    url: str | None = None
    data: str | None = None
    mimetype: str | None = None
    filename: str | None = None
    caption: str | None = None
    as_voice: bool = Field(default=False, validation_alias=AliasChoices("as_voice", "asVoice"))
    enable_presence: bool = Field(
        default=False, validation_alias=AliasChoices("enable_presence", "enablePresence")
    )
    presence_duration: int | None = Field(
        default=None, validation_alias=AliasChoices("presence_duration", "presenceDuration")
    )


class LocationBody(_Body):
    to: str | None = Field(default=None, validation_alias=_TO)
    latitude: float | None = None
    longitude: float | None = None
    description: str | None = None


class ContactBody(_Body):
    to: str | None = Field(default=None, validation_alias=_TO)
    contact_id: str | None = Field(
        default=None, validation_alias=AliasChoices("contactId", "contact_id")
    )


class TypingBody(_Body):
    to: str | None = Field(default=None, validation_alias=_TO)
    duration: int | None = None
    state: str = "typing"


class BulkBody(_Body):
    messages: Any = None
    delay_between: int | None = Field(
        default=None, validation_alias=AliasChoices("delay_between", "delayBetween")
    )
    typing_duration: int | None = Field(
        default=None, validation_alias=AliasChoices("typing_duration", "typingDuration")
    )
    enable_typing: bool = Field(
        default=True, validation_alias=AliasChoices("enable_typing", "enableTyping")
    )


@dataclass
class AppState:
    """Shared state for the API."""

    runtime: GatewayRuntime


def _check_api_key(provided: str | None, expected: str) -> bool:
    if not provided:
        return False
    return hmac.compare_digest(provided, expected)


def create_app(config: Config, runtime: GatewayRuntime | None = None) -> FastAPI:
    """Create the FastAPI application.

    Args:
        config: wahook configuration
        runtime: Prebuilt runtime; built from ``config`` when omitted

    Returns:
        FastAPI application instance
    """
    from wahook import __version__
    from wahook.app.bootstrap import build_runtime

    api_config = config.api

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        rt = runtime or build_runtime(config)
        app.state.wahook = AppState(runtime=rt)
        await rt.start()
        logger.info(f"WhatsApp service running on http://{api_config.host}:{api_config.port}")
        yield
        logger.info("WhatsApp service shutting down")
        await rt.stop()

    app = FastAPI(
        title="wahook",
        description="Webhook gateway for a WhatsApp account",
        version=__version__,
        lifespan=lifespan,
    )

    if not api_config.api_key:
        logger.warning("api.apiKey not configured; API authentication disabled")

    def verify_auth(request: Request) -> None:
        """Verify the shared-secret header for protected endpoints."""
        if not api_config.api_key:
            return
        provided = request.headers.get(api_config.api_key_header)
        if not _check_api_key(provided, api_config.api_key):
            raise HTTPException(status_code=401, detail="Invalid or missing API key")

    def get_runtime(request: Request) -> GatewayRuntime:
        return request.app.state.wahook.runtime

    @app.exception_handler(GatewayError)
    async def gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error(f"{request.url.path} failed: {exc} {exc.details}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        error = InvalidRequest("Invalid request body", errors=jsonable_errors(exc))
        return JSONResponse(status_code=error.status_code, content=error.to_dict())

    @app.exception_handler(HTTPException)
    async def http_error_handler(request: Request, exc: HTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "error": exc.detail},
        )

    protected = [Depends(verify_auth)]

    @app.get("/health", tags=["health"])
    async def health(request: Request) -> dict[str, Any]:
        """Health check endpoint (no auth required)."""
        return get_runtime(request).gateway.health()

    @app.get("/status", tags=["status"], dependencies=protected)
    async def status(request: Request) -> dict[str, Any]:
        return get_runtime(request).gateway.get_status()

    @app.get("/qr", tags=["status"], dependencies=protected)
    async def qr(request: Request) -> dict[str, Any]:
        state = get_runtime(request).state
        if state.current_challenge is None:
            raise HTTPException(status_code=404, detail="No QR code outstanding")
        return {
            "qr": state.current_challenge,
            "attempt": state.auth_attempt_count,
            "max_attempts": state.max_auth_attempts,
        }

    @app.post("/send-message", tags=["send"], dependencies=protected)
    async def send_message(body: SendMessageBody, request: Request) -> dict[str, Any]:
        return await get_runtime(request).gateway.send_text(
            body.to or "",
            body.text or "",
            enable_typing=body.enable_typing,
            typing_duration=body.typing_duration,
            message_delay=body.message_delay,
            context=body.typing_context(),
        )

    @app.post("/send-reply", tags=["send"], dependencies=protected)
    async def send_reply(body: ReplyBody, request: Request) -> dict[str, Any]:
        return await get_runtime(request).gateway.send_reply(body.message_id or "", body.text or "")

    @app.post("/send-reaction", tags=["send"], dependencies=protected)
    async def send_reaction(body: ReactionBody, request: Request) -> dict[str, Any]:
        return await get_runtime(request).gateway.send_reaction(body.message_id or "", body.emoji)

    @app.post("/send-media", tags=["send"], dependencies=protected)
    async def send_media(body: MediaBody, request: Request) -> dict[str, Any]:
        if body.kind is None:
            raise InvalidRequest("Missing required field: kind")
        return await get_runtime(request).gateway.send_media(
            body.to or "",
            body.kind,
            MediaSource(
                url=body.url,
                data=body.data,
                mimetype=body.mimetype,
                filename=body.filename,
            ),
            caption=body.caption,
            as_voice=body.as_voice,
            enable_presence=body.enable_presence,
            presence_duration=body.presence_duration,
        )

    @app.post("/send-location", tags=["send"], dependencies=protected)
    async def send_location(body: LocationBody, request: Request) -> dict[str, Any]:
        if body.latitude is None or body.longitude is None:
            raise InvalidRequest("Missing required fields: latitude, longitude")
        return await get_runtime(request).gateway.send_location(
            body.to or "", body.latitude, body.longitude, body.description
        )

    @app.post("/send-contact", tags=["send"], dependencies=protected)
    async def send_contact(body: ContactBody, request: Request) -> dict[str, Any]:
        return await get_runtime(request).gateway.send_contact(body.to or "", body.contact_id or "")

    @app.post("/send-typing", tags=["presence"], dependencies=protected)
    async def send_typing(body: TypingBody, request: Request) -> dict[str, Any]:
        return await get_runtime(request).gateway.set_presence(
            body.to or "", body.duration, body.state
        )

    @app.post("/send-bulk-messages", tags=["send"], dependencies=protected)
    async def send_bulk(body: BulkBody, request: Request) -> dict[str, Any]:
        return await get_runtime(request).gateway.send_bulk(
            body.messages,
            delay_between=body.delay_between,
            typing_duration=body.typing_duration,
            enable_typing=body.enable_typing,
        )

    return app


def jsonable_errors(exc: Any) -> list[dict[str, Any]]:
    return [
        {"loc": list(err.get("loc", ())), "msg": str(err.get("msg", ""))}
        for err in exc.errors()
    ]


def run_server(config: Config, *, log_level: str = "info") -> None:
    """Run the API server.

    This is a blocking call that runs the server until interrupted.
    """
    import uvicorn

    app = create_app(config)

    uvicorn.run(
        app,
        host=config.api.host,
        port=config.api.port,
        log_level=log_level.lower(),
    )
