from __future__ import annotations

import hmac
from typing import Any, Awaitable, Callable, Optional

from fastapi import Depends, FastAPI, Header, Request
from fastapi.responses import JSONResponse

from marcai.config import Settings, get_settings
from marcai.logging import get_logger, set_request_id

logger = get_logger(__name__)

UNAUTHORIZED_MESSAGE = "Webhook não autorizado"

WebhookHandler = Callable[[dict], Awaitable[Any]]


class WebhookUnauthorized(Exception):
    """Inbound webhook without a valid shared-secret header."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


def settings_dependency() -> Settings:
    return get_settings()


async def validate_webhook(
    x_api_token: Optional[str] = Header(None, alias="x-api-token"),
    settings: Settings = Depends(settings_dependency),
) -> None:
    """Reject requests whose ``x-api-token`` does not match the configured secret."""
    expected = settings.webhook_token
    if not expected:
        raise WebhookUnauthorized("webhook token not configured")
    if not x_api_token:
        raise WebhookUnauthorized("missing x-api-token header")
    if not hmac.compare_digest(x_api_token.encode(), expected.encode()):
        raise WebhookUnauthorized("token mismatch")


def register_webhook_handlers(app: FastAPI) -> None:
    @app.exception_handler(WebhookUnauthorized)
    async def handle_unauthorized(request: Request, exc: WebhookUnauthorized):
        logger.warning(
            "webhook_rejected",
            path=request.url.path,
            client=request.client.host if request.client else None,
            reason=exc.reason,
        )
        return JSONResponse(
            status_code=401,
            content={"success": False, "error": UNAUTHORIZED_MESSAGE},
        )


def create_webhook_app(
    handler: Optional[WebhookHandler] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    """Build the inbound webhook receiver.

    ``handler`` gets the decoded JSON event of every authorized call.
    """
    app = FastAPI(title="marcai-webhooks")
    register_webhook_handlers(app)
    if settings is not None:
        app.dependency_overrides[settings_dependency] = lambda: settings

    @app.post("/webhook", dependencies=[Depends(validate_webhook)])
    async def receive_webhook(request: Request):
        set_request_id()
        try:
            event = await request.json()
        except ValueError:
            return JSONResponse(
                status_code=400, content={"success": False, "error": "Payload inválido"}
            )
        if not isinstance(event, dict):
            return JSONResponse(
                status_code=400, content={"success": False, "error": "Payload inválido"}
            )
        logger.info("webhook_received", event_type=event.get("type"), phone=event.get("phone"))
        if handler is not None:
            await handler(event)
        return {"success": True}

    return app
