"""
Remi - Webhook Routes
======================
Thin controllers for the WhatsApp Cloud API webhook:

  - ``GET  /webhook`` → verification handshake (echo ``hub.challenge``)
  - ``POST /webhook`` → event delivery; plain-text messages are handed
    to the dispatcher and the request is acknowledged immediately
  - ``GET  /`` and ``GET /healthz`` → liveness

No pipeline logic lives here.  Non-text messages, status callbacks,
foreign ``object`` types and events of an unexpected shape are
acknowledged and dropped.  Only a body that is not JSON gets a 400.
"""

from __future__ import annotations

import hashlib
import hmac

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import PlainTextResponse
from pydantic import ValidationError

from remi.config.prompt_templates import HEALTH_MESSAGE
from remi.config.settings import settings
from remi.src.api.schemas import WebhookPayload
from remi.src.core.dispatcher import TurnDispatcher
from remi.src.utils.logger import get_logger
from remi.src.utils.text_utils import clean_message, preview

logger = get_logger(__name__)

router = APIRouter()

_WHATSAPP_OBJECT = "whatsapp_business_account"
_SIGNATURE_HEADER = "X-Hub-Signature-256"


def get_dispatcher(request: Request) -> TurnDispatcher:
    return request.app.state.dispatcher


def _signature_valid(body: bytes, header: str | None, secret: str) -> bool:
    """Check ``sha256=<hex>`` against an HMAC-SHA256 of the raw body."""
    if not header or not header.startswith("sha256="):
        return False
    expected = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, header.removeprefix("sha256="))


@router.get("/", response_class=PlainTextResponse, include_in_schema=False)
async def root() -> str:
    return HEALTH_MESSAGE


@router.get("/healthz", include_in_schema=False)
async def healthcheck(request: Request) -> dict:
    dispatcher: TurnDispatcher | None = getattr(request.app.state, "dispatcher", None)
    return {"status": "ok", "in_flight": dispatcher.in_flight if dispatcher else 0}


@router.get("/webhook", response_class=PlainTextResponse)
async def verify_webhook(mode: str | None = Query(None, alias="hub.mode"), token: str | None = Query(None, alias="hub.verify_token"), challenge: str | None = Query(None, alias="hub.challenge")) -> str:
    if not mode or not token:
        raise HTTPException(status_code=400, detail="Missing hub.mode or hub.verify_token")

    if mode == "subscribe" and hmac.compare_digest(token, settings.VERIFY_TOKEN.get_secret_value()):
        logger.info("[WEBHOOK] Verified successfully.")
        return challenge or ""

    logger.warning("[WEBHOOK] Verification rejected (mode=%s).", mode)
    raise HTTPException(status_code=403, detail="Verification failed")


@router.post("/webhook")
async def receive_webhook(request: Request, dispatcher: TurnDispatcher = Depends(get_dispatcher)) -> dict:
    body = await request.body()

    if settings.APP_SECRET is not None:
        if not _signature_valid(body, request.headers.get(_SIGNATURE_HEADER), settings.APP_SECRET.get_secret_value()):
            logger.warning("[WEBHOOK] Rejected payload with missing or invalid signature.")
            raise HTTPException(status_code=403, detail="Invalid signature")

    try:
        payload = WebhookPayload.model_validate_json(body)
    except ValidationError as exc:
        if any(err["type"] == "json_invalid" for err in exc.errors()):
            logger.warning("[WEBHOOK] Body is not valid JSON.")
            raise HTTPException(status_code=400, detail="Invalid JSON") from exc
        logger.warning("[WEBHOOK] Dropping event with unexpected shape: %s", exc.errors()[:1])
        return {"status": "ignored"}

    if payload.object != _WHATSAPP_OBJECT:
        logger.debug("[WEBHOOK] Ignoring object type %r.", payload.object)
        return {"status": "ignored"}

    for sender_id, raw_text in payload.text_messages():
        text = clean_message(raw_text)
        if not text:
            logger.debug("[WEBHOOK] Dropping empty text message from %s.", sender_id)
            continue
        logger.info("[WEBHOOK] Message from %s: '%s'", sender_id, preview(text))
        dispatcher.submit(sender_id, text)

    return {"status": "received"}
