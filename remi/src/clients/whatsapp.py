"""
Remi - WhatsApp Delivery Client
================================
Sends plain-text messages through the WhatsApp Cloud API
(``POST {GRAPH_API_URL}/{PHONE_NUMBER_ID}/messages``).

``send`` never raises for delivery problems: HTTP errors, timeouts and
transport failures are logged and reported as ``False``.  Nothing is
retried.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

import httpx

from remi.config.settings import settings
from remi.src.utils.logger import get_logger
from remi.src.utils.text_utils import preview

logger = get_logger(__name__)


@runtime_checkable
class DeliveryClient(Protocol):
    async def send(self, recipient_id: str, text: str) -> bool: ...


class WhatsAppClient:
    """
    Thin async wrapper over the Cloud API ``messages`` endpoint.

    Parameters
    ----------
    http_client
        Optional shared ``httpx.AsyncClient``.  When omitted, the client
        owns one and closes it in ``aclose()``.
    phone_number_id, token, base_url, timeout
        Override the matching settings.
    """

    __slots__ = ("_http", "_owns_http", "_url", "_headers")

    def __init__(self, http_client: httpx.AsyncClient | None = None, phone_number_id: str | None = None, token: str | None = None, base_url: str | None = None, timeout: float | None = None) -> None:
        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=timeout if timeout is not None else settings.DELIVERY_TIMEOUT_S)
        base = (base_url or settings.GRAPH_API_URL).rstrip("/")
        self._url = f"{base}/{phone_number_id or settings.PHONE_NUMBER_ID}/messages"
        bearer = token if token is not None else settings.WHATSAPP_TOKEN.get_secret_value()
        self._headers = {"Authorization": f"Bearer {bearer}", "Content-Type": "application/json"}


    async def send(self, recipient_id: str, text: str) -> bool:
        """Send *text* to *recipient_id*.  Returns ``True`` on a 2xx response."""
        payload = {"messaging_product": "whatsapp", "to": recipient_id, "type": "text", "text": {"body": text}}

        logger.info("[WHATSAPP] Sending to %s: '%s'", recipient_id, preview(text))
        try:
            response = await self._http.post(self._url, json=payload, headers=self._headers)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.error("[WHATSAPP] Send to %s rejected: %d %s", recipient_id, exc.response.status_code, exc.response.text)
            return False
        except httpx.HTTPError as exc:
            logger.error("[WHATSAPP] Send to %s failed: %s", recipient_id, exc)
            return False

        logger.info("[WHATSAPP] Message to %s sent.", recipient_id)
        return True


    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()
