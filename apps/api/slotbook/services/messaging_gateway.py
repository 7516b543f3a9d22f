"""WhatsApp gateway client (Evolution API).

One HTTP attempt per call: retries belong to the outbound queue, not here.
Any non-2xx response, timeout or transport error raises GatewayError.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from slotbook.core.config import settings
from slotbook.db.enums import MediaType
from slotbook.utils.identifiers import to_gateway_number
from slotbook.utils.normalization import mask_phone

logger = logging.getLogger(__name__)

BODY_SNIPPET_CHARS = 400


class GatewayError(Exception):
    """Delivery through the gateway failed; the message may be retried later."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        method: str | None = None,
        url: str | None = None,
        body_snippet: str | None = None,
    ):
        self.message = message
        self.status_code = status_code
        self.method = method
        self.url = url
        self.body_snippet = body_snippet
        super().__init__(message)


def extract_error_message(response: httpx.Response) -> str:
    """Human-readable error from a gateway response body."""
    try:
        data = response.json()
    except ValueError:
        data = None
    if isinstance(data, dict):
        for key in ("error", "message"):
            value = data.get(key)
            if isinstance(value, str) and value:
                return value
        nested = data.get("response")
        if isinstance(nested, dict):
            value = nested.get("message")
            if isinstance(value, list) and value:
                return str(value[0])
            if isinstance(value, str) and value:
                return value
    return f"Gateway request failed (HTTP {response.status_code})"


class WhatsAppGateway:
    """Thin client for the Evolution API send endpoints."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        instance_name: str,
        *,
        timeout: float = 12.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.instance_name = instance_name
        self._client = httpx.Client(timeout=timeout, transport=transport)

    @classmethod
    def from_settings(cls) -> "WhatsAppGateway":
        return cls(
            settings.EVOLUTION_API_BASE_URL,
            settings.EVOLUTION_API_KEY,
            settings.EVOLUTION_INSTANCE_NAME,
            timeout=settings.GATEWAY_TIMEOUT_SECONDS,
        )

    @property
    def configured(self) -> bool:
        return bool(self.base_url and self.api_key)

    def close(self) -> None:
        self._client.close()

    def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        if not self.base_url:
            raise GatewayError("EVOLUTION_API_BASE_URL not configured", method="CONFIG")
        if not self.api_key:
            raise GatewayError("EVOLUTION_API_KEY not configured", method="CONFIG")

        url = f"{self.base_url}{path}"
        try:
            response = self._client.post(url, json=payload, headers={"apikey": self.api_key})
        except httpx.TimeoutException as exc:
            raise GatewayError("Gateway request timed out", method="POST", url=url) from exc
        except httpx.HTTPError as exc:
            raise GatewayError(
                f"Gateway unreachable: {type(exc).__name__}", method="POST", url=url
            ) from exc

        if response.is_error:
            raise GatewayError(
                extract_error_message(response),
                status_code=response.status_code,
                method="POST",
                url=url,
                body_snippet=response.text[:BODY_SNIPPET_CHARS] if response.text else None,
            )
        try:
            return response.json()
        except ValueError:
            return {}

    def send_text(self, phone_e164: str, text: str) -> dict[str, Any]:
        """Send a text message to an E.164 number."""
        result = self._post(
            f"/message/sendText/{self.instance_name}",
            {"number": to_gateway_number(phone_e164), "text": text},
        )
        logger.debug("WhatsApp text sent to %s", mask_phone(phone_e164))
        return result

    def send_media(
        self,
        phone_e164: str,
        media: str,
        *,
        caption: str | None = None,
        mediatype: MediaType = MediaType.IMAGE,
        file_name: str | None = None,
    ) -> dict[str, Any]:
        """Send media (http(s) URL or base64 data) with an optional caption."""
        payload: dict[str, Any] = {
            "number": to_gateway_number(phone_e164),
            "mediatype": mediatype.value,
            "media": media,
        }
        if caption:
            payload["caption"] = caption
        if file_name:
            payload["fileName"] = file_name
        result = self._post(f"/message/sendMedia/{self.instance_name}", payload)
        logger.debug("WhatsApp media sent to %s", mask_phone(phone_e164))
        return result
