"""Alert delivery transports."""

import hashlib
import hmac
import json
import logging
from typing import Protocol

import httpx

from pharmatrace.common.exceptions import AlertDeliveryError
from pharmatrace.notifications.models import AlertQueueModel

logger = logging.getLogger(__name__)


def sign_payload(payload_json: str, secret: str) -> str:
    """Compute HMAC-SHA256 hex digest for a JSON payload."""
    return hmac.new(
        secret.encode("utf-8"),
        payload_json.encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()


def alert_payload(alert: AlertQueueModel) -> dict:
    return {
        "id": alert.id,
        "alert_type": alert.alert_type,
        "batch_id": alert.batch_id,
        "recipient": alert.recipient,
        "message": alert.message,
        "created_at": alert.created_at,
    }


class AlertTransport(Protocol):
    async def send(self, alert: AlertQueueModel) -> None: ...


class LoggingAlertTransport:
    """Writes alerts to the log. Used when no outbound channel is configured."""

    async def send(self, alert: AlertQueueModel) -> None:
        logger.warning(
            "[%s ALERT] to=%s batch=#%s: %s",
            alert.alert_type, alert.recipient, alert.batch_id, alert.message,
        )


class WebhookAlertTransport:
    """POSTs each alert as signed JSON to a single endpoint."""

    def __init__(
        self,
        url: str,
        secret: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.url = url
        self.secret = secret
        self.timeout = timeout
        self._transport = transport
        self._http_client: httpx.AsyncClient | None = None

    def _get_http_client(self) -> httpx.AsyncClient:
        """Lazy-init httpx.AsyncClient."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport,
            )
        return self._http_client

    async def close(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    async def send(self, alert: AlertQueueModel) -> None:
        payload_json = json.dumps(alert_payload(alert), default=str)
        headers = {
            "Content-Type": "application/json",
            "X-PharmaTrace-Signature": sign_payload(payload_json, self.secret),
            "X-PharmaTrace-Alert": alert.alert_type,
        }
        try:
            resp = await self._get_http_client().post(
                self.url, content=payload_json, headers=headers,
            )
        except httpx.TimeoutException as e:
            raise AlertDeliveryError("timeout") from e
        except httpx.HTTPError as e:
            raise AlertDeliveryError(str(e)) from e

        if not 200 <= resp.status_code < 300:
            raise AlertDeliveryError(f"HTTP {resp.status_code}")
