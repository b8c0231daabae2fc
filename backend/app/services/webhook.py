"""Webhook delivery with retries and exponential backoff."""

import asyncio
import hashlib
import hmac
import json
import logging
import time

import httpx

from app.core.exceptions import WebhookDeliveryError
from app.core.metrics import webhook_deliveries_total

logger = logging.getLogger(__name__)


def sign_payload(secret: str, body: bytes) -> str:
    """HMAC-SHA256 signature header value for a webhook body."""
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return f"sha256={digest}"


async def send_webhook(
    url: str,
    payload: dict,
    secret: str | None = None,
    max_retries: int = 3,
    timeout: float = 10.0,
    client: httpx.AsyncClient | None = None,
) -> int:
    """POST a JSON payload to a webhook URL.

    Args:
        url: The webhook endpoint URL.
        payload: JSON-serializable dict to send.
        secret: HMAC-SHA256 secret for signing the payload.
        max_retries: Total number of attempts (default 3).
        timeout: Request timeout in seconds (default 10).
        client: Optional shared client; a short-lived one is created otherwise.

    Returns:
        The number of attempts it took.

    Raises:
        WebhookDeliveryError: every attempt failed.
    """
    body_bytes = json.dumps(payload, default=str, ensure_ascii=False).encode("utf-8")
    event = payload.get("status", "unknown")

    headers = {
        "Content-Type": "application/json",
        "User-Agent": "ProductShots-Webhook/1.0",
        "X-ProductShots-Event": event,
        "X-ProductShots-Delivery": str(int(time.time())),
    }
    if secret:
        headers["X-ProductShots-Signature"] = sign_payload(secret, body_bytes)

    attempts = max(1, max_retries)
    owns_client = client is None
    if owns_client:
        client = httpx.AsyncClient(timeout=timeout)

    last_error = None
    try:
        for attempt in range(attempts):
            try:
                response = await client.post(
                    url, content=body_bytes, headers=headers, timeout=timeout
                )
                if response.status_code < 400:
                    logger.info(
                        f"Webhook {event} delivered to {url}: {response.status_code} "
                        f"(attempt {attempt + 1})"
                    )
                    webhook_deliveries_total.labels(event=event, status="delivered").inc()
                    return attempt + 1
                last_error = f"HTTP {response.status_code}"
            except httpx.HTTPError as e:
                last_error = f"{type(e).__name__}: {e}"

            logger.warning(
                f"Webhook {event} to {url} failed "
                f"(attempt {attempt + 1}/{attempts}): {last_error}"
            )
            # Exponential backoff: 1s, 2s, 4s, ...
            if attempt < attempts - 1:
                await asyncio.sleep(2**attempt)
    finally:
        if owns_client:
            await client.aclose()

    webhook_deliveries_total.labels(event=event, status="failed").inc()
    raise WebhookDeliveryError(url, attempts, last_error)
