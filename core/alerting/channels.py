"""Concrete send capabilities: HTTP push gateway, Redis queue, SMTP."""

from __future__ import annotations

import asyncio
import logging
import smtplib
from email.message import EmailMessage
from typing import Any

import httpx

from core.alerting.manager import AlertMessage, PushSender, mask_endpoint
from core.db.redis import RedisQueueAdapter

logger = logging.getLogger(__name__)


def push_payload(endpoint_id: str, message: AlertMessage) -> dict[str, Any]:
    return {
        "token": endpoint_id,
        "notification": {"title": message.title, "body": message.body},
        "data": dict(message.data),
        "severity": str(message.severity),
        "priority": "high",
        "created_at": message.created_at,
    }


class HttpPushSender(PushSender):
    """Posts each notification to a push gateway (FCM relay or similar)."""

    def __init__(
        self,
        base_url: str,
        *,
        path: str = "/v1/send",
        timeout: float = 5.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.path = path
        self.client = client or httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            headers={
                "User-Agent": "Liveness-Watch-Dispatcher/1.0",
                "Content-Type": "application/json",
            },
        )

    async def close(self) -> None:
        await self.client.aclose()

    async def send(self, endpoint_id: str, subject_id: str, message: AlertMessage) -> None:
        response = await self.client.post(self.path, json=push_payload(endpoint_id, message))
        try:
            response.raise_for_status()
        except httpx.HTTPStatusError:
            logger.error(
                f"Push gateway rejected {mask_endpoint(endpoint_id)} for {subject_id}: "
                f"{response.status_code} - {response.text}"
            )
            raise

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()


class RedisPushSender(PushSender):
    """Queues notifications on `<prefix><endpoint>` for a device-side relay."""

    def __init__(
        self,
        redis: RedisQueueAdapter,
        *,
        key_prefix: str = "liveness:notifications:",
        max_queue_length: int = 100,
    ):
        self.redis = redis
        self.key_prefix = key_prefix
        self.max_queue_length = max_queue_length

    async def send(self, endpoint_id: str, subject_id: str, message: AlertMessage) -> None:
        await self.redis.push_json(
            f"{self.key_prefix}{endpoint_id}",
            push_payload(endpoint_id, message),
            max_length=self.max_queue_length,
        )


class EmailSender(PushSender):
    """SMTP delivery; the endpoint id is the recipient address."""

    def __init__(
        self,
        *,
        smtp_host: str,
        smtp_port: int,
        sender: str,
        smtp_factory: Any = smtplib.SMTP,
    ):
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.sender = sender
        self.smtp_factory = smtp_factory

    def build_message(self, recipient: str, message: AlertMessage) -> EmailMessage:
        msg = EmailMessage()
        msg["Subject"] = f"[{message.severity}] {message.title}"
        msg["From"] = self.sender
        msg["To"] = recipient
        body = [message.body, ""]
        body.extend(f"{key}: {value}" for key, value in sorted(message.data.items()))
        msg.set_content("\n".join(body))
        return msg

    def _deliver(self, msg: EmailMessage) -> None:
        with self.smtp_factory(self.smtp_host, self.smtp_port) as smtp:
            smtp.send_message(msg)

    async def send(self, endpoint_id: str, subject_id: str, message: AlertMessage) -> None:
        await asyncio.to_thread(self._deliver, self.build_message(endpoint_id, message))
