"""NATS ingestion of subject activity events."""

from __future__ import annotations

import json
import logging
from typing import Any

from apps.emitter.registry import EmitterRegistry
from core.errors import SubjectNotFoundError

logger = logging.getLogger(__name__)

ACTIVITY_SUBJECT_PREFIX = "liveness.activity"


class ActivityListener:
    """Turns `liveness.activity.<subject_id>` messages into `record_activity` calls.

    The payload is optional JSON; `{"force_immediate": true}` bypasses batching.
    Request-reply callers get the emit result back.
    """

    def __init__(self, nats_client: Any, registry: EmitterRegistry):
        self.nats_client = nats_client
        self.registry = registry

    async def start(self) -> None:
        await self.nats_client.subscribe(f"{ACTIVITY_SUBJECT_PREFIX}.*", cb=self._on_message)

    async def _on_message(self, msg: Any) -> None:
        reply = await self.handle_activity(msg.subject, msg.data)
        if getattr(msg, "reply", None):
            await msg.respond(json.dumps(reply, separators=(",", ":")).encode())

    async def handle_activity(self, subject: str, data: bytes | str | None) -> dict[str, Any]:
        subject_id = self._subject_id(subject)
        if not subject_id:
            return {"accepted": False, "error": "missing subject id"}

        try:
            payload = self._decode_payload(data)
        except (ValueError, TypeError) as exc:
            logger.warning(f"Ignoring malformed activity payload for {subject_id}: {exc}")
            return {"accepted": False, "subject_id": subject_id, "error": "malformed payload"}

        force_immediate = bool(payload.get("force_immediate", False))
        try:
            result = await self.registry.record_activity(subject_id, force_immediate)
        except SubjectNotFoundError:
            logger.warning(f"Activity for unknown subject {subject_id}")
            return {"accepted": False, "subject_id": subject_id, "error": "unknown subject"}

        return {
            "accepted": result.error is None,
            "subject_id": subject_id,
            "written": result.written,
            "deferred": result.deferred,
            "kind": str(result.kind) if result.kind else None,
            "error": result.error,
        }

    @staticmethod
    def _subject_id(subject: str) -> str:
        prefix = f"{ACTIVITY_SUBJECT_PREFIX}."
        if not subject.startswith(prefix):
            return ""
        return subject[len(prefix):]

    @staticmethod
    def _decode_payload(data: bytes | str | None) -> dict[str, Any]:
        if not data:
            return {}
        if isinstance(data, bytes):
            data = data.decode()
        payload = json.loads(data)
        if not isinstance(payload, dict):
            raise TypeError("activity payload must be a JSON object")
        return payload
