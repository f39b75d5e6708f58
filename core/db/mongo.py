"""Async MongoDB adapter for subject liveness records."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from datetime import datetime
from typing import Any

from motor.motor_asyncio import AsyncIOMotorClient
from pydantic import ValidationError
from pymongo import ASCENDING
from pymongo.errors import PyMongoError

from contracts.subject import AlertState, HeartbeatKind, Subject, SubjectQuery
from core.db.base import LivenessStore, WriteOutcome
from core.errors import StoreUnavailableError, SubjectNotFoundError

logger = logging.getLogger(__name__)


class MongoLivenessStore(LivenessStore):
    """Stores one document per subject in the `subjects` collection."""

    def __init__(
        self,
        uri: str,
        db_name: str = "liveness",
        *,
        timeout_seconds: float = 3.0,
    ):
        self.uri = uri
        self.db_name = db_name
        self.timeout_ms = int(timeout_seconds * 1000)
        self.client: Any | None = None
        self.connected = False

    @property
    def db(self):
        if self.client is None:
            raise RuntimeError("Mongo adapter not connected")
        return self.client[self.db_name]

    @property
    def subjects(self):
        return self.db.subjects

    async def connect(self) -> None:
        self.client = AsyncIOMotorClient(
            self.uri,
            tz_aware=True,
            serverSelectionTimeoutMS=self.timeout_ms,
            connectTimeoutMS=self.timeout_ms,
            socketTimeoutMS=self.timeout_ms,
        )
        await self.client.admin.command("ping")
        self.connected = True

    async def disconnect(self) -> None:
        if self.client is not None:
            self.client.close()
        self.connected = False

    async def ensure_indexes(self) -> None:
        try:
            await self.subjects.create_index(
                [("monitoring_enabled", ASCENDING), ("last_heartbeat_at", ASCENDING)]
            )
        except PyMongoError as exc:
            raise StoreUnavailableError(f"index creation failed: {exc}") from exc

    async def ping(self) -> bool:
        try:
            response = await self.client.admin.command("ping")
        except Exception:
            return False
        return float(response.get("ok", 0)) == 1.0

    async def get(self, subject_id: str) -> Subject:
        try:
            doc = await self.subjects.find_one({"_id": subject_id})
        except PyMongoError as exc:
            raise StoreUnavailableError(f"get {subject_id} failed: {exc}") from exc
        if doc is None:
            raise SubjectNotFoundError(subject_id)
        return Subject.from_document(doc)

    async def update_heartbeat(
        self, subject_id: str, timestamp: datetime, kind: HeartbeatKind
    ) -> bool:
        query = {
            "_id": subject_id,
            "$or": [
                {"last_heartbeat_at": None},
                {"last_heartbeat_at": {"$lt": timestamp}},
            ],
        }
        update = {"$set": {"last_heartbeat_at": timestamp, "heartbeat_kind": str(kind)}}
        try:
            result = await self.subjects.update_one(query, update)
            if result.matched_count:
                return True
            exists = await self.subjects.find_one({"_id": subject_id}, {"_id": 1})
        except PyMongoError as exc:
            raise StoreUnavailableError(f"heartbeat write for {subject_id} failed: {exc}") from exc

        if exists is None:
            raise SubjectNotFoundError(subject_id)
        return False

    async def update_alert_state(
        self,
        subject_id: str,
        expected_state: AlertState,
        new_state: AlertState,
        *,
        expected_version: int,
        heartbeat_not_after: datetime | None = None,
        heartbeat_after: datetime | None = None,
    ) -> WriteOutcome:
        query: dict[str, Any] = {
            "_id": subject_id,
            "alert_version": expected_version,
            "alert_state.status": expected_state.status,
        }
        heartbeat_bounds: dict[str, Any] = {}
        if heartbeat_not_after is not None:
            heartbeat_bounds["$lte"] = heartbeat_not_after
        if heartbeat_after is not None:
            heartbeat_bounds["$gt"] = heartbeat_after
        if heartbeat_bounds:
            query["last_heartbeat_at"] = heartbeat_bounds

        update = {
            "$set": {"alert_state": new_state.model_dump()},
            "$inc": {"alert_version": 1},
        }
        try:
            result = await self.subjects.update_one(query, update)
        except PyMongoError as exc:
            raise StoreUnavailableError(f"alert write for {subject_id} failed: {exc}") from exc
        return WriteOutcome.OK if result.modified_count else WriteOutcome.CONFLICT

    async def list_monitored_subjects(self, query: SubjectQuery) -> AsyncIterator[Subject]:
        cursor = (
            self.subjects.find({"monitoring_enabled": query.monitoring_enabled})
            .sort("last_heartbeat_at", ASCENDING)
            .batch_size(query.batch_size)
        )
        try:
            async for doc in cursor:
                try:
                    subject = Subject.from_document(doc)
                except ValidationError as exc:
                    logger.warning(f"Skipping unreadable subject {doc.get('_id')}: {exc}")
                    continue
                yield subject
        except PyMongoError as exc:
            raise StoreUnavailableError(f"listing monitored subjects failed: {exc}") from exc

    async def upsert_subject(self, subject: Subject) -> None:
        document = subject.to_document()
        try:
            await self.subjects.replace_one({"_id": subject.id}, document, upsert=True)
        except PyMongoError as exc:
            raise StoreUnavailableError(f"upsert {subject.id} failed: {exc}") from exc
