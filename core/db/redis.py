"""Async Redis adapter used as a notification queue."""

from __future__ import annotations

import json
from typing import Any

from redis.asyncio import Redis


class RedisQueueAdapter:
    """Thin async Redis wrapper for capped JSON lists."""

    def __init__(self, url: str):
        self.url = url
        self.client: Redis | None = None
        self.connected = False

    async def connect(self) -> None:
        self.client = Redis.from_url(self.url, decode_responses=True)
        await self.client.ping()
        self.connected = True

    async def disconnect(self) -> None:
        if self.client is not None:
            await self.client.aclose()
        self.connected = False

    async def ping(self) -> bool:
        if self.client is None:
            return False
        return bool(await self.client.ping())

    async def push_json(
        self, key: str, value: dict[str, Any], max_length: int | None = None
    ) -> int:
        if self.client is None:
            raise RuntimeError("Redis adapter not connected")
        length = await self.client.lpush(key, json.dumps(value, separators=(",", ":")))
        if max_length is not None:
            await self.client.ltrim(key, 0, max_length - 1)
        return length
