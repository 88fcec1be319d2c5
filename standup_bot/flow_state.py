# Standup Bot
# Copyright (C) 2026 StrateCode
# Licensed under the GNU Affero General Public License v3 (AGPLv3)

"""
Flow state storage for in-progress standup sessions.

Maps a Slack user ID to that user's StandupSession. The in-process store
serves single-instance deployments; the Redis store keeps sessions in a
shared hash so several bot processes can serve the same workspace.
"""

import asyncio
from datetime import datetime
from typing import Dict, List, Optional

import redis.asyncio as redis
from pydantic import ValidationError

from standup_bot.logging_config import get_logger
from standup_bot.models import StandupSession


logger = get_logger(__name__)

# HDEL only when the field still holds the expected value
_DELETE_IF_UNCHANGED = """
if redis.call('HGET', KEYS[1], ARGV[1]) == ARGV[2] then
    return redis.call('HDEL', KEYS[1], ARGV[1])
end
return 0
"""


class FlowStateStore:
    """
    Per-user session table owned by the standup flow service.

    Implementations must keep entries of distinct users independent.
    """

    async def get(self, user_id: str) -> Optional[StandupSession]:
        raise NotImplementedError

    async def set(self, session: StandupSession) -> None:
        raise NotImplementedError

    async def delete(self, user_id: str) -> bool:
        """Remove the session for a user. Returns True if one existed."""
        raise NotImplementedError

    async def scan(self) -> List[StandupSession]:
        """Return every live session."""
        raise NotImplementedError

    async def remove_idle(self, cutoff: datetime) -> List[StandupSession]:
        """Delete sessions last active before cutoff and return them."""
        removed = []
        for session in await self.scan():
            if session.last_activity_at < cutoff and await self.delete(session.user_id):
                removed.append(session)
        return removed

    async def connect(self) -> None:
        """Open connections to the backing store, if any."""

    async def disconnect(self) -> None:
        """Close connections to the backing store, if any."""


class InMemoryFlowStateStore(FlowStateStore):
    """Session table held in a process-local dictionary."""

    def __init__(self):
        self._sessions: Dict[str, StandupSession] = {}

    async def get(self, user_id: str) -> Optional[StandupSession]:
        session = self._sessions.get(user_id)
        # Callers mutate what they get back; hand out a copy
        return session.model_copy(deep=True) if session else None

    async def set(self, session: StandupSession) -> None:
        self._sessions[session.user_id] = session.model_copy(deep=True)

    async def delete(self, user_id: str) -> bool:
        return self._sessions.pop(user_id, None) is not None

    async def scan(self) -> List[StandupSession]:
        return [session.model_copy(deep=True) for session in self._sessions.values()]

    def __len__(self) -> int:
        return len(self._sessions)


class RedisFlowStateStore(FlowStateStore):
    """
    Session table stored in a Redis hash.

    Each field of the hash is a user ID and each value is the session
    serialized as JSON. Entries that fail to deserialize are dropped.
    """

    def __init__(self, redis_url: str, key: str = "standup_bot:flows"):
        self.redis_url = redis_url
        self.key = key
        self.redis_client: Optional[redis.Redis] = None
        self._connect_lock = asyncio.Lock()

        logger.info("Initialized Redis flow state store", extra={"flow_key": key})

    async def connect(self) -> None:
        """Connect to Redis."""
        async with self._connect_lock:
            if not self.redis_client:
                self.redis_client = redis.from_url(
                    self.redis_url,
                    encoding="utf-8",
                    decode_responses=True
                )
                logger.info("Connected to Redis for flow state")

    async def disconnect(self) -> None:
        """Disconnect from Redis."""
        if self.redis_client:
            await self.redis_client.aclose()
            self.redis_client = None
            logger.info("Disconnected from Redis")

    async def _client(self) -> redis.Redis:
        if not self.redis_client:
            await self.connect()
        return self.redis_client

    async def get(self, user_id: str) -> Optional[StandupSession]:
        client = await self._client()
        raw = await client.hget(self.key, user_id)
        if raw is None:
            return None
        return await self._deserialize(user_id, raw)

    async def set(self, session: StandupSession) -> None:
        client = await self._client()
        await client.hset(self.key, session.user_id, session.model_dump_json())

    async def delete(self, user_id: str) -> bool:
        client = await self._client()
        removed = await client.hdel(self.key, user_id)
        return bool(removed)

    async def scan(self) -> List[StandupSession]:
        client = await self._client()
        entries = await client.hgetall(self.key)

        sessions = []
        for user_id, raw in entries.items():
            session = await self._deserialize(user_id, raw)
            if session is not None:
                sessions.append(session)
        return sessions

    async def remove_idle(self, cutoff: datetime) -> List[StandupSession]:
        """
        Delete sessions last active before cutoff and return them.

        Each entry is deleted only if it still holds the value that was read,
        so a session touched during the sweep survives.
        """
        client = await self._client()
        entries = await client.hgetall(self.key)

        removed = []
        for user_id, raw in entries.items():
            session = await self._deserialize(user_id, raw)
            if session is None or session.last_activity_at >= cutoff:
                continue
            if await client.eval(_DELETE_IF_UNCHANGED, 1, self.key, user_id, raw):
                removed.append(session)
        return removed

    async def _deserialize(self, user_id: str, raw: str) -> Optional[StandupSession]:
        try:
            return StandupSession.model_validate_json(raw)
        except ValidationError as e:
            logger.warning(
                "Dropping unreadable flow state entry",
                extra={"user_id": user_id, "error": str(e)}
            )
            await self.redis_client.hdel(self.key, user_id)
            return None


def create_flow_state_store(redis_url: Optional[str]) -> FlowStateStore:
    """Redis-backed store when a Redis URL is configured, in-process otherwise."""
    if redis_url:
        return RedisFlowStateStore(redis_url)
    return InMemoryFlowStateStore()
