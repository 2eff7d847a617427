"""
Best-effort user notifications over Redis pub/sub.

Each notification is published as JSON on ``<prefix>:<user_id>``; the
push / WebSocket gateways subscribe there.  Publishing never raises: a
failed delivery must not undo an already-committed state change.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional

import redis.asyncio as aioredis

from src.config import settings

logger = logging.getLogger(__name__)


@dataclass
class Notice:
    user_id: int
    title: str
    message: str
    event_type: Optional[str] = None
    link: Optional[str] = None
    extra: dict[str, Any] = field(default_factory=dict)


class RedisNotifier:
    def __init__(
        self,
        client_factory: Callable[[], Awaitable[aioredis.Redis]],
        channel_prefix: str = settings.notification_channel_prefix,
    ):
        self._client_factory = client_factory
        self.channel_prefix = channel_prefix

    async def notify_user(
        self,
        user_id: int,
        title: str,
        message: str,
        event_type: Optional[str] = None,
        link: Optional[str] = None,
        extra: Optional[dict[str, Any]] = None,
    ) -> None:
        await self.send(Notice(user_id, title, message, event_type, link, extra or {}))

    async def send(self, notice: Notice) -> None:
        payload = asdict(notice)
        payload["sent_at"] = datetime.now(timezone.utc).isoformat()
        try:
            client = await self._client_factory()
            await client.publish(
                f"{self.channel_prefix}:{notice.user_id}", json.dumps(payload)
            )
        except Exception:
            logger.exception("Failed to notify user %s (%s)", notice.user_id, notice.title)
