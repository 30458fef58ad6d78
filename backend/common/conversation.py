import json
import logging
from typing import Any, Dict, Optional

from redis.exceptions import RedisError

from common.config import settings

logger = logging.getLogger(__name__)


def conversation_key(conversation_id: str) -> str:
    return f"todo:{conversation_id}"


class ConversationStore:
    """Best-effort Redis cache for extraction turns.

    Every failure is logged and swallowed: losing the cache only means the
    conversation starts over.
    """

    def __init__(self, redis_client=None, ttl_seconds: Optional[int] = None):
        self.redis = redis_client
        self.ttl_seconds = ttl_seconds or settings.CONVERSATION_TTL_SECONDS

    async def save(self, conversation_id: str, entry: Dict[str, Any]) -> bool:
        if self.redis is None or not conversation_id:
            return False
        try:
            await self.redis.set(
                conversation_key(conversation_id),
                json.dumps(entry, ensure_ascii=False, default=str),
                ex=self.ttl_seconds,
            )
            return True
        except (RedisError, OSError, TypeError) as exc:
            logger.warning("conversation save failed for %s: %s", conversation_id, type(exc).__name__)
            return False

    async def load(self, conversation_id: str) -> Optional[Dict[str, Any]]:
        if self.redis is None or not conversation_id:
            return None
        try:
            raw = await self.redis.get(conversation_key(conversation_id))
        except (RedisError, OSError) as exc:
            logger.warning("conversation load failed for %s: %s", conversation_id, type(exc).__name__)
            return None
        if not raw:
            return None
        try:
            data = json.loads(raw)
        except ValueError:
            logger.warning("conversation entry for %s is not valid JSON", conversation_id)
            return None
        return data if isinstance(data, dict) else None
