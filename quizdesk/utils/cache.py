"""
Redis cache for public quiz metadata shown on link landing pages
"""
import redis
import json
import logging
from typing import Optional, Any, Dict
from quizdesk.config import settings

logger = logging.getLogger(__name__)


class CacheService:
    """
    Read-through cache in front of the quizzes table

    Only the sanitized metadata served by link validation is cached, never
    questions or answer keys. When Redis is unreachable at startup every call
    degrades to a miss and the database answers instead.
    """

    def __init__(self, redis_url: str = None):
        self.redis_client: Optional[redis.Redis] = None
        try:
            client = redis.from_url(
                redis_url or settings.REDIS_URL,
                decode_responses=True,
                socket_connect_timeout=5
            )
            client.ping()
            self.redis_client = client
            logger.info("Redis connection established")
        except Exception as e:
            logger.warning(f"Redis unavailable ({str(e)}); quiz metadata will not be cached")

    @property
    def available(self) -> bool:
        return self.redis_client is not None

    @staticmethod
    def quiz_meta_key(quiz_id: int) -> str:
        return f"quiz:{quiz_id}:meta"

    def get_quiz_meta(self, quiz_id: int) -> Optional[Dict[str, Any]]:
        """Cached metadata for a quiz, or None on a miss or Redis error"""
        if not self.redis_client:
            return None

        key = self.quiz_meta_key(quiz_id)
        try:
            raw = self.redis_client.get(key)
        except redis.RedisError as e:
            logger.error(f"Cache read failed for {key}: {str(e)}")
            return None

        logger.debug(f"Cache {'hit' if raw else 'miss'}: {key}")
        return json.loads(raw) if raw else None

    def set_quiz_meta(self, quiz_id: int, meta: Dict[str, Any], ttl: int = None) -> bool:
        if not self.redis_client:
            return False

        key = self.quiz_meta_key(quiz_id)
        ttl = ttl or settings.QUIZ_METADATA_CACHE_TTL
        try:
            self.redis_client.setex(key, ttl, json.dumps(meta, default=str))
        except redis.RedisError as e:
            logger.error(f"Cache write failed for {key}: {str(e)}")
            return False

        logger.debug(f"Cached {key} for {ttl}s")
        return True

    def invalidate_quiz(self, quiz_id: int) -> bool:
        """Drop cached metadata after an admin changes a quiz"""
        if not self.redis_client:
            return False

        key = self.quiz_meta_key(quiz_id)
        try:
            self.redis_client.delete(key)
        except redis.RedisError as e:
            logger.error(f"Cache invalidation failed for {key}: {str(e)}")
            return False
        return True


# Global instance
cache_service = CacheService()
