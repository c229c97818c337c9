"""
Rate limiting middleware for API endpoints
"""
import time
from collections import defaultdict
from fastapi import Request, HTTPException
from typing import Dict, Optional
import logging

logger = logging.getLogger(__name__)


class RateLimiter:
    """
    In-memory sliding-window rate limiter

    Registration gets its own, much smaller per-minute budget since repeated
    submissions from one client are the abuse pattern for quiz links.
    """

    def __init__(
        self,
        requests_per_minute: int = 60,
        requests_per_hour: int = 1000,
        strict_paths: Optional[Dict[str, int]] = None,
    ):
        self.requests_per_minute = requests_per_minute
        self.requests_per_hour = requests_per_hour
        # {path: requests per minute}
        self.strict_paths = strict_paths or {}

        # Storage: {bucket: [timestamp, ...]}
        self.minute_tracker: Dict[str, list] = defaultdict(list)
        self.hour_tracker: Dict[str, list] = defaultdict(list)

    def _get_client_id(self, request: Request) -> str:
        """Extract client identifier from request"""
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            return forwarded.split(",")[0].strip()

        return request.client.host if request.client else "unknown"

    def _prune(self, tracker: Dict[str, list], bucket: str, window_seconds: int, now: float) -> int:
        cutoff_time = now - window_seconds
        entries = [ts for ts in tracker[bucket] if ts > cutoff_time]
        if entries:
            tracker[bucket] = entries
        else:
            tracker.pop(bucket, None)
        return len(entries)

    def _reject(self, client_id: str, limit: int, window: str, retry_after: int):
        logger.warning(f"Rate limit exceeded ({window}): {client_id}")
        raise HTTPException(
            status_code=429,
            detail={
                "error": "rate_limit_exceeded",
                "message": f"Too many requests. Limit: {limit} requests per {window}",
                "retry_after": retry_after
            }
        )

    async def check_rate_limit(self, request: Request) -> None:
        """
        Check if request exceeds rate limits

        Raises:
            HTTPException: 429 if rate limit exceeded
        """
        client_id = self._get_client_id(request)
        path = request.url.path
        now = time.time()

        strict_limit = self.strict_paths.get(path)
        if strict_limit is not None:
            bucket = f"{client_id}:{path}"
            if self._prune(self.minute_tracker, bucket, 60, now) >= strict_limit:
                self._reject(client_id, strict_limit, "minute", 60)
            self.minute_tracker[bucket].append(now)

        minute_requests = self._prune(self.minute_tracker, client_id, 60, now)
        if minute_requests >= self.requests_per_minute:
            self._reject(client_id, self.requests_per_minute, "minute", 60)

        hour_requests = self._prune(self.hour_tracker, client_id, 3600, now)
        if hour_requests >= self.requests_per_hour:
            self._reject(client_id, self.requests_per_hour, "hour", 3600)

        self.minute_tracker[client_id].append(now)
        self.hour_tracker[client_id].append(now)

        logger.debug(f"Rate limit check passed: {client_id} (minute: {minute_requests+1}, hour: {hour_requests+1})")

    def reset(self) -> None:
        self.minute_tracker.clear()
        self.hour_tracker.clear()


# Global instance
from quizdesk.config import settings
rate_limiter = RateLimiter(
    requests_per_minute=settings.RATE_LIMIT_PER_MINUTE,
    requests_per_hour=settings.RATE_LIMIT_PER_HOUR,
    strict_paths={"/api/quiz-links/register": settings.REGISTER_RATE_LIMIT_PER_MINUTE},
)
