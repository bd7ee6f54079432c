import json
import logging
from typing import Any, Awaitable, Callable, Optional

import redis.asyncio as aioredis
from pydantic import ValidationError
from redis.exceptions import RedisError

from config.settings import settings
from services.analysis.models import AnalysisArtifact

NAMESPACE = "guidance:"

logger = logging.getLogger(__name__)

RedisProvider = Callable[[], Awaitable[Optional[aioredis.Redis]]]


class ArtifactCache:
    """
    Read-through cache for analysis artifacts, keyed by artifact id.

    Every Redis failure degrades to a miss; the store stays authoritative.
    """

    def __init__(self, redis_provider: Optional[RedisProvider] = None, ttl_seconds: int = settings.artifact_cache_ttl_seconds):
        self._redis_provider = redis_provider
        self.ttl_seconds = ttl_seconds

    @staticmethod
    def key(artifact_id: str) -> str:
        return f"{NAMESPACE}analysis:{artifact_id}"

    async def _client(self) -> Optional[Any]:
        if self._redis_provider is None:
            return None
        return await self._redis_provider()

    async def get(self, artifact_id: str) -> Optional[AnalysisArtifact]:
        redis = await self._client()
        if redis is None:
            return None
        key = self.key(artifact_id)
        try:
            raw = await redis.get(key)
        except (RedisError, OSError) as e:
            logger.warning(f"Redis GET failed for key '{key}': {e}. Treating as miss.")
            return None
        if raw is None:
            logger.debug(f"Cache miss: {key}")
            return None
        try:
            return AnalysisArtifact.model_validate(json.loads(raw))
        except (ValueError, ValidationError) as e:
            logger.warning(f"Discarding undecodable cache entry '{key}': {e}")
            await self.invalidate(artifact_id)
            return None

    async def set(self, artifact: AnalysisArtifact) -> bool:
        redis = await self._client()
        if redis is None:
            return False
        key = self.key(artifact.id)
        try:
            await redis.set(key, json.dumps(artifact.model_dump(mode="json")), ex=self.ttl_seconds)
            logger.debug(f"Cache set: {key} (ttl={self.ttl_seconds}s)")
            return True
        except (RedisError, OSError) as e:
            logger.warning(f"Redis SET failed for key '{key}': {e}")
            return False

    async def invalidate(self, artifact_id: str) -> bool:
        redis = await self._client()
        if redis is None:
            return False
        key = self.key(artifact_id)
        try:
            await redis.delete(key)
            return True
        except (RedisError, OSError) as e:
            logger.warning(f"Redis DELETE failed for key '{key}': {e}")
            return False
