import hashlib
import json
import logging
import math
import time
import uuid
from typing import Any, Callable, Dict, List, Optional

import redis

from ...application.ports.rate_limiter import RateLimiter, RateLimitResult

logger = logging.getLogger(__name__)

USER_TTL = 3600
PROJECT_TTL = 1800
SEARCH_TTL = 300
SESSION_TTL = 86400


class CacheService(RateLimiter):
    """JSON cache and sliding-window rate limiter over Redis.

    Every operation is best-effort: a backend error is logged and a fixed
    default comes back (``None``, ``False``, empty collections, ``-2`` for
    TTLs). The rate limiter fails open.
    """

    def __init__(self, client: redis.Redis, clock: Callable[[], float] = time.time) -> None:
        self.client = client
        self._clock = clock
        self.is_connected = False

    @classmethod
    def from_url(cls, url: str) -> "CacheService":
        return cls(redis.Redis.from_url(url, decode_responses=True, socket_timeout=2, retry_on_timeout=True))

    def connect(self) -> bool:
        try:
            self.client.ping()
            self.is_connected = True
            logger.info("Redis connected")
        except redis.RedisError as e:
            self.is_connected = False
            logger.error(f"Redis connection error: {e}")
        return self.is_connected

    def close(self) -> None:
        try:
            self.client.close()
        except redis.RedisError as e:
            logger.warning(f"Redis close error: {e}")
        self.is_connected = False

    # ---------- scalar values ----------

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        try:
            payload = json.dumps(value, default=str)
            if ttl:
                self.client.setex(key, ttl, payload)
            else:
                self.client.set(key, payload)
            return True
        except redis.RedisError as e:
            logger.error(f"Cache set error for {key}: {e}")
            return False

    def get(self, key: str) -> Any:
        try:
            value = self.client.get(key)
            return json.loads(value) if value else None
        except (redis.RedisError, ValueError) as e:
            logger.error(f"Cache get error for {key}: {e}")
            return None

    def delete(self, key: str) -> bool:
        try:
            self.client.delete(key)
            return True
        except redis.RedisError as e:
            logger.error(f"Cache delete error for {key}: {e}")
            return False

    def exists(self, key: str) -> bool:
        try:
            return self.client.exists(key) == 1
        except redis.RedisError as e:
            logger.error(f"Cache exists error for {key}: {e}")
            return False

    # ---------- sets ----------

    def add_to_set(self, key: str, *values: str) -> bool:
        try:
            self.client.sadd(key, *values)
            return True
        except redis.RedisError as e:
            logger.error(f"Cache add to set error for {key}: {e}")
            return False

    def get_set(self, key: str) -> List[str]:
        try:
            return sorted(self.client.smembers(key))
        except redis.RedisError as e:
            logger.error(f"Cache get set error for {key}: {e}")
            return []

    def is_in_set(self, key: str, value: str) -> bool:
        try:
            return bool(self.client.sismember(key, value))
        except redis.RedisError as e:
            logger.error(f"Cache is in set error for {key}: {e}")
            return False

    # ---------- hashes ----------

    def set_hash(self, key: str, field: str, value: Any) -> bool:
        try:
            self.client.hset(key, field, json.dumps(value, default=str))
            return True
        except redis.RedisError as e:
            logger.error(f"Cache set hash error for {key}: {e}")
            return False

    def get_hash(self, key: str, field: str) -> Any:
        try:
            value = self.client.hget(key, field)
            return json.loads(value) if value else None
        except (redis.RedisError, ValueError) as e:
            logger.error(f"Cache get hash error for {key}: {e}")
            return None

    def get_all_hash(self, key: str) -> Dict[str, Any]:
        try:
            return {f: json.loads(v) for f, v in self.client.hgetall(key).items()}
        except (redis.RedisError, ValueError) as e:
            logger.error(f"Cache get all hash error for {key}: {e}")
            return {}

    # ---------- TTL ----------

    def set_ttl(self, key: str, seconds: int) -> bool:
        try:
            self.client.expire(key, seconds)
            return True
        except redis.RedisError as e:
            logger.error(f"Cache set TTL error for {key}: {e}")
            return False

    def get_ttl(self, key: str) -> int:
        try:
            return int(self.client.ttl(key))
        except redis.RedisError as e:
            logger.error(f"Cache get TTL error for {key}: {e}")
            return -2

    # ---------- domain helpers ----------

    def cache_user_data(self, user_id: str, data: Any) -> bool:
        return self.set(f"user:{user_id}", data, USER_TTL)

    def get_user_data(self, user_id: str) -> Any:
        return self.get(f"user:{user_id}")

    def cache_project_data(self, project_id: str, data: Any) -> bool:
        return self.set(f"project:{project_id}", data, PROJECT_TTL)

    def get_project_data(self, project_id: str) -> Any:
        return self.get(f"project:{project_id}")

    @staticmethod
    def search_key(query: str, filters: Dict[str, Any]) -> str:
        filter_string = json.dumps(filters, sort_keys=True, default=str)
        digest = hashlib.md5(f"{query}:{filter_string}".encode()).hexdigest()
        return f"search:{digest}"

    def cache_search_results(self, query: str, filters: Dict[str, Any], results: Any, ttl: int = SEARCH_TTL) -> bool:
        return self.set(self.search_key(query, filters), results, ttl)

    def get_search_results(self, query: str, filters: Dict[str, Any]) -> Any:
        return self.get(self.search_key(query, filters))

    def set_session(self, session_id: str, data: Dict[str, Any], ttl: int = SESSION_TTL) -> bool:
        return self.set(f"session:{session_id}", data, ttl)

    def get_session(self, session_id: str) -> Any:
        return self.get(f"session:{session_id}")

    def delete_session(self, session_id: str) -> bool:
        return self.delete(f"session:{session_id}")

    # ---------- rate limiting ----------

    def check_rate_limit(self, key: str, limit: int, window_seconds: int) -> RateLimitResult:
        now = self._clock()
        window_start = now - window_seconds
        cache_key = f"ratelimit:{key}"
        try:
            pipe = self.client.pipeline()
            pipe.zremrangebyscore(cache_key, 0, window_start)
            pipe.zadd(cache_key, {f"{now}:{uuid.uuid4().hex}": now})
            pipe.expire(cache_key, window_seconds)
            pipe.zcount(cache_key, window_start, now)
            pipe.zrange(cache_key, 0, 0, withscores=True)
            _, _, _, count, oldest = pipe.execute()
        except redis.RedisError as e:
            logger.error(f"Rate limit check error for {key}: {e}")
            return RateLimitResult(allowed=True, remaining=limit, reset=window_seconds)

        oldest_score = oldest[0][1] if oldest else now
        return RateLimitResult(
            allowed=count <= limit,
            remaining=max(0, limit - count),
            reset=max(1, math.ceil(oldest_score + window_seconds - now)),
        )

    def check(self, key: str, limit: int, window_seconds: int) -> RateLimitResult:
        return self.check_rate_limit(key, limit, window_seconds)

    # ---------- maintenance ----------

    def clear_pattern(self, pattern: str) -> int:
        try:
            keys = list(self.client.scan_iter(match=pattern, count=500))
            if keys:
                self.client.delete(*keys)
            return len(keys)
        except redis.RedisError as e:
            logger.error(f"Clear pattern error for {pattern}: {e}")
            return 0

    def get_stats(self) -> Dict[str, Any]:
        try:
            info = self.client.info()
            return {
                "connected": self.is_connected,
                "keys": self.client.dbsize(),
                "info": {k: info.get(k) for k in ("redis_version", "used_memory_human", "connected_clients", "uptime_in_seconds")},
            }
        except redis.RedisError as e:
            logger.error(f"Get cache stats error: {e}")
            return {"connected": self.is_connected, "keys": 0, "info": {}}
