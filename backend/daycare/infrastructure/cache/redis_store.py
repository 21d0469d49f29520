import json
import uuid
from typing import Any

from redis import Redis
from redis.exceptions import RedisError

from daycare.config import settings

_RELEASE_LOCK_SCRIPT = """
if redis.call("GET", KEYS[1]) == ARGV[1] then
    return redis.call("DEL", KEYS[1])
end
return 0
"""


def get_redis_client() -> Redis:
    return Redis.from_url(settings.redis_url, decode_responses=True)


def redis_is_available(client: Redis) -> bool:
    try:
        return bool(client.ping())
    except RedisError:
        return False


def read_cached(cache_key: str) -> dict[str, Any] | None:
    try:
        raw = get_redis_client().get(cache_key)
    except RedisError:
        return None
    if not isinstance(raw, str):
        return None
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        return None
    return value if isinstance(value, dict) else None


def write_cached(cache_key: str, value: dict[str, Any], ttl_seconds: int) -> None:
    try:
        get_redis_client().setex(cache_key, ttl_seconds, json.dumps(value, default=str))
    except (RedisError, TypeError, ValueError):
        return


def evict_cached(*cache_keys: str) -> None:
    if not cache_keys:
        return
    try:
        get_redis_client().delete(*cache_keys)
    except RedisError:
        return


def acquire_lock(lock_key: str, ttl_seconds: int) -> str | None:
    token = uuid.uuid4().hex
    try:
        acquired = get_redis_client().set(lock_key, token, nx=True, ex=ttl_seconds)
    except RedisError:
        # Without Redis the database row locks are the only guard.
        return token
    return token if acquired else None


def release_lock(lock_key: str, token: str) -> None:
    try:
        get_redis_client().eval(_RELEASE_LOCK_SCRIPT, 1, lock_key, token)
    except RedisError:
        return
