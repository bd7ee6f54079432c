import asyncio
import logging
from functools import wraps
from typing import Optional

import redis.asyncio as aioredis
from redis.exceptions import ConnectionError, RedisError, TimeoutError

from config.settings import settings

_log = logging.getLogger(__name__)


# --- Lock-free _once decorator ---
def _once(fn):
    in_flight = None
    result = None

    @wraps(fn)
    async def wrapper():
        nonlocal in_flight, result
        if result is not None:
            # Relies on later operations failing if the connection has died
            return result
        if in_flight is None:
            _log.debug(f"Creating task for {fn.__name__}")
            in_flight = asyncio.create_task(fn())

        try:
            result = await in_flight
            return result
        except Exception as e:
            _log.error(f"Task for {fn.__name__} failed: {e}", exc_info=True)
            result = None
            return None
        finally:
            # Reset so a failed attempt can be retried by the next caller
            in_flight = None

    async def reset():
        nonlocal result, in_flight
        if in_flight and not in_flight.done():
            in_flight.cancel()
            try:
                await in_flight
            except asyncio.CancelledError:
                _log.debug(f"Cancelled in-flight task for {fn.__name__}")
            except Exception as e:
                _log.warning(f"Error awaiting cancelled task for {fn.__name__}: {e}")
        in_flight = None
        result_to_close = result
        result = None
        return result_to_close

    wrapper.reset = reset # type: ignore
    return wrapper


@_once
async def _create_redis_connection() -> Optional[aioredis.Redis]:
    _log.info(f"Creating Redis client for {settings.redis_url}")
    try:
        return aioredis.from_url(
            settings.redis_url,
            decode_responses=True,
            socket_connect_timeout=1,   # 1-second TCP connect cap
            socket_timeout=2,           # 2-second op cap
        )
    except (RedisError, ConnectionError, TimeoutError, ValueError) as exc:
        _log.error(f"Failed to create Redis client for {settings.redis_url}, cache disabled ({exc})")
        return None


async def get_redis() -> Optional[aioredis.Redis]:
    """
    Returns the shared Redis client, created lazily on first use.
    Returns None if the client could not be created.
    """
    return await _create_redis_connection() # type: ignore


async def close_redis() -> None:
    """Close and discard the cached client."""
    client_to_close = await _create_redis_connection.reset() # type: ignore
    if client_to_close:
        _log.info("Closing Redis connection pool...")
        try:
            await client_to_close.aclose()
        except RedisError as e:
            _log.warning(f"Error closing Redis connection: {e}")
