from functools import wraps
from typing import Callable

from nexusdash.cache.layer import cache_layer


def async_cached(key_builder: Callable[..., str], l2_ttl: int = None):
    """
    Decorator for async functions. key_builder receives same args/kwargs.
    Example:
      @async_cached(lambda user_id, **kw: f"calendar:{user_id}")
      async def list_events(user_id): ...
    """

    def decorator(fn: Callable):
        @wraps(fn)
        async def wrapper(*args, **kwargs):
            key = key_builder(*args, **kwargs)

            async def loader():
                value = await fn(*args, **kwargs)
                if value is None:
                    return None
                if hasattr(value, "model_dump"):
                    return value.model_dump()
                return value

            return await cache_layer.get(key, loader=loader, l2_ttl=l2_ttl)

        return wrapper

    return decorator


def async_cached_expire(key_builder: Callable[..., str], prefix: bool = False):
    """
    Invalidate after the wrapped call succeeds. With prefix=True every key
    starting with the built key is dropped.
    """

    def decorator(fn: Callable):
        @wraps(fn)
        async def wrapper(*args, **kwargs):
            result = await fn(*args, **kwargs)
            key = key_builder(*args, **kwargs)
            if prefix:
                await cache_layer.delete_prefix(key)
            else:
                await cache_layer.delete(key)
            return result

        return wrapper

    return decorator
