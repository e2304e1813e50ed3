"""Storage module with lazy loading support."""

from typing import TYPE_CHECKING

from .factory import StorageFactory, _register_backends

if TYPE_CHECKING:
    from .collection_json import JsonCollection
    from .collection_redis import RedisCollection


def __getattr__(name):
    """Lazy import collection backends."""
    if name == "JsonCollection":
        from .collection_json import JsonCollection
        return JsonCollection
    elif name == "RedisCollection":
        from .collection_redis import RedisCollection
        return RedisCollection
    else:
        raise AttributeError(f"module '{__name__}' has no attribute '{name}'")


__all__ = [
    "StorageFactory",
    "_register_backends",
    "JsonCollection",
    "RedisCollection",
]
