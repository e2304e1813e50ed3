"""Storage factory for centralized collection backend creation."""

from typing import Type, Dict, Callable
from audit_vault.base import BaseCollection


class StorageFactory:
    """Factory for creating collection backends with validation and registration."""

    _collection_backends: Dict[str, Callable[[], Type[BaseCollection]]] = {}

    ALLOWED_COLLECTION = {"json", "redis"}

    @classmethod
    def register_collection(cls, name: str, backend_loader: Callable[[], Type[BaseCollection]]) -> None:
        """Register a collection backend.

        Args:
            name: Backend name (must be in ALLOWED_COLLECTION)
            backend_loader: Function that returns the collection class

        Raises:
            ValueError: If backend name not in allowed list
        """
        if name not in cls.ALLOWED_COLLECTION:
            raise ValueError(f"Backend {name} not in allowed collection backends: {cls.ALLOWED_COLLECTION}")
        cls._collection_backends[name] = backend_loader

    @classmethod
    def create_collection(
        cls,
        backend: str,
        namespace: str,
        global_config: dict,
        **kwargs
    ) -> BaseCollection:
        """Create a collection instance.

        Args:
            backend: Backend name
            namespace: Collection namespace
            global_config: Global configuration dict
            **kwargs: Additional backend-specific parameters (e.g. key_field)

        Returns:
            Initialized collection instance

        Raises:
            ValueError: If backend not registered
        """
        if backend not in cls._collection_backends:
            # Try to register backends if not already done
            _register_backends()
            if backend not in cls._collection_backends:
                raise ValueError(f"Unknown collection backend: {backend}. Available: {list(cls._collection_backends.keys())}")

        backend_class = cls._collection_backends[backend]()
        return backend_class(
            namespace=namespace,
            global_config=global_config,
            **kwargs
        )


def _get_json_collection():
    """Lazy loader for JSON collection."""
    from .collection_json import JsonCollection
    return JsonCollection


def _get_redis_collection():
    """Lazy loader for Redis collection."""
    from .collection_redis import RedisCollection
    return RedisCollection


def _register_backends():
    """Register built-in backends with lazy loaders. Called when factory is first used."""
    if not StorageFactory._collection_backends:
        StorageFactory.register_collection("json", _get_json_collection)
        StorageFactory.register_collection("redis", _get_redis_collection)
