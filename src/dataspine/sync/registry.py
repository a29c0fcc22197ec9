"""
Lazy entity registry.

:class:`EntityRegistry` hands out business entities by name. Each entity
is built on first request by its registered factory and the same
instance is returned for the rest of the registry's life. The registry
also holds the shared components entities are built from (settings,
store, engine), creating them lazily the same way.

There is no module-level instance: create a registry at application
start-up and pass it where it's needed.

Usage::

    from dataspine.sync.registry import EntityRegistry

    registry = EntityRegistry()
    registry.register("orders", build_orders)     # factory(registry) -> entity
    orders = registry.get("orders")               # built once
    assert registry.get("orders") is orders

    # Capability check on the way out:
    saver = registry.get("orders", capability=Savable)

    # As a context manager for automatic cleanup:
    with EntityRegistry(settings) as registry:
        ...
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from typing import Any

from dataspine.core.errors import ConfigError
from dataspine.core.logging import get_logger
from dataspine.core.protocols import Store
from dataspine.core.settings import DataSpineSettings, get_settings
from dataspine.sync.engine import SyncEngine

logger = get_logger(__name__)

EntityFactory = Callable[["EntityRegistry"], Any]


class EntityRegistry:
    """Lazy, memoizing, thread-safe entity container.

    Components are created on first property access and disposed via
    :meth:`close` (or the context-manager protocol). A store passed in
    by the caller is not closed by the registry.
    """

    def __init__(
        self,
        settings: DataSpineSettings | None = None,
        *,
        store: Store | None = None,
        engine: SyncEngine | None = None,
    ) -> None:
        self._settings = settings
        self._store = store
        self._owns_store = False
        self._engine = engine
        self._factories: dict[str, EntityFactory] = {}
        self._instances: dict[str, Any] = {}
        self._lock = threading.RLock()

    # ── Properties (lazy) ────────────────────────────────────────

    @property
    def settings(self) -> DataSpineSettings:
        if self._settings is None:
            self._settings = get_settings()
        return self._settings

    @property
    def store(self) -> Store:
        """Backing store built from ``settings.database_url``."""
        with self._lock:
            if self._store is None:
                from dataspine.core.connection import create_store

                self._store = create_store(self.settings.database_url)
                self._owns_store = True
            return self._store

    @property
    def engine(self) -> SyncEngine:
        """Shared :class:`SyncEngine` configured from settings."""
        with self._lock:
            if self._engine is None:
                self._engine = SyncEngine.from_settings(self.store, self.settings)
            return self._engine

    # ── Entities ─────────────────────────────────────────────────

    def register(self, name: str, factory: EntityFactory) -> None:
        """Register *factory* under *name*; it runs on the first :meth:`get`."""
        with self._lock:
            if name in self._factories:
                raise ConfigError(f"Entity {name!r} is already registered")
            self._factories[name] = factory

    def get(self, name: str, *, capability: type | None = None) -> Any:
        """Return the entity registered as *name*, building it once.

        Raises:
            ConfigError: Unknown name, or the entity lacks *capability*.
        """
        with self._lock:
            instance = self._instances.get(name)
            if instance is None:
                factory = self._factories.get(name)
                if factory is None:
                    raise ConfigError(
                        f"No entity registered as {name!r}"
                    ).with_context(registered=sorted(self._factories))
                instance = factory(self)
                self._instances[name] = instance
                logger.info("entity_created", entity=name)
        if capability is not None and not isinstance(instance, capability):
            raise ConfigError(
                f"Entity {name!r} does not provide {capability.__name__}"
            )
        return instance

    def __contains__(self, name: object) -> bool:
        return name in self._factories

    def names(self) -> list[str]:
        return sorted(self._factories)

    def created(self) -> list[str]:
        """Names of entities built so far."""
        with self._lock:
            return sorted(self._instances)

    # ── Lifecycle ────────────────────────────────────────────────

    def close(self) -> None:
        """Drop built entities and close a store this registry created."""
        with self._lock:
            self._instances.clear()
            if self._owns_store and self._store is not None:
                self._store.close()
                self._store = None
                self._engine = None
                self._owns_store = False

    def __enter__(self) -> EntityRegistry:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()


__all__ = [
    "EntityFactory",
    "EntityRegistry",
]
