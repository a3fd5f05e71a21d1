"""
FastAPI dependencies for dependency injection.
"""
from typing import Optional

from .bus import ChangeBus
from .config import get_settings
from .registry import SessionRegistry
from .services.judge import Judge, build_judge
from .storage import InMemoryStorage, Storage


# Global instances (created lazily, replaceable for testing)
_bus: Optional[ChangeBus] = None
_storage: Optional[Storage] = None
_judge: Optional[Judge] = None
_registry: Optional[SessionRegistry] = None


def get_bus() -> ChangeBus:
    """Get the change notification bus."""
    global _bus
    if _bus is None:
        _bus = ChangeBus()
    return _bus


def get_storage() -> Storage:
    """Get the storage instance."""
    global _storage
    if _storage is None:
        settings = get_settings()
        if settings.storage_type == "sql":
            from .storage.sql import SQLStorage
            _storage = SQLStorage(bus=get_bus(), lobby_expiry_hours=settings.lobby_expiry_hours)
        else:
            _storage = InMemoryStorage(bus=get_bus(), lobby_expiry_hours=settings.lobby_expiry_hours)
    return _storage


def get_judge() -> Judge:
    """Get the configured AI judge."""
    global _judge
    if _judge is None:
        _judge = build_judge(get_settings())
    return _judge


def get_registry() -> SessionRegistry:
    """Get the registry of server-side participant sessions."""
    global _registry
    if _registry is None:
        _registry = SessionRegistry(get_storage(), get_bus(), get_judge(), get_settings())
    return _registry


def configure(
    bus: Optional[ChangeBus] = None,
    storage: Optional[Storage] = None,
    judge: Optional[Judge] = None,
) -> None:
    """Replace the global instances (for testing or switching implementations)."""
    global _bus, _storage, _judge, _registry
    _bus = bus
    _storage = storage
    _judge = judge
    _registry = None
