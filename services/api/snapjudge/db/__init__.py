"""
Database module for Snap Judge.

Provides SQLAlchemy models and async database connection.
"""
from .models import Base, LobbyModel, PlayerModel, RoundModel
from .connection import (
    close_db,
    create_engine_for_url,
    get_db_engine,
    get_db_session_context,
    get_session_factory,
    init_db,
)

__all__ = [
    "Base",
    "LobbyModel",
    "PlayerModel",
    "RoundModel",
    "close_db",
    "create_engine_for_url",
    "get_db_engine",
    "get_db_session_context",
    "get_session_factory",
    "init_db",
]
