"""
Storage abstraction for Snap Judge.

Plays the role of the shared store: lobby, player and round records with
conditional updates, shared by every participant's session. Swap between
implementations (in-memory, SQL) without touching the game logic.
"""
from .base import Storage, apply_patch
from .memory import InMemoryStorage

__all__ = ["Storage", "InMemoryStorage", "apply_patch"]
