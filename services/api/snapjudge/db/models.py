"""
SQLAlchemy ORM models for Snap Judge.

These map to the database tables and mirror the Pydantic models in models.py.
"""
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


class LobbyModel(Base):
    """Game lobby table."""
    __tablename__ = "lobbies"

    id: Mapped[str] = mapped_column(String(100), primary_key=True)
    code: Mapped[str] = mapped_column(String(4), unique=True, index=True)
    status: Mapped[str] = mapped_column(String(20), default="waiting")
    current_topic: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    current_round: Mapped[int] = mapped_column(Integer, default=1)
    host_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    # Relationships
    players: Mapped[list["PlayerModel"]] = relationship(
        "PlayerModel", back_populates="lobby", cascade="all, delete-orphan"
    )
    rounds: Mapped[list["RoundModel"]] = relationship(
        "RoundModel", back_populates="lobby", cascade="all, delete-orphan"
    )


class PlayerModel(Base):
    """Player in a lobby."""
    __tablename__ = "players"

    id: Mapped[str] = mapped_column(String(100), primary_key=True)
    lobby_id: Mapped[str] = mapped_column(
        String(100), ForeignKey("lobbies.id", ondelete="CASCADE"), index=True
    )
    nickname: Mapped[str] = mapped_column(String(20))
    image_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_ready: Mapped[bool] = mapped_column(Boolean, default=False)
    is_host: Mapped[bool] = mapped_column(Boolean, default=False)
    total_score: Mapped[int] = mapped_column(Integer, default=0)
    joined_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    # Relationships
    lobby: Mapped["LobbyModel"] = relationship("LobbyModel", back_populates="players")


class RoundModel(Base):
    """A judged round. One row per (lobby, round number), never updated."""
    __tablename__ = "rounds"
    __table_args__ = (
        UniqueConstraint("lobby_id", "round_number", name="uq_rounds_lobby_round"),
    )

    id: Mapped[str] = mapped_column(String(100), primary_key=True)
    lobby_id: Mapped[str] = mapped_column(
        String(100), ForeignKey("lobbies.id", ondelete="CASCADE"), index=True
    )
    round_number: Mapped[int] = mapped_column(Integer)
    topic: Mapped[str] = mapped_column(String(200))
    rankings: Mapped[list] = mapped_column(JSON, default=list)
    completed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    # Relationships
    lobby: Mapped["LobbyModel"] = relationship("LobbyModel", back_populates="rounds")
