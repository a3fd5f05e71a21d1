"""
SQL-based storage implementation using SQLAlchemy.

Works with both SQLite (dev) and PostgreSQL (production). Conditional
status changes and score increments are single UPDATE statements, and the
rounds table carries a unique (lobby_id, round_number) constraint.
"""
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..bus import ChangeBus
from ..db.connection import get_db_session_context
from ..db.models import LobbyModel, PlayerModel, RoundModel
from ..errors import ConflictError, DuplicateKeyError, LobbyNotFound, PlayerNotFound
from ..models import Lobby, Player, Ranking, Round
from .base import Storage, apply_patch


def _aware(value: datetime) -> datetime:
    """SQLite drops tzinfo; stored values are always UTC."""
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


class SQLStorage(Storage):
    """
    SQL-based storage using SQLAlchemy async sessions.

    This implementation works with any SQLAlchemy-supported database.
    """

    def __init__(
        self,
        bus: Optional[ChangeBus] = None,
        lobby_expiry_hours: int = 2,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    ):
        super().__init__(bus=bus, lobby_expiry_hours=lobby_expiry_hours)
        self._session_factory = session_factory

    def _db(self):
        return get_db_session_context(self._session_factory)

    # ========================================================================
    # Helper methods
    # ========================================================================

    def _lobby_model_to_pydantic(self, model: LobbyModel) -> Lobby:
        """Convert SQLAlchemy LobbyModel to Pydantic Lobby."""
        return Lobby(
            lobby_id=model.id,
            code=model.code,
            status=model.status,
            current_topic=model.current_topic,
            current_round=model.current_round,
            host_id=model.host_id,
            created_at=_aware(model.created_at),
            updated_at=_aware(model.updated_at),
        )

    def _player_model_to_pydantic(self, model: PlayerModel) -> Player:
        """Convert SQLAlchemy PlayerModel to Pydantic Player."""
        return Player(
            player_id=model.id,
            lobby_id=model.lobby_id,
            nickname=model.nickname,
            image_url=model.image_url,
            is_ready=model.is_ready,
            is_host=model.is_host,
            total_score=model.total_score,
            joined_at=_aware(model.joined_at),
        )

    def _round_model_to_pydantic(self, model: RoundModel) -> Round:
        """Convert SQLAlchemy RoundModel to Pydantic Round."""
        return Round(
            round_id=model.id,
            lobby_id=model.lobby_id,
            round_number=model.round_number,
            topic=model.topic,
            rankings=[Ranking.model_validate(r) for r in (model.rankings or [])],
            completed_at=_aware(model.completed_at),
        )

    async def _load_lobby(self, db: AsyncSession, lobby_id: str) -> Optional[LobbyModel]:
        result = await db.execute(select(LobbyModel).where(LobbyModel.id == lobby_id))
        return result.scalar_one_or_none()

    async def _load_player(self, db: AsyncSession, player_id: str) -> Optional[PlayerModel]:
        result = await db.execute(select(PlayerModel).where(PlayerModel.id == player_id))
        return result.scalar_one_or_none()

    # ========================================================================
    # Lobby Management
    # ========================================================================

    async def create_lobby(self, lobby: Lobby) -> Lobby:
        try:
            async with self._db() as db:
                db.add(LobbyModel(
                    id=lobby.lobby_id,
                    code=lobby.code,
                    status=lobby.status,
                    current_topic=lobby.current_topic,
                    current_round=lobby.current_round,
                    host_id=lobby.host_id,
                    created_at=lobby.created_at,
                    updated_at=lobby.updated_at,
                ))
                await db.flush()
        except IntegrityError as e:
            raise DuplicateKeyError(f"Room code {lobby.code} is already in use") from e

        await self._publish("lobbies", "INSERT", None, lobby)
        return lobby

    async def get_lobby(self, lobby_id: str) -> Optional[Lobby]:
        async with self._db() as db:
            model = await self._load_lobby(db, lobby_id)
            if model:
                return self._lobby_model_to_pydantic(model)
            return None

    async def get_lobby_by_code(self, code: str) -> Optional[Lobby]:
        async with self._db() as db:
            result = await db.execute(select(LobbyModel).where(LobbyModel.code == code))
            model = result.scalar_one_or_none()
            if model:
                return self._lobby_model_to_pydantic(model)
            return None

    async def lobby_code_exists(self, code: str) -> bool:
        async with self._db() as db:
            result = await db.execute(select(LobbyModel.id).where(LobbyModel.code == code))
            return result.scalar_one_or_none() is not None

    async def update_lobby(
        self,
        lobby_id: str,
        patch: dict[str, Any],
        expected_status: Optional[str] = None,
    ) -> Lobby:
        async with self._db() as db:
            model = await self._load_lobby(db, lobby_id)
            if model is None:
                raise LobbyNotFound(lobby_id)
            old = self._lobby_model_to_pydantic(model)

            patch = {**patch, "updated_at": datetime.now(timezone.utc)}
            validated = apply_patch(old, patch)
            values = {key: getattr(validated, key) for key in patch}

            stmt = update(LobbyModel).where(LobbyModel.id == lobby_id)
            if expected_status is not None:
                stmt = stmt.where(LobbyModel.status == expected_status)
            result = await db.execute(stmt.values(**values))

            if result.rowcount == 0:
                raise ConflictError(
                    f"Lobby {lobby_id} status is no longer '{expected_status}'"
                )

            await db.refresh(model)
            new = self._lobby_model_to_pydantic(model)

        await self._publish("lobbies", "UPDATE", old, new)
        return new

    # ========================================================================
    # Player Management
    # ========================================================================

    async def add_player(self, player: Player) -> Player:
        try:
            async with self._db() as db:
                if await self._load_lobby(db, player.lobby_id) is None:
                    raise LobbyNotFound(player.lobby_id)
                db.add(PlayerModel(
                    id=player.player_id,
                    lobby_id=player.lobby_id,
                    nickname=player.nickname,
                    image_url=player.image_url,
                    is_ready=player.is_ready,
                    is_host=player.is_host,
                    total_score=player.total_score,
                    joined_at=player.joined_at,
                ))
                await db.flush()
        except IntegrityError as e:
            raise DuplicateKeyError(f"Player {player.player_id} already exists") from e

        await self._publish("players", "INSERT", None, player)
        return player

    async def get_player(self, player_id: str) -> Optional[Player]:
        async with self._db() as db:
            model = await self._load_player(db, player_id)
            if model:
                return self._player_model_to_pydantic(model)
            return None

    async def get_players(self, lobby_id: str) -> list[Player]:
        async with self._db() as db:
            result = await db.execute(
                select(PlayerModel)
                .where(PlayerModel.lobby_id == lobby_id)
                .order_by(PlayerModel.is_host.desc(), PlayerModel.joined_at)
            )
            return [self._player_model_to_pydantic(m) for m in result.scalars().all()]

    async def update_player(self, player_id: str, patch: dict[str, Any]) -> Player:
        async with self._db() as db:
            model = await self._load_player(db, player_id)
            if model is None:
                raise PlayerNotFound(player_id)
            old = self._player_model_to_pydantic(model)

            validated = apply_patch(old, patch)
            for key in patch:
                setattr(model, key, getattr(validated, key))
            await db.flush()
            new = self._player_model_to_pydantic(model)

        await self._publish("players", "UPDATE", old, new)
        return new

    async def reset_players_for_round(self, lobby_id: str) -> list[Player]:
        async with self._db() as db:
            result = await db.execute(
                select(PlayerModel).where(PlayerModel.lobby_id == lobby_id)
            )
            models = result.scalars().all()
            old = [self._player_model_to_pydantic(m) for m in models]

            await db.execute(
                update(PlayerModel)
                .where(PlayerModel.lobby_id == lobby_id)
                .values(is_ready=False, image_url=None)
            )
            new = [
                apply_patch(p, {"is_ready": False, "image_url": None}) for p in old
            ]

        for before, after in zip(old, new):
            await self._publish("players", "UPDATE", before, after)
        return new

    async def increment_score(self, player_id: str, delta: int) -> Player:
        async with self._db() as db:
            result = await db.execute(
                update(PlayerModel)
                .where(PlayerModel.id == player_id)
                .values(total_score=PlayerModel.total_score + delta)
            )
            if result.rowcount == 0:
                raise PlayerNotFound(player_id)

            model = await self._load_player(db, player_id)
            await db.refresh(model)
            new = self._player_model_to_pydantic(model)

        old = new.model_copy(update={"total_score": new.total_score - delta})
        await self._publish("players", "UPDATE", old, new)
        return new

    # ========================================================================
    # Round Management
    # ========================================================================

    async def create_round(self, round_obj: Round) -> Round:
        try:
            async with self._db() as db:
                if await self._load_lobby(db, round_obj.lobby_id) is None:
                    raise LobbyNotFound(round_obj.lobby_id)
                db.add(RoundModel(
                    id=round_obj.round_id,
                    lobby_id=round_obj.lobby_id,
                    round_number=round_obj.round_number,
                    topic=round_obj.topic,
                    rankings=[
                        r.model_dump(mode="json", by_alias=False) for r in round_obj.rankings
                    ],
                    completed_at=round_obj.completed_at,
                ))
                await db.flush()
        except IntegrityError as e:
            raise DuplicateKeyError(
                f"Round {round_obj.round_number} of lobby {round_obj.lobby_id} already recorded"
            ) from e

        await self._publish("rounds", "INSERT", None, round_obj)
        return round_obj

    async def get_round(self, lobby_id: str, round_number: int) -> Optional[Round]:
        async with self._db() as db:
            result = await db.execute(
                select(RoundModel).where(
                    RoundModel.lobby_id == lobby_id,
                    RoundModel.round_number == round_number,
                )
            )
            model = result.scalar_one_or_none()
            if model:
                return self._round_model_to_pydantic(model)
            return None

    # ========================================================================
    # Cleanup
    # ========================================================================

    async def cleanup_expired_lobbies(self) -> list[str]:
        cutoff = datetime.now(timezone.utc) - timedelta(hours=self.lobby_expiry_hours)
        async with self._db() as db:
            result = await db.execute(
                select(LobbyModel.id).where(LobbyModel.updated_at < cutoff)
            )
            expired_ids = list(result.scalars().all())
            if not expired_ids:
                return []

            # SQLite only cascades with foreign keys enabled, so delete children explicitly
            await db.execute(delete(RoundModel).where(RoundModel.lobby_id.in_(expired_ids)))
            await db.execute(delete(PlayerModel).where(PlayerModel.lobby_id.in_(expired_ids)))
            await db.execute(delete(LobbyModel).where(LobbyModel.id.in_(expired_ids)))

        return expired_ids
