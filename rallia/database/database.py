from typing import Optional, List
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload
from sqlalchemy.pool import StaticPool
from sqlalchemy import select, func
from contextlib import asynccontextmanager

from rallia.config import Config
from rallia.constants import CertificationConstants, SeedConstants
from rallia.database.models import (
    Base, Sport, RatingSystem, RatingScore, Player, PlayerRatingScore, RatingSource
)
from rallia.utils.logger import setup_logger

class Database:
    def __init__(self, database_url: Optional[str] = None):
        self.logger = setup_logger(__name__)
        self.database_url = database_url
        self.engine = None
        self.async_session = None

    @property
    def session_factory(self):
        return self.async_session

    async def initialize(self, seed_defaults: bool = True):
        """Initialize the database connection and create tables"""
        self.logger.info("Initializing database...")
        Config.validate()

        database_url = self.database_url or Config.get_async_database_url()

        engine_kwargs = {'echo': Config.DEBUG, 'future': True}
        # In-memory SQLite lives on a single connection
        if database_url in ('sqlite+aiosqlite://', 'sqlite+aiosqlite:///:memory:'):
            engine_kwargs['poolclass'] = StaticPool
            engine_kwargs['connect_args'] = {'check_same_thread': False}

        self.engine = create_async_engine(database_url, **engine_kwargs)

        self.async_session = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False
        )

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        self.logger.info("Database initialized successfully")

        if seed_defaults:
            await self.initialize_default_data()

    async def initialize_default_data(self):
        """Create the default sports, rating systems and rating levels"""
        async with self.transaction() as session:
            result = await session.execute(select(func.count(Sport.id)))
            if result.scalar() > 0:
                return

            self.logger.info("Initializing default sports and rating systems...")

            sports = {}
            for sport_data in SeedConstants.SPORTS:
                sport = Sport(name=sport_data['name'], display_name=sport_data['display_name'], is_active=True)
                session.add(sport)
                sports[sport.name] = sport
            await session.flush()

            for system_data in SeedConstants.RATING_SYSTEMS:
                system = RatingSystem(
                    sport_id=sports[system_data['sport']].id,
                    code=system_data['code'],
                    name=system_data['name'],
                    min_value=system_data['min_value'],
                    max_value=system_data['max_value'],
                    step=system_data['step'],
                    default_initial_value=system_data['min_value'],
                    min_for_referral=CertificationConstants.MIN_LEVEL_FOR_REFERENCES.get(system_data['code']),
                    is_active=True
                )
                session.add(system)
                await session.flush()

                value = system.min_value
                while value <= system.max_value:
                    session.add(RatingScore(
                        rating_system_id=system.id,
                        value=value,
                        label=f"{value:.1f}"
                    ))
                    value = round(value + system.step, 2)

            self.logger.info(f"Added {len(SeedConstants.SPORTS)} sports and {len(SeedConstants.RATING_SYSTEMS)} rating systems")

    @asynccontextmanager
    async def get_session(self):
        """Get a database session"""
        async with self.async_session() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise
            finally:
                await session.close()

    @asynccontextmanager
    async def transaction(self):
        """
        Create a transaction boundary for atomic operations.

        All operations within the context are committed together on success,
        or rolled back together on failure. Exceptions must be allowed to
        propagate out of the context for rollback to occur.

        Usage:
            async with db.transaction() as session:
                await rating_ops.assign_self_reported_rating(..., session=session)
                await proof_ops.refresh_proof_counts(..., session=session)
        """
        async with self.async_session() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
            finally:
                await session.close()

    async def close(self):
        """Close the database connection"""
        if self.engine:
            await self.engine.dispose()
            self.logger.info("Database connection closed")

    # Player operations
    async def create_player(self, username: str, display_name: str = None) -> Player:
        """Create a new player"""
        async with self.transaction() as session:
            player = Player(
                username=username,
                display_name=display_name or username,
                is_active=True
            )
            session.add(player)
            await session.flush()
            await session.refresh(player)
            return player

    # Sport and rating system operations
    async def get_sport_by_name(self, name: str) -> Optional[Sport]:
        async with self.get_session() as session:
            result = await session.execute(
                select(Sport).where(func.lower(Sport.name) == name.lower())
            )
            return result.scalar_one_or_none()

    async def get_rating_system_by_code(self, code: str) -> Optional[RatingSystem]:
        """Get a rating system by its code (case-insensitive)"""
        async with self.get_session() as session:
            result = await session.execute(
                select(RatingSystem)
                .options(selectinload(RatingSystem.sport))
                .where(func.upper(RatingSystem.code) == code.upper())
            )
            return result.scalar_one_or_none()

    async def get_rating_score_by_value(self, rating_system_code: str, value: float) -> Optional[RatingScore]:
        """Get the rating level with a given value in a rating system"""
        async with self.get_session() as session:
            result = await session.execute(
                select(RatingScore)
                .join(RatingSystem, RatingScore.rating_system_id == RatingSystem.id)
                .options(selectinload(RatingScore.rating_system))
                .where(
                    func.upper(RatingSystem.code) == rating_system_code.upper(),
                    RatingScore.value == value
                )
            )
            return result.scalar_one_or_none()

    async def get_player_ratings(self, player_id: int, sport_id: int = None) -> List[PlayerRatingScore]:
        """Get all rating records of a player, optionally for one sport"""
        async with self.get_session() as session:
            query = (
                select(PlayerRatingScore)
                .options(selectinload(PlayerRatingScore.rating_score))
                .where(PlayerRatingScore.player_id == player_id)
            )
            if sport_id is not None:
                query = query.where(PlayerRatingScore.sport_id == sport_id)
            result = await session.execute(query.order_by(PlayerRatingScore.id))
            return result.scalars().all()

    async def get_self_reported_rating(self, player_id: int, sport_id: int) -> Optional[PlayerRatingScore]:
        """Get a player's self-reported record for a sport"""
        async with self.get_session() as session:
            result = await session.execute(
                select(PlayerRatingScore).where(
                    PlayerRatingScore.player_id == player_id,
                    PlayerRatingScore.sport_id == sport_id,
                    PlayerRatingScore.source == RatingSource.SELF_REPORTED
                )
            )
            return result.scalar_one_or_none()
