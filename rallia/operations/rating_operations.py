"""
Rating Operations Module

Business logic for a player's sport rating record: self-reported level
changes, certification recompute and the snapshot the sport profile screen
renders.

Key functionality:
- assign_self_reported_rating(): update-in-place upsert of the self-reported record
- refresh_certification(): recount current-level evidence and re-derive the badge
- get_sport_rating_snapshot(): read model for one player's rating in one sport

A self-declared level change always updates the existing record. The record id
is what proofs and reference requests link to, so replacing the row would
orphan that history.
"""

from typing import Optional, List
from contextlib import asynccontextmanager
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from rallia.config import Config
from rallia.data_models.rating import (
    CertificationResult, OperationOutcome, RatingAssignmentResult, SportRatingSnapshot
)
from rallia.database.models import (
    Player, PlayerRatingScore, RatingScore, RatingSource
)
from rallia.utils.certification import CertificationCalculator
from rallia.utils.error_results import ErrorResults, HANDLED_ERRORS
from rallia.utils.logger import setup_logger
from rallia.utils.rating_exceptions import RatingRecordNotFoundError
from rallia.utils.time_utils import utc_now

logger = setup_logger(__name__)


class RatingOperations:
    """
    Business logic operations for player rating records.

    Certification thresholds default to Config and can be overridden per
    instance.
    """

    def __init__(self, database, required_references: Optional[int] = None,
                 required_proofs: Optional[int] = None):
        """Initialize with database instance and certification thresholds"""
        self.db = database
        self.required_references = required_references if required_references is not None else Config.CERTIFICATION_REQUIRED_REFERENCES
        self.required_proofs = required_proofs if required_proofs is not None else Config.CERTIFICATION_REQUIRED_PROOFS
        self.logger = logger

    @asynccontextmanager
    async def _get_session_context(self, session: Optional[AsyncSession] = None):
        """
        Provides a session context. Uses the provided session if available,
        otherwise creates and manages a new transaction.
        """
        if session:
            yield session
        else:
            async with self.db.transaction() as new_session:
                yield new_session

    async def load_record(
        self,
        session: AsyncSession,
        record_id: int,
        with_evidence: bool = False
    ) -> Optional[PlayerRatingScore]:
        """Load a rating record with its level and rating system, optionally with proofs and references"""
        query = (
            select(PlayerRatingScore)
            .options(selectinload(PlayerRatingScore.rating_score).selectinload(RatingScore.rating_system))
            .where(PlayerRatingScore.id == record_id)
        )
        if with_evidence:
            query = query.options(
                selectinload(PlayerRatingScore.proofs),
                selectinload(PlayerRatingScore.reference_requests)
            ).execution_options(populate_existing=True)
        result = await session.execute(query)
        return result.scalar_one_or_none()

    async def assign_self_reported_rating(
        self,
        player_id: int,
        rating_score_id: int,
        session: Optional[AsyncSession] = None
    ) -> RatingAssignmentResult:
        """
        Set a player's self-declared level for the sport of ``rating_score_id``.

        Updates the existing self-reported record in place (same id, certification
        reset to self_declared) or creates it. Records from other sources for the
        same sport are never touched.

        Args:
            player_id: Player declaring the level
            rating_score_id: The chosen rating level
            session: Optional existing database session (no race retry when given)

        Returns:
            RatingAssignmentResult with the stable record id on success
        """
        async def _assign(s: AsyncSession) -> RatingAssignmentResult:
            player = await s.get(Player, player_id)
            if not player or not player.is_active:
                raise RatingRecordNotFoundError("Player", player_id)

            result = await s.execute(
                select(RatingScore)
                .options(selectinload(RatingScore.rating_system))
                .where(RatingScore.id == rating_score_id)
            )
            rating_score = result.scalar_one_or_none()
            if not rating_score:
                raise RatingRecordNotFoundError("Rating score", rating_score_id)

            sport_id = rating_score.rating_system.sport_id
            now = utc_now()

            result = await s.execute(
                select(PlayerRatingScore).where(
                    PlayerRatingScore.player_id == player_id,
                    PlayerRatingScore.sport_id == sport_id,
                    PlayerRatingScore.source == RatingSource.SELF_REPORTED
                )
            )
            existing = result.scalar_one_or_none()

            if existing:
                old_rating_score_id = existing.rating_score_id
                level_changed = CertificationCalculator.apply_self_reported_rating(existing, rating_score_id, now)
                await s.flush()
                self.logger.info(
                    f"Updated self-reported rating {existing.id} for player {player_id} "
                    f"(rating_score {old_rating_score_id} -> {rating_score_id})"
                )
                return RatingAssignmentResult(
                    outcome=OperationOutcome.SUCCESS,
                    record_id=existing.id,
                    created=False,
                    level_changed=level_changed
                )

            record = CertificationCalculator.new_self_reported_record(player_id, sport_id, rating_score_id, now)
            s.add(record)
            await s.flush()
            self.logger.info(
                f"Created self-reported rating {record.id} for player {player_id} "
                f"in sport {sport_id} (rating_score {rating_score_id})"
            )
            return RatingAssignmentResult(
                outcome=OperationOutcome.SUCCESS,
                record_id=record.id,
                created=True,
                level_changed=True
            )

        try:
            if session:
                return await _assign(session)

            try:
                async with self.db.transaction() as txn_session:
                    return await _assign(txn_session)
            except IntegrityError as e:
                if not ErrorResults.is_unique_violation(e):
                    raise
                # A concurrent first declaration won the insert; update that row instead
                self.logger.warning(
                    f"Concurrent self-reported insert for player {player_id}, retrying as update"
                )
                async with self.db.transaction() as txn_session:
                    return await _assign(txn_session)

        except HANDLED_ERRORS as e:
            self.logger.error(f"Failed to assign rating {rating_score_id} to player {player_id}: {e}")
            return ErrorResults.from_exception(RatingAssignmentResult, e)

    async def recompute_certification(
        self,
        record_id: int,
        session: Optional[AsyncSession] = None
    ) -> CertificationResult:
        """
        Recount current-level evidence and re-derive the badge status.

        Idempotent and safe to run after any refresh. Raises on failure; see
        refresh_certification() for the result-returning variant.

        Raises:
            RatingRecordNotFoundError: If the record does not exist
        """
        async with self._get_session_context(session) as s:
            record = await self.load_record(s, record_id, with_evidence=True)
            if not record:
                raise RatingRecordNotFoundError("Rating record", record_id)

            proof_counts = CertificationCalculator.count_proofs(record.rating_score_id, record.proofs)
            referrals = CertificationCalculator.count_supporting_references(
                record.rating_score_id, record.reference_requests
            )
            record.approved_proofs_count = proof_counts.current_level_count
            record.referrals_count = referrals

            status = CertificationCalculator.compute_certification_status(
                record, proof_counts.current_level_count,
                self.required_references, self.required_proofs
            )
            method = CertificationCalculator.certification_method(
                referrals, proof_counts.current_level_count,
                self.required_references, self.required_proofs
            )
            changed = CertificationCalculator.apply_certification_status(record, status, method, utc_now())
            await s.flush()

            if changed:
                self.logger.info(f"Rating {record.id} is now {record.badge_status.value}")
            else:
                self.logger.debug(f"Rating {record.id} unchanged ({record.badge_status.value})")

            return CertificationResult(
                outcome=OperationOutcome.SUCCESS,
                record_id=record.id,
                badge_status=record.badge_status,
                is_certified=record.is_certified,
                proof_counts=proof_counts,
                referrals_count=referrals,
                changed=changed
            )

    async def refresh_certification(
        self,
        record_id: int,
        session: Optional[AsyncSession] = None
    ) -> CertificationResult:
        """Recompute certification, reporting failures as a typed result"""
        try:
            return await self.recompute_certification(record_id, session=session)
        except HANDLED_ERRORS as e:
            self.logger.error(f"Failed to refresh certification for rating {record_id}: {e}")
            return ErrorResults.from_exception(CertificationResult, e, record_id=record_id)

    async def get_record(
        self,
        record_id: int,
        session: Optional[AsyncSession] = None
    ) -> Optional[PlayerRatingScore]:
        async with self._get_session_context(session) as s:
            return await self.load_record(s, record_id)

    async def get_player_sport_records(
        self,
        player_id: int,
        sport_id: int,
        session: Optional[AsyncSession] = None
    ) -> List[PlayerRatingScore]:
        """All rating records of a player in a sport, self-reported first"""
        async with self._get_session_context(session) as s:
            result = await s.execute(
                select(PlayerRatingScore)
                .options(
                    selectinload(PlayerRatingScore.rating_score).selectinload(RatingScore.rating_system),
                    selectinload(PlayerRatingScore.proofs)
                )
                .where(
                    PlayerRatingScore.player_id == player_id,
                    PlayerRatingScore.sport_id == sport_id
                )
                .order_by(PlayerRatingScore.id)
            )
            records = result.scalars().all()
            return sorted(records, key=lambda r: r.source != RatingSource.SELF_REPORTED)

    async def get_sport_rating_snapshot(
        self,
        player_id: int,
        sport_id: int,
        session: Optional[AsyncSession] = None
    ) -> Optional[SportRatingSnapshot]:
        """
        Build the sport profile view of a player's rating.

        Prefers the self-reported record; falls back to any other record for
        the sport. Returns None when the player has no rating in the sport.
        """
        records = await self.get_player_sport_records(player_id, sport_id, session=session)
        if not records:
            return None

        record = records[0]
        rating_score = record.rating_score
        rating_system = rating_score.rating_system
        proof_counts = CertificationCalculator.count_proofs(record.rating_score_id, record.proofs)

        floors = CertificationCalculator.reference_floors(rating_system.code, rating_system.min_for_referral)

        return SportRatingSnapshot(
            record_id=record.id,
            player_id=record.player_id,
            sport_id=record.sport_id,
            rating_score_id=record.rating_score_id,
            rating_system_code=rating_system.code,
            level_label=rating_score.label,
            level_value=rating_score.value,
            badge_status=record.badge_status,
            is_certified=record.is_certified,
            certified_via=record.certified_via,
            referrals_count=record.referrals_count,
            total_proofs_count=proof_counts.total_count,
            current_level_proofs_count=proof_counts.current_level_count,
            peer_evaluation_average=record.peer_evaluation_average,
            peer_evaluation_count=record.peer_evaluation_count,
            can_request_references=CertificationCalculator.is_eligible_for_references(
                rating_system.code, rating_score.value, floors
            ),
            minimum_level_for_references=CertificationCalculator.minimum_level_for(rating_system.code, floors),
            peer_review_suggested=CertificationCalculator.peer_review_suggested(
                rating_score.value, record.peer_evaluation_average
            )
        )
