"""
Moderation operations for rating records.

Moderators move a record into or out of the DISPUTED state. Recompute never
clears a dispute on its own, so resolve_dispute() is the only way back.
"""

from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession

from rallia.data_models.rating import CertificationResult, OperationOutcome
from rallia.database.models import BadgeStatus, PlayerRatingScore
from rallia.utils.error_results import ErrorResults, HANDLED_ERRORS
from rallia.utils.logger import setup_logger
from rallia.utils.rating_exceptions import RatingRecordNotFoundError, RatingValidationError

logger = setup_logger(__name__)


class ModerationOperations:
    """Service class for disputing and restoring rating records."""

    def __init__(self, db, rating_ops):
        self.db = db
        self.rating_ops = rating_ops
        self.logger = setup_logger(f"{__name__}.ModerationOperations")

    async def mark_disputed(self, record_id: int, moderator_id: int, reason: str) -> CertificationResult:
        """
        Flag a rating record as disputed.

        The record loses its certification until a moderator resolves the
        dispute, whatever evidence it holds.
        """
        async def _dispute(session: AsyncSession) -> CertificationResult:
            if not reason or not reason.strip():
                raise RatingValidationError("A dispute needs a reason.")

            record = await session.get(PlayerRatingScore, record_id)
            if not record:
                raise RatingRecordNotFoundError("Rating record", record_id)
            if record.player_id == moderator_id:
                raise RatingValidationError("You cannot moderate your own rating.")

            changed = record.badge_status != BadgeStatus.DISPUTED
            record.badge_status = BadgeStatus.DISPUTED
            record.is_certified = False
            record.certified_via = None
            record.certified_at = None
            record.dispute_reason = reason.strip()
            await session.flush()

            self.logger.warning(f"Rating {record.id} disputed by moderator {moderator_id}: {record.dispute_reason}")
            return CertificationResult(
                outcome=OperationOutcome.SUCCESS,
                record_id=record.id,
                badge_status=record.badge_status,
                is_certified=False,
                referrals_count=record.referrals_count,
                changed=changed
            )

        try:
            async with self.db.transaction() as txn_session:
                return await _dispute(txn_session)
        except HANDLED_ERRORS as e:
            self.logger.error(f"Failed to dispute rating {record_id}: {e}")
            return ErrorResults.from_exception(CertificationResult, e, record_id=record_id)

    async def resolve_dispute(self, record_id: int, moderator_id: int) -> CertificationResult:
        """
        Clear a dispute and re-derive the badge from current evidence.

        Resolving a record that is not disputed is a no-op recompute.
        """
        async def _resolve(session: AsyncSession) -> CertificationResult:
            record = await session.get(PlayerRatingScore, record_id)
            if not record:
                raise RatingRecordNotFoundError("Rating record", record_id)

            was_disputed = record.badge_status == BadgeStatus.DISPUTED
            if was_disputed:
                record.badge_status = BadgeStatus.SELF_DECLARED
                record.dispute_reason = None
                await session.flush()
                self.logger.info(f"Dispute on rating {record.id} resolved by moderator {moderator_id}")

            certification = await self.rating_ops.recompute_certification(record_id, session=session)
            if was_disputed:
                certification.changed = True
            return certification

        try:
            async with self.db.transaction() as txn_session:
                return await _resolve(txn_session)
        except HANDLED_ERRORS as e:
            self.logger.error(f"Failed to resolve dispute on rating {record_id}: {e}")
            return ErrorResults.from_exception(CertificationResult, e, record_id=record_id)

    async def get_dispute_reason(self, record_id: int, session: Optional[AsyncSession] = None) -> Optional[str]:
        async def _get(session: AsyncSession) -> Optional[str]:
            record = await session.get(PlayerRatingScore, record_id)
            if not record:
                raise RatingRecordNotFoundError("Rating record", record_id)
            return record.dispute_reason

        if session:
            return await _get(session)
        else:
            async with self.db.get_session() as db_session:
                return await _get(db_session)
