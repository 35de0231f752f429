"""
Proof Operations Module

Handles evidence attached to a rating record. Every proof is tagged with the
rating level the record held when it was submitted; only proofs for the
record's current level count toward certification, while the lifetime count
is informational.
"""

from typing import List, Optional
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from rallia.data_models.rating import OperationOutcome, ProofCounts, ProofResult
from rallia.database.models import PlayerRatingScore, ProofStatus, ProofType, RatingProof
from rallia.utils.certification import CertificationCalculator
from rallia.utils.error_results import ErrorResults, HANDLED_ERRORS
from rallia.utils.logger import setup_logger
from rallia.utils.rating_exceptions import (
    RatingRecordNotFoundError, RatingValidationError, RequestAlreadyRespondedError
)
from rallia.utils.time_utils import utc_now

logger = setup_logger(__name__)


class ProofOperations:
    """Service class for rating proof submission, review and counting."""

    def __init__(self, db, rating_ops):
        """
        Args:
            db: Database instance for persistence
            rating_ops: RatingOperations used to recompute certification after changes
        """
        self.db = db
        self.rating_ops = rating_ops
        self.logger = setup_logger(f"{__name__}.ProofOperations")

    async def refresh_proof_counts(
        self,
        record_id: int,
        session: Optional[AsyncSession] = None
    ) -> ProofCounts:
        """
        Recount a record's active proofs.

        Stores the current-level count on the record's approved_proofs_count.

        Returns:
            ProofCounts(total_count, current_level_count)

        Raises:
            RatingRecordNotFoundError: If the record does not exist
        """
        async def _refresh(session: AsyncSession) -> ProofCounts:
            record = await session.get(PlayerRatingScore, record_id)
            if not record:
                raise RatingRecordNotFoundError("Rating record", record_id)

            result = await session.execute(
                select(RatingProof).where(RatingProof.player_rating_score_id == record_id)
            )
            counts = CertificationCalculator.count_proofs(record.rating_score_id, result.scalars().all())
            record.approved_proofs_count = counts.current_level_count
            await session.flush()

            self.logger.debug(
                f"Rating {record_id} proofs: {counts.total_count} total, "
                f"{counts.current_level_count} at current level"
            )
            return counts

        if session:
            return await _refresh(session)
        else:
            async with self.db.transaction() as txn_session:
                return await _refresh(txn_session)

    async def submit_proof(
        self,
        record_id: int,
        owner_id: int,
        proof_type: ProofType,
        title: str,
        external_url: Optional[str] = None,
        file_id: Optional[str] = None,
        description: Optional[str] = None
    ) -> ProofResult:
        """
        Attach a proof to the owner's rating record at its current level.

        Args:
            record_id: Rating record the proof supports
            owner_id: Player submitting the proof (must own the record)
            proof_type: EXTERNAL_LINK (needs external_url) or FILE (needs file_id)
            title: Short title shown in the proof gallery

        Returns:
            ProofResult with the new proof id and the refreshed certification
        """
        async def _submit(session: AsyncSession) -> ProofResult:
            if not title or not title.strip():
                raise RatingValidationError("A proof needs a title.")
            if proof_type == ProofType.EXTERNAL_LINK and not external_url:
                raise RatingValidationError("A link proof needs a URL.")
            if proof_type == ProofType.FILE and not file_id:
                raise RatingValidationError("A file proof needs an uploaded file.")

            record = await session.get(PlayerRatingScore, record_id)
            if not record or record.player_id != owner_id:
                raise RatingRecordNotFoundError("Rating record", record_id)

            proof = RatingProof(
                player_rating_score_id=record.id,
                rating_score_id=record.rating_score_id,
                proof_type=proof_type,
                file_id=file_id,
                external_url=external_url,
                title=title.strip()[:255],
                description=description,
                status=ProofStatus.PENDING,
                is_active=True
            )
            session.add(proof)
            await session.flush()

            self.logger.info(
                f"Created proof {proof.id} for rating {record.id} at rating_score {record.rating_score_id}"
            )

            certification = await self.rating_ops.recompute_certification(record.id, session=session)
            return ProofResult(
                outcome=OperationOutcome.SUCCESS,
                proof_id=proof.id,
                record_id=record.id,
                certification=certification
            )

        try:
            async with self.db.transaction() as txn_session:
                return await _submit(txn_session)
        except HANDLED_ERRORS as e:
            self.logger.error(f"Failed to submit proof for rating {record_id}: {e}")
            return ErrorResults.from_exception(ProofResult, e, record_id=record_id)

    async def review_proof(
        self,
        proof_id: int,
        reviewer_id: int,
        approve: bool,
        notes: Optional[str] = None
    ) -> ProofResult:
        """
        Approve or reject a pending proof.

        A rejected proof is deactivated so it no longer counts anywhere.
        Reviewers cannot review proofs on their own ratings.
        """
        async def _review(session: AsyncSession) -> ProofResult:
            proof = await session.get(RatingProof, proof_id)
            if not proof:
                raise RatingRecordNotFoundError("Proof", proof_id)
            if proof.status != ProofStatus.PENDING:
                raise RequestAlreadyRespondedError(proof_id, proof.status.value)

            record = await session.get(PlayerRatingScore, proof.player_rating_score_id)
            if record.player_id == reviewer_id:
                raise RatingValidationError("You cannot review your own proof.")

            proof.status = ProofStatus.APPROVED if approve else ProofStatus.REJECTED
            proof.reviewed_by = reviewer_id
            proof.reviewed_at = utc_now()
            proof.review_notes = notes
            if not approve:
                proof.is_active = False
            await session.flush()

            self.logger.info(f"Proof {proof.id} {proof.status.value} by reviewer {reviewer_id}")

            certification = await self.rating_ops.recompute_certification(record.id, session=session)
            return ProofResult(
                outcome=OperationOutcome.SUCCESS,
                proof_id=proof.id,
                record_id=record.id,
                certification=certification
            )

        try:
            async with self.db.transaction() as txn_session:
                return await _review(txn_session)
        except HANDLED_ERRORS as e:
            self.logger.error(f"Failed to review proof {proof_id}: {e}")
            return ErrorResults.from_exception(ProofResult, e, proof_id=proof_id)

    async def deactivate_proof(self, proof_id: int, owner_id: int) -> ProofResult:
        """Withdraw one of the owner's proofs"""
        async def _deactivate(session: AsyncSession) -> ProofResult:
            proof = await session.get(RatingProof, proof_id)
            record = await session.get(PlayerRatingScore, proof.player_rating_score_id) if proof else None
            if not proof or not record or record.player_id != owner_id:
                raise RatingRecordNotFoundError("Proof", proof_id)

            proof.is_active = False
            await session.flush()
            self.logger.info(f"Proof {proof.id} withdrawn from rating {record.id}")

            certification = await self.rating_ops.recompute_certification(record.id, session=session)
            return ProofResult(
                outcome=OperationOutcome.SUCCESS,
                proof_id=proof.id,
                record_id=record.id,
                certification=certification
            )

        try:
            async with self.db.transaction() as txn_session:
                return await _deactivate(txn_session)
        except HANDLED_ERRORS as e:
            self.logger.error(f"Failed to withdraw proof {proof_id}: {e}")
            return ErrorResults.from_exception(ProofResult, e, proof_id=proof_id)

    async def get_proofs(
        self,
        record_id: int,
        active_only: bool = True,
        session: Optional[AsyncSession] = None
    ) -> List[RatingProof]:
        """List a record's proofs, newest first"""
        async def _get(session: AsyncSession) -> List[RatingProof]:
            query = select(RatingProof).where(RatingProof.player_rating_score_id == record_id)
            if active_only:
                query = query.where(RatingProof.is_active == True)
            result = await session.execute(query.order_by(RatingProof.created_at.desc(), RatingProof.id.desc()))
            return result.scalars().all()

        if session:
            return await _get(session)
        else:
            async with self.db.get_session() as db_session:
                return await _get(db_session)
