"""
Peer Evaluation Operations

A player asks a peer to rate them within a rating system; the peer answers
with a level from that system. The rolling average of recent evaluations is
stored on the player's self-reported record. It is informational only and
never changes the badge status.
"""

from typing import List, Optional
from datetime import datetime
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from rallia.config import Config
from rallia.data_models.rating import (
    OperationOutcome, PeerEvaluationResult, PeerEvaluationSummary
)
from rallia.database.models import (
    PeerRatingRequest, Player, PlayerRatingScore, RatingScore, RatingSource, RatingSystem, RequestStatus
)
from rallia.utils.certification import CertificationCalculator
from rallia.utils.error_results import ErrorResults, HANDLED_ERRORS
from rallia.utils.logger import setup_logger
from rallia.utils.rating_exceptions import (
    DuplicateRequestError, IneligibleRequestError, RatingRecordNotFoundError,
    RatingValidationError, RequestAlreadyRespondedError, RequestExpiredError
)
from rallia.utils.time_utils import expiry_from, utc_now

logger = setup_logger(__name__)


class PeerEvaluationOperations:
    """Service class for peer rating requests and the rolling peer average."""

    def __init__(self, db, expiry_days: Optional[int] = None):
        self.db = db
        self.expiry_days = expiry_days if expiry_days is not None else Config.PEER_RATING_REQUEST_EXPIRY_DAYS
        self.logger = setup_logger(f"{__name__}.PeerEvaluationOperations")

    async def _self_reported_record(
        self,
        session: AsyncSession,
        player_id: int,
        sport_id: int
    ) -> Optional[PlayerRatingScore]:
        result = await session.execute(
            select(PlayerRatingScore)
            .options(selectinload(PlayerRatingScore.rating_score))
            .where(
                PlayerRatingScore.player_id == player_id,
                PlayerRatingScore.sport_id == sport_id,
                PlayerRatingScore.source == RatingSource.SELF_REPORTED
            )
        )
        return result.scalar_one_or_none()

    async def request_peer_evaluation(
        self,
        requester_id: int,
        evaluator_id: int,
        rating_system_id: int,
        message: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> PeerEvaluationResult:
        """
        Ask a peer to rate the requester in a rating system.

        The requester needs a self-reported rating in the system's sport that
        meets the same floor as reference requests. One request per
        requester/system/evaluator is ever allowed.
        """
        now = now or utc_now()

        async def _create(session: AsyncSession) -> PeerRatingRequest:
            if requester_id == evaluator_id:
                raise RatingValidationError("You cannot rate yourself.")

            rating_system = await session.get(RatingSystem, rating_system_id)
            if not rating_system or not rating_system.is_active:
                raise RatingRecordNotFoundError("Rating system", rating_system_id)

            evaluator = await session.get(Player, evaluator_id)
            if not evaluator or not evaluator.is_active:
                raise RatingRecordNotFoundError("Player", evaluator_id)

            record = await self._self_reported_record(session, requester_id, rating_system.sport_id)
            if not record:
                raise RatingRecordNotFoundError("Rating record", f"player {requester_id}")

            floors = CertificationCalculator.reference_floors(rating_system.code, rating_system.min_for_referral)
            if not CertificationCalculator.is_eligible_for_references(
                rating_system.code, record.rating_score.value, floors
            ):
                raise IneligibleRequestError(
                    rating_system.code, CertificationCalculator.minimum_level_for(rating_system.code, floors)
                )

            request = PeerRatingRequest(
                requester_id=requester_id,
                evaluator_id=evaluator_id,
                rating_system_id=rating_system_id,
                message=message,
                status=RequestStatus.PENDING,
                expires_at=expiry_from(now, self.expiry_days)
            )
            session.add(request)
            await session.flush()
            return request

        try:
            async with self.db.transaction() as txn_session:
                request = await _create(txn_session)
        except IntegrityError as e:
            if not ErrorResults.is_unique_violation(e):
                self.logger.error(f"Failed to create peer rating request for player {requester_id}: {e}")
                return ErrorResults.from_exception(PeerEvaluationResult, e)
            self.logger.info(
                f"Peer rating request from {requester_id} to {evaluator_id} "
                f"for system {rating_system_id} already exists"
            )
            return ErrorResults.from_exception(PeerEvaluationResult, DuplicateRequestError("peer rating"))
        except HANDLED_ERRORS as e:
            self.logger.error(f"Failed to create peer rating request for player {requester_id}: {e}")
            return ErrorResults.from_exception(PeerEvaluationResult, e)

        self.logger.info(
            f"Created peer rating request {request.id} from {requester_id} to {evaluator_id}"
        )
        return PeerEvaluationResult(outcome=OperationOutcome.SUCCESS, request_id=request.id)

    async def submit_peer_evaluation(
        self,
        request_id: int,
        evaluator_id: int,
        assigned_rating_score_id: int,
        response_message: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> PeerEvaluationResult:
        """
        Answer a peer rating request with a level from the request's system.

        Refreshes the requester's peer average in the same transaction.
        """
        now = now or utc_now()

        async def _submit(session: AsyncSession) -> PeerEvaluationResult:
            request = await session.get(PeerRatingRequest, request_id)
            if not request or request.evaluator_id != evaluator_id:
                raise RatingRecordNotFoundError("Peer rating request", request_id)
            if request.status != RequestStatus.PENDING:
                raise RequestAlreadyRespondedError(request_id, request.status.value)
            if request.expires_at < now:
                raise RequestExpiredError(request_id)

            assigned = await session.get(RatingScore, assigned_rating_score_id)
            if not assigned or assigned.rating_system_id != request.rating_system_id:
                raise RatingValidationError("Pick a level from the requested rating system.")

            request.status = RequestStatus.COMPLETED
            request.assigned_rating_score_id = assigned.id
            request.response_message = response_message
            request.responded_at = now
            await session.flush()

            self.logger.info(
                f"Peer rating request {request.id} answered by {evaluator_id} with {assigned.value}"
            )

            rating_system = await session.get(RatingSystem, request.rating_system_id)
            record = await self._self_reported_record(session, request.requester_id, rating_system.sport_id)
            if not record:
                return PeerEvaluationResult(outcome=OperationOutcome.SUCCESS, request_id=request.id)

            summary = await self.refresh_peer_evaluations(record.id, session)
            return PeerEvaluationResult(
                outcome=OperationOutcome.SUCCESS,
                request_id=request.id,
                record_id=record.id,
                summary=summary
            )

        # The expiry write must survive the rollback of the failed answer
        try:
            async with self.db.transaction() as txn_session:
                return await _submit(txn_session)
        except RequestExpiredError as e:
            async with self.db.transaction() as txn_session:
                request = await txn_session.get(PeerRatingRequest, request_id)
                if request and request.status == RequestStatus.PENDING:
                    request.status = RequestStatus.EXPIRED
            self.logger.info(f"Peer rating request {request_id} expired before it was answered")
            return ErrorResults.from_exception(PeerEvaluationResult, e, request_id=request_id)
        except HANDLED_ERRORS as e:
            self.logger.error(f"Failed to submit peer rating for request {request_id}: {e}")
            return ErrorResults.from_exception(PeerEvaluationResult, e, request_id=request_id)

    async def refresh_peer_evaluations(
        self,
        record_id: int,
        session: Optional[AsyncSession] = None
    ) -> PeerEvaluationSummary:
        """
        Recompute a record's rolling peer average from completed evaluations.

        Raises:
            RatingRecordNotFoundError: If the record does not exist
        """
        async def _refresh(session: AsyncSession) -> PeerEvaluationSummary:
            result = await session.execute(
                select(PlayerRatingScore)
                .options(selectinload(PlayerRatingScore.rating_score))
                .where(PlayerRatingScore.id == record_id)
            )
            record = result.scalar_one_or_none()
            if not record:
                raise RatingRecordNotFoundError("Rating record", record_id)

            values = await self.get_evaluation_values(
                record.player_id, record.rating_score.rating_system_id, session=session
            )
            summary = CertificationCalculator.compute_peer_evaluation_average(record.rating_score.value, values)
            record.peer_evaluation_average = summary.average
            record.peer_evaluation_count = summary.count
            await session.flush()

            self.logger.debug(f"Rating {record_id} peer average {summary.average} over {summary.count}")
            return summary

        if session:
            return await _refresh(session)
        else:
            async with self.db.transaction() as txn_session:
                return await _refresh(txn_session)

    async def get_evaluation_values(
        self,
        player_id: int,
        rating_system_id: int,
        session: Optional[AsyncSession] = None
    ) -> List[float]:
        """Levels peers assigned to a player in a system, most recent first"""
        async def _get(session: AsyncSession) -> List[float]:
            result = await session.execute(
                select(RatingScore.value)
                .join(PeerRatingRequest, PeerRatingRequest.assigned_rating_score_id == RatingScore.id)
                .where(
                    PeerRatingRequest.requester_id == player_id,
                    PeerRatingRequest.rating_system_id == rating_system_id,
                    PeerRatingRequest.status == RequestStatus.COMPLETED
                )
                .order_by(PeerRatingRequest.responded_at.desc(), PeerRatingRequest.id.desc())
            )
            return list(result.scalars().all())

        if session:
            return await _get(session)
        else:
            async with self.db.get_session() as db_session:
                return await _get(db_session)
