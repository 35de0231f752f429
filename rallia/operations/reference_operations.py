"""
Reference Operations Service

Handles reference requests: a rating owner asks a peer to vouch for their
self-declared level. Requests expire after a fixed window, can be answered
once by the addressed referee, and a duplicate pending request for the same
requester/referee/record is rejected by the store's unique index and reported
as an expected DUPLICATE outcome rather than an error.
"""

from typing import Dict, List, Optional
from datetime import datetime
from sqlalchemy import select, update, and_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from rallia.config import Config
from rallia.constants import RequestConstants
from rallia.data_models.rating import (
    OperationOutcome, ReferenceRequestResult, ReferenceResponseResult
)
from rallia.database.models import (
    BadgeStatus, Player, PlayerRatingScore, RatingReferenceRequest, RatingScore, RequestStatus
)
from rallia.utils.certification import CertificationCalculator
from rallia.utils.error_results import ErrorResults, HANDLED_ERRORS
from rallia.utils.logger import setup_logger
from rallia.utils.rating_exceptions import (
    DuplicateRequestError, IneligibleRequestError, RatingRecordNotFoundError,
    RatingValidationError, RequestAlreadyRespondedError, RequestExpiredError
)
from rallia.utils.time_utils import days_left, expiry_from, utc_now

logger = setup_logger(__name__)


class ReferenceOperations:
    """
    Service class for reference request workflows.

    Manages creating, answering, cancelling and expiring reference requests,
    and finding players qualified to give a reference.
    """

    def __init__(self, db, rating_ops, expiry_days: Optional[int] = None):
        """
        Args:
            db: Database instance for persistence
            rating_ops: RatingOperations used to recompute certification after a response
            expiry_days: Days until a new request expires (Config default when None)
        """
        self.db = db
        self.rating_ops = rating_ops
        self.expiry_days = expiry_days if expiry_days is not None else Config.REFERENCE_REQUEST_EXPIRY_DAYS
        self.logger = setup_logger(f"{__name__}.ReferenceOperations")

    async def request_reference(
        self,
        requester_id: int,
        referee_id: int,
        record_id: int,
        message: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> ReferenceRequestResult:
        """
        Ask a peer to vouch for the requester's rating.

        Prerequisites are checked before anything is written: the record must
        exist and belong to the requester, the referee must be an active player
        other than the requester, and the rating must meet its system's floor.

        Args:
            requester_id: Owner of the rating record
            referee_id: Player asked to give the reference
            record_id: Rating record the reference is for
            message: Optional note to the referee
            now: Creation time (defaults to the current UTC time)

        Returns:
            ReferenceRequestResult with outcome SUCCESS, DUPLICATE, NOT_FOUND,
            INELIGIBLE, INVALID or TRANSIENT_FAILURE
        """
        now = now or utc_now()

        async def _create(session: AsyncSession) -> RatingReferenceRequest:
            if requester_id == referee_id:
                raise RatingValidationError("You cannot ask yourself for a reference.")

            record = await self.rating_ops.load_record(session, record_id)
            if not record or record.player_id != requester_id:
                raise RatingRecordNotFoundError("Rating record", record_id)

            referee = await session.get(Player, referee_id)
            if not referee or not referee.is_active:
                raise RatingRecordNotFoundError("Player", referee_id)

            rating_system = record.rating_score.rating_system
            floors = CertificationCalculator.reference_floors(rating_system.code, rating_system.min_for_referral)
            if not CertificationCalculator.is_eligible_for_references(
                rating_system.code, record.rating_score.value, floors
            ):
                raise IneligibleRequestError(
                    rating_system.code, CertificationCalculator.minimum_level_for(rating_system.code, floors)
                )

            # An expired ask must not block a new one
            await self._expire_pending(
                session, now,
                RatingReferenceRequest.requester_id == requester_id,
                RatingReferenceRequest.referee_id == referee_id,
                RatingReferenceRequest.player_rating_score_id == record_id
            )

            request = RatingReferenceRequest(
                requester_id=requester_id,
                referee_id=referee_id,
                player_rating_score_id=record.id,
                rating_score_id=record.rating_score_id,
                message=message,
                status=RequestStatus.PENDING,
                rating_supported=False,
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
                self.logger.error(f"Failed to create reference request for rating {record_id}: {e}")
                return ErrorResults.from_exception(ReferenceRequestResult, e)
            self.logger.info(
                f"Reference request from {requester_id} to {referee_id} for rating {record_id} already pending"
            )
            return ErrorResults.from_exception(ReferenceRequestResult, DuplicateRequestError("reference"))
        except HANDLED_ERRORS as e:
            self.logger.error(f"Failed to create reference request for rating {record_id}: {e}")
            return ErrorResults.from_exception(ReferenceRequestResult, e)

        self.logger.info(
            f"Created reference request {request.id} from {requester_id} to {referee_id} for rating {record_id} "
            f"(expires in {days_left(request.expires_at, now)} days)"
        )
        return ReferenceRequestResult(
            outcome=OperationOutcome.SUCCESS,
            request_id=request.id,
            expires_at=request.expires_at
        )

    async def request_references(
        self,
        requester_id: int,
        referee_ids: List[int],
        record_id: int,
        message: Optional[str] = None
    ) -> Dict[int, ReferenceRequestResult]:
        """Send one request per referee; each referee gets its own outcome"""
        results = {}
        for referee_id in referee_ids:
            results[referee_id] = await self.request_reference(requester_id, referee_id, record_id, message)

        sent = sum(1 for r in results.values() if r.success)
        self.logger.info(f"Sent {sent}/{len(referee_ids)} reference requests for rating {record_id}")
        return results

    async def respond_to_reference(
        self,
        request_id: int,
        referee_id: int,
        approve: bool,
        response_message: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> ReferenceResponseResult:
        """
        Answer a pending reference request as its referee.

        Approving completes the request with rating_supported set; declining
        marks it declined. The rating's referral count and certification are
        recomputed in the same transaction.
        """
        now = now or utc_now()

        async def _respond(session: AsyncSession) -> ReferenceResponseResult:
            request = await session.get(RatingReferenceRequest, request_id)
            if not request or request.referee_id != referee_id:
                raise RatingRecordNotFoundError("Reference request", request_id)
            if request.status != RequestStatus.PENDING:
                raise RequestAlreadyRespondedError(request_id, request.status.value)
            if request.expires_at < now:
                raise RequestExpiredError(request_id)

            request.status = RequestStatus.COMPLETED if approve else RequestStatus.DECLINED
            request.rating_supported = approve
            request.response_message = response_message.strip() if response_message and response_message.strip() else None
            request.responded_at = now
            await session.flush()

            self.logger.info(
                f"Reference request {request.id} {request.status.value} by referee {referee_id}"
            )

            certification = await self.rating_ops.recompute_certification(
                request.player_rating_score_id, session=session
            )
            return ReferenceResponseResult(
                outcome=OperationOutcome.SUCCESS,
                request_id=request.id,
                record_id=request.player_rating_score_id,
                rating_supported=approve,
                certification=certification
            )

        try:
            async with self.db.transaction() as txn_session:
                return await _respond(txn_session)
        except HANDLED_ERRORS as e:
            self.logger.error(f"Failed to respond to reference request {request_id}: {e}")
            return ErrorResults.from_exception(ReferenceResponseResult, e, request_id=request_id)

    async def cancel_reference_request(self, request_id: int, requester_id: int) -> ReferenceRequestResult:
        """Withdraw a pending request as its requester"""
        async def _cancel(session: AsyncSession) -> RatingReferenceRequest:
            request = await session.get(RatingReferenceRequest, request_id)
            if not request or request.requester_id != requester_id:
                raise RatingRecordNotFoundError("Reference request", request_id)
            if request.status != RequestStatus.PENDING:
                raise RequestAlreadyRespondedError(request_id, request.status.value)
            request.status = RequestStatus.CANCELLED
            await session.flush()
            return request

        try:
            async with self.db.transaction() as txn_session:
                request = await _cancel(txn_session)
        except HANDLED_ERRORS as e:
            self.logger.error(f"Failed to cancel reference request {request_id}: {e}")
            return ErrorResults.from_exception(ReferenceRequestResult, e, request_id=request_id)

        self.logger.info(f"Cancelled reference request {request_id}")
        return ReferenceRequestResult(outcome=OperationOutcome.SUCCESS, request_id=request.id)

    async def expire_stale_requests(
        self,
        now: Optional[datetime] = None,
        session: Optional[AsyncSession] = None
    ) -> int:
        """
        Mark pending requests past their expiry as EXPIRED.

        Returns:
            Number of requests expired
        """
        now = now or utc_now()

        async def _cleanup(session: AsyncSession) -> int:
            count = await self._expire_pending(session, now)
            if count:
                self.logger.info(f"Expired {count} reference requests")
            return count

        if session:
            return await _cleanup(session)
        else:
            async with self.db.transaction() as txn_session:
                return await _cleanup(txn_session)

    async def get_incoming_requests(
        self,
        referee_id: int,
        now: Optional[datetime] = None,
        limit: int = RequestConstants.DEFAULT_PAGE_SIZE,
        session: Optional[AsyncSession] = None
    ) -> List[RatingReferenceRequest]:
        """Pending, unexpired requests addressed to a referee, newest first"""
        now = now or utc_now()

        async def _get(session: AsyncSession) -> List[RatingReferenceRequest]:
            result = await session.execute(
                select(RatingReferenceRequest)
                .options(
                    selectinload(RatingReferenceRequest.requester),
                    selectinload(RatingReferenceRequest.player_rating_score)
                    .selectinload(PlayerRatingScore.rating_score)
                    .selectinload(RatingScore.rating_system)
                )
                .where(
                    and_(
                        RatingReferenceRequest.referee_id == referee_id,
                        RatingReferenceRequest.status == RequestStatus.PENDING,
                        RatingReferenceRequest.expires_at >= now
                    )
                )
                .order_by(RatingReferenceRequest.created_at.desc(), RatingReferenceRequest.id.desc())
                .limit(limit)
            )
            return result.scalars().all()

        if session:
            return await _get(session)
        else:
            async with self.db.get_session() as db_session:
                return await _get(db_session)

    async def find_certified_referees(
        self,
        player_id: int,
        sport_id: int,
        session: Optional[AsyncSession] = None
    ) -> List[PlayerRatingScore]:
        """
        Find players who can vouch for a player's rating in a sport.

        Candidates hold a certified rating in the same sport at the same or a
        higher level than the player's self-reported level. Returns one record
        per candidate (their highest), highest level first.
        """
        async def _find(session: AsyncSession) -> List[PlayerRatingScore]:
            own_records = await self.rating_ops.get_player_sport_records(player_id, sport_id, session=session)
            own_value = own_records[0].rating_score.value if own_records else None

            result = await session.execute(
                select(PlayerRatingScore)
                .options(
                    selectinload(PlayerRatingScore.player),
                    selectinload(PlayerRatingScore.rating_score)
                )
                .where(
                    PlayerRatingScore.sport_id == sport_id,
                    PlayerRatingScore.player_id != player_id,
                    (PlayerRatingScore.is_certified == True)
                    | (PlayerRatingScore.badge_status == BadgeStatus.CERTIFIED)
                )
            )

            best_by_player: Dict[int, PlayerRatingScore] = {}
            for candidate in result.scalars().all():
                if not candidate.player.is_active:
                    continue
                value = candidate.rating_score.value
                if own_value is not None and value < own_value:
                    continue
                current = best_by_player.get(candidate.player_id)
                if current is None or value > current.rating_score.value:
                    best_by_player[candidate.player_id] = candidate

            return sorted(best_by_player.values(), key=lambda r: (-r.rating_score.value, r.player_id))

        if session:
            return await _find(session)
        else:
            async with self.db.get_session() as db_session:
                return await _find(db_session)

    async def _expire_pending(self, session: AsyncSession, now: datetime, *criteria) -> int:
        result = await session.execute(
            update(RatingReferenceRequest)
            .where(
                RatingReferenceRequest.status == RequestStatus.PENDING,
                RatingReferenceRequest.expires_at < now,
                *criteria
            )
            .values(status=RequestStatus.EXPIRED)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0
