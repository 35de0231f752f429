"""
Sport profile service.

The facade the Sport Profile screen calls: load the rating view, change the
self-declared level, refresh on screen focus and ask for a reference. Every
call accepts an optional timeout in seconds.
"""

import asyncio
import logging
from typing import Optional

from rallia.data_models.rating import (
    CertificationResult, OperationOutcome, RatingAssignmentResult, ReferenceRequestResult,
    SnapshotResult, SportRatingSnapshot
)
from rallia.operations.rating_operations import RatingOperations
from rallia.operations.reference_operations import ReferenceOperations
from rallia.services.base import BaseService
from rallia.utils.error_results import ErrorResults, HANDLED_ERRORS

logger = logging.getLogger(__name__)

TIMEOUT_MESSAGE = "The server took too long to respond. Please try again."


class SportProfileService(BaseService):
    """Service backing one player's rating view for one sport."""

    def __init__(self, db, rating_ops: Optional[RatingOperations] = None,
                 reference_ops: Optional[ReferenceOperations] = None):
        super().__init__(db.session_factory)
        self.db = db
        self.rating_ops = rating_ops or RatingOperations(db)
        self.reference_ops = reference_ops or ReferenceOperations(db, self.rating_ops)

    async def load(self, player_id: int, sport_id: int,
                   timeout: Optional[float] = None) -> SnapshotResult:
        """
        Load the snapshot the screen renders, recomputing the badge first.

        The result's snapshot is None when the player has no rating in the
        sport. A store failure or an expired timeout comes back as a
        TRANSIENT_FAILURE result.
        """
        async def _load() -> Optional[SportRatingSnapshot]:
            async with self.get_session() as session:
                records = await self.rating_ops.get_player_sport_records(player_id, sport_id, session=session)
                if not records:
                    return None
                await self.rating_ops.recompute_certification(records[0].id, session=session)
                return await self.rating_ops.get_sport_rating_snapshot(player_id, sport_id, session=session)

        try:
            snapshot = await self.with_timeout(self.execute_with_retry(_load), timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Loading sport {sport_id} profile for player {player_id} timed out")
            return ErrorResults.transient(SnapshotResult, TIMEOUT_MESSAGE)
        except HANDLED_ERRORS as e:
            logger.error(f"Failed to load sport {sport_id} profile for player {player_id}: {e}")
            return ErrorResults.from_exception(SnapshotResult, e)
        return SnapshotResult(outcome=OperationOutcome.SUCCESS, snapshot=snapshot)

    async def change_rating(self, player_id: int, rating_score_id: int,
                            timeout: Optional[float] = None) -> RatingAssignmentResult:
        """
        Change the player's self-declared level, then refresh the badge.

        The write is never retried here; a timeout is reported as a transient
        failure and the caller decides whether to try again.
        """
        try:
            assignment = await self.with_timeout(
                self.rating_ops.assign_self_reported_rating(player_id, rating_score_id), timeout
            )
        except asyncio.TimeoutError:
            logger.warning(f"Rating change for player {player_id} timed out")
            return ErrorResults.transient(RatingAssignmentResult, TIMEOUT_MESSAGE)

        if not assignment.success:
            return assignment

        certification = await self.refresh(assignment.record_id, timeout=timeout)
        if not certification.success:
            # Rating change is committed; the next screen refresh recomputes
            logger.warning(
                f"Rating {assignment.record_id} changed but certification refresh failed: "
                f"{certification.outcome.value}"
            )
        return assignment

    async def refresh(self, record_id: int, timeout: Optional[float] = None) -> CertificationResult:
        """Recompute counts and badge for a record (screen focus)"""
        async def _refresh() -> CertificationResult:
            return await self.rating_ops.recompute_certification(record_id)

        try:
            return await self.with_timeout(self.execute_with_retry(_refresh), timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Certification refresh for rating {record_id} timed out")
            return ErrorResults.transient(CertificationResult, TIMEOUT_MESSAGE, record_id=record_id)
        except HANDLED_ERRORS as e:
            logger.error(f"Certification refresh for rating {record_id} failed: {e}")
            return ErrorResults.from_exception(CertificationResult, e, record_id=record_id)

    async def request_reference(self, requester_id: int, referee_id: int, record_id: int,
                                message: Optional[str] = None,
                                timeout: Optional[float] = None) -> ReferenceRequestResult:
        try:
            return await self.with_timeout(
                self.reference_ops.request_reference(requester_id, referee_id, record_id, message), timeout
            )
        except asyncio.TimeoutError:
            logger.warning(f"Reference request for rating {record_id} timed out")
            return ErrorResults.transient(ReferenceRequestResult, TIMEOUT_MESSAGE)
