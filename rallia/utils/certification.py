from datetime import datetime
from typing import Any, Dict, Iterable, Optional

from rallia.config import Config
from rallia.constants import CertificationConstants
from rallia.data_models.rating import (
    CertificationInput, PeerEvaluationSummary, ProofCounts
)
from rallia.database.models import (
    BadgeStatus, CertificationMethod, PlayerRatingScore, RatingSource, RequestStatus
)

class CertificationCalculator:
    """Pure decision logic for rating certification (no I/O)"""

    @staticmethod
    def compute_certification_status(record: Any, current_level_proofs_count: int,
                                     required_references: Optional[int] = None,
                                     required_proofs: Optional[int] = None) -> BadgeStatus:
        """
        Derive the badge status of a rating record from its evidence

        Args:
            record: Rating record or CertificationInput (reads badge_status and referrals_count)
            current_level_proofs_count: Active proofs submitted for the record's current level
            required_references: References needed to certify (Config default when None)
            required_proofs: Current-level proofs needed to certify (Config default when None)

        Returns:
            DISPUTED if moderation flagged the record, CERTIFIED if either
            threshold is met, SELF_DECLARED otherwise
        """
        if required_references is None:
            required_references = Config.CERTIFICATION_REQUIRED_REFERENCES
        if required_proofs is None:
            required_proofs = Config.CERTIFICATION_REQUIRED_PROOFS

        state = record if isinstance(record, CertificationInput) else CertificationInput.from_record(record)

        if state.badge_status == BadgeStatus.DISPUTED:
            return BadgeStatus.DISPUTED
        if state.referrals_count >= required_references or current_level_proofs_count >= required_proofs:
            return BadgeStatus.CERTIFIED
        return BadgeStatus.SELF_DECLARED

    @staticmethod
    def certification_method(referrals_count: int, current_level_proofs_count: int,
                             required_references: Optional[int] = None,
                             required_proofs: Optional[int] = None) -> Optional[CertificationMethod]:
        """
        Report which evidence certifies a rating; proofs take precedence over referrals

        Returns:
            CertificationMethod, or None when neither threshold is met
        """
        if required_references is None:
            required_references = Config.CERTIFICATION_REQUIRED_REFERENCES
        if required_proofs is None:
            required_proofs = Config.CERTIFICATION_REQUIRED_PROOFS

        if current_level_proofs_count >= required_proofs:
            return CertificationMethod.PROOF
        if referrals_count >= required_references:
            return CertificationMethod.REFERRALS
        return None

    @staticmethod
    def count_proofs(current_rating_score_id: Optional[int], proofs: Iterable[Any]) -> ProofCounts:
        """
        Split a record's proofs into lifetime and current-level counts

        Args:
            current_rating_score_id: The record's current level
            proofs: Proof rows or ProofTags (reads rating_score_id and is_active)

        Returns:
            ProofCounts over active proofs only
        """
        total = 0
        current_level = 0
        for proof in proofs:
            if not getattr(proof, 'is_active', True):
                continue
            total += 1
            if current_rating_score_id is not None and proof.rating_score_id == current_rating_score_id:
                current_level += 1
        return ProofCounts(total_count=total, current_level_count=current_level)

    @staticmethod
    def count_supporting_references(current_rating_score_id: Optional[int], references: Iterable[Any]) -> int:
        """Count completed, supportive references given for the current level"""
        return sum(
            1 for reference in references
            if reference.status == RequestStatus.COMPLETED
            and reference.rating_supported
            and current_rating_score_id is not None
            and reference.rating_score_id == current_rating_score_id
        )

    @staticmethod
    def new_self_reported_record(player_id: int, sport_id: int, rating_score_id: int,
                                 now: datetime) -> PlayerRatingScore:
        """Build the first self-reported record for a player in a sport"""
        return PlayerRatingScore(
            player_id=player_id,
            sport_id=sport_id,
            rating_score_id=rating_score_id,
            source=RatingSource.SELF_REPORTED,
            is_certified=False,
            badge_status=BadgeStatus.SELF_DECLARED,
            referrals_count=0,
            approved_proofs_count=0,
            peer_evaluation_count=0,
            assigned_at=now,
        )

    @staticmethod
    def apply_self_reported_rating(record: PlayerRatingScore, new_rating_score_id: int,
                                   now: datetime) -> bool:
        """
        Move an existing self-reported record to a new level in place

        The record keeps its id so proofs and references stay linked; the
        certification state is reset because old evidence no longer applies.

        Returns:
            True if the level actually changed
        """
        level_changed = record.rating_score_id != new_rating_score_id
        if level_changed:
            record.previous_rating_score_id = record.rating_score_id
            record.level_changed_at = now
            record.rating_score_id = new_rating_score_id

        record.is_certified = False
        record.badge_status = BadgeStatus.SELF_DECLARED
        record.certified_via = None
        record.certified_at = None
        record.dispute_reason = None
        record.assigned_at = now
        return level_changed

    @staticmethod
    def apply_certification_status(record: PlayerRatingScore, status: BadgeStatus,
                                   method: Optional[CertificationMethod], now: datetime) -> bool:
        """
        Write a derived status back onto a record

        Disputed records are left as they are; only moderation moves them.

        Returns:
            True if any certification field changed
        """
        if status == BadgeStatus.DISPUTED:
            return False

        before = (record.badge_status, record.is_certified, record.certified_via)

        if status == BadgeStatus.CERTIFIED:
            if not record.is_certified:
                record.certified_at = now
            record.is_certified = True
            record.badge_status = BadgeStatus.CERTIFIED
            record.certified_via = method
        else:
            record.is_certified = False
            record.badge_status = BadgeStatus.SELF_DECLARED
            record.certified_via = None
            record.certified_at = None

        return before != (record.badge_status, record.is_certified, record.certified_via)

    @staticmethod
    def reference_floors(rating_system_code: Optional[str] = None,
                         min_for_referral: Optional[float] = None) -> Dict[str, float]:
        """Built-in request floors, with a rating system's own floor taking precedence"""
        floors = dict(CertificationConstants.MIN_LEVEL_FOR_REFERENCES)
        if rating_system_code and min_for_referral is not None:
            floors[rating_system_code.upper()] = min_for_referral
        return floors

    @staticmethod
    def minimum_level_for(rating_system_code: Optional[str],
                          min_levels: Optional[Dict[str, float]] = None) -> Optional[float]:
        """Minimum level to request references for a rating system, None if unrestricted"""
        if not rating_system_code:
            return None
        if min_levels is None:
            min_levels = CertificationConstants.MIN_LEVEL_FOR_REFERENCES
        return {code.upper(): level for code, level in min_levels.items()}.get(rating_system_code.upper())

    @staticmethod
    def is_eligible_for_references(rating_system_code: Optional[str], score_value: Optional[float],
                                   min_levels: Optional[Dict[str, float]] = None) -> bool:
        """
        Check whether a rating may request references or peer ratings

        Args:
            rating_system_code: Rating system code (e.g. 'NTRP', 'DUPR')
            score_value: The player's current level
            min_levels: Mapping of rating system code to minimum level

        Returns:
            True when the level meets the floor, or the system has no floor
        """
        if score_value is None:
            return False
        minimum = CertificationCalculator.minimum_level_for(rating_system_code, min_levels)
        if minimum is None:
            return True
        return score_value >= minimum

    @staticmethod
    def compute_peer_evaluation_average(current_value: Optional[float], values_newest_first: Iterable[float],
                                        window: Optional[int] = None,
                                        extreme_delta: Optional[float] = None) -> PeerEvaluationSummary:
        """
        Average the most recent peer evaluations, ignoring outliers

        Args:
            current_value: The player's declared level; evaluations more than
                extreme_delta away from it are ignored
            values_newest_first: Evaluated levels, most recent first
            window: Number of evaluations to average (Config default when None)
            extreme_delta: Outlier distance (Config default when None)

        Returns:
            PeerEvaluationSummary with the average rounded to two decimals,
            or average None when nothing qualifies
        """
        if window is None:
            window = Config.PEER_EVALUATION_WINDOW
        if extreme_delta is None:
            extreme_delta = Config.PEER_EVALUATION_EXTREME_DELTA

        included = []
        for value in values_newest_first:
            if value is None:
                continue
            if current_value is not None and abs(value - current_value) > extreme_delta:
                continue
            included.append(value)
            if len(included) == window:
                break

        if not included:
            return PeerEvaluationSummary(average=None, count=0)
        return PeerEvaluationSummary(average=round(sum(included) / len(included), 2), count=len(included))

    @staticmethod
    def peer_review_suggested(current_value: Optional[float], peer_average: Optional[float],
                              dispute_delta: Optional[float] = None) -> bool:
        """True when peers rate the player clearly below the declared level"""
        if current_value is None or peer_average is None:
            return False
        if dispute_delta is None:
            dispute_delta = Config.PEER_DISPUTE_DELTA
        return round(current_value - peer_average, 2) >= dispute_delta
