"""
Rating data models for the certification engine.

Provides immutable value objects passed into the pure certification logic and
the typed operation results returned to callers, so the UI can branch on an
outcome instead of parsing error strings.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from rallia.database.models import BadgeStatus, CertificationMethod


class OperationOutcome(Enum):
    """Outcome of a rating operation."""
    SUCCESS = "success"
    DUPLICATE = "duplicate"                  # Informational: already requested
    NOT_FOUND = "not_found"                  # Missing record or prerequisite, nothing written
    INELIGIBLE = "ineligible"                # Rating below the request floor, nothing written
    EXPIRED = "expired"
    ALREADY_RESPONDED = "already_responded"
    INVALID = "invalid"
    TRANSIENT_FAILURE = "transient_failure"  # Store failure or timeout, retry is safe


@dataclass(frozen=True)
class CertificationInput:
    """The fields of a rating record the certification rule reads."""
    badge_status: BadgeStatus
    referrals_count: int = 0

    @classmethod
    def from_record(cls, record: Any) -> "CertificationInput":
        badge_status = record.badge_status or BadgeStatus.SELF_DECLARED
        if isinstance(badge_status, str):
            badge_status = BadgeStatus(badge_status)
        return cls(badge_status=badge_status, referrals_count=record.referrals_count or 0)


@dataclass(frozen=True)
class ProofTag:
    """A proof reduced to what counting needs: the level it targets and whether it is live."""
    rating_score_id: Optional[int]
    is_active: bool = True


@dataclass(frozen=True)
class ProofCounts:
    """Lifetime proof count (informational) and current-level count (drives certification)."""
    total_count: int
    current_level_count: int


@dataclass(frozen=True)
class PeerEvaluationSummary:
    average: Optional[float]
    count: int


@dataclass(frozen=True)
class SportRatingSnapshot:
    """Everything the sport profile screen shows about one rating."""
    record_id: int
    player_id: int
    sport_id: int
    rating_score_id: int
    rating_system_code: str
    level_label: str
    level_value: float
    badge_status: BadgeStatus
    is_certified: bool
    certified_via: Optional[CertificationMethod]
    referrals_count: int
    total_proofs_count: int
    current_level_proofs_count: int
    peer_evaluation_average: Optional[float]
    peer_evaluation_count: int
    can_request_references: bool
    minimum_level_for_references: Optional[float] = None
    peer_review_suggested: bool = False


@dataclass
class OperationResult:
    """Base result of a rating operation"""
    outcome: OperationOutcome
    user_message: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.outcome == OperationOutcome.SUCCESS


@dataclass
class RatingAssignmentResult(OperationResult):
    """Result of a self-reported rating change"""
    record_id: Optional[int] = None
    created: bool = False
    level_changed: bool = False


@dataclass
class CertificationResult(OperationResult):
    """Result of recomputing a record's certification status"""
    record_id: Optional[int] = None
    badge_status: Optional[BadgeStatus] = None
    is_certified: bool = False
    proof_counts: Optional[ProofCounts] = None
    referrals_count: int = 0
    changed: bool = False


@dataclass
class ReferenceRequestResult(OperationResult):
    """Result of asking a peer for a reference"""
    request_id: Optional[int] = None
    expires_at: Optional[datetime] = None


@dataclass
class ReferenceResponseResult(OperationResult):
    """Result of a referee answering a reference request"""
    request_id: Optional[int] = None
    record_id: Optional[int] = None
    rating_supported: bool = False
    certification: Optional[CertificationResult] = None


@dataclass
class ProofResult(OperationResult):
    """Result of submitting, reviewing or withdrawing a proof"""
    proof_id: Optional[int] = None
    record_id: Optional[int] = None
    certification: Optional[CertificationResult] = None


@dataclass
class PeerEvaluationResult(OperationResult):
    """Result of a peer rating request or submission"""
    request_id: Optional[int] = None
    record_id: Optional[int] = None
    summary: Optional[PeerEvaluationSummary] = None


@dataclass
class SnapshotResult(OperationResult):
    """Result of loading the sport profile view; snapshot is None when the player has no rating"""
    snapshot: Optional[SportRatingSnapshot] = None
