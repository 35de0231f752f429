"""
Operations Layer

This package provides business logic operations that compose database access
for rating workflows. Operations modules handle multi-step transactions,
validation and certification rules while the pure decision logic stays in
rallia.utils.certification.

Architecture:
- Database layer: Models, sessions and plain lookups
- Operations layer: Business logic composition and workflows
- Service layer: Screen-facing facades with retries and timeouts

Each operations module focuses on a specific domain:
- RatingOperations: Self-reported rating changes and certification recompute
- ProofOperations: Proof submission, review and counting
- ReferenceOperations: Reference requests, responses and expiry
- PeerEvaluationOperations: Peer rating requests and the rolling peer average
- ModerationOperations: Disputing and restoring ratings
"""

from .rating_operations import RatingOperations
from .proof_operations import ProofOperations
from .reference_operations import ReferenceOperations
from .peer_evaluation_operations import PeerEvaluationOperations
from .moderation_operations import ModerationOperations

__all__ = [
    'RatingOperations',
    'ProofOperations',
    'ReferenceOperations',
    'PeerEvaluationOperations',
    'ModerationOperations',
]
