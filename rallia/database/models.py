from sqlalchemy import (
    Column, Integer, String, DateTime, Boolean, Text, Float,
    ForeignKey, Enum as SQLEnum, UniqueConstraint, CheckConstraint, Index, text
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func
from enum import Enum

Base = declarative_base()

class RatingSource(Enum):
    SELF_REPORTED = "self_reported"
    PEER_VERIFIED = "peer_verified"
    API_VERIFIED = "api_verified"
    ADMIN_VERIFIED = "admin_verified"

class BadgeStatus(Enum):
    SELF_DECLARED = "self_declared"  # Yellow badge: declared, not certified
    CERTIFIED = "certified"          # Green badge: certified via proofs or references
    DISPUTED = "disputed"            # Red badge: set by moderation

class CertificationMethod(Enum):
    EXTERNAL_RATING = "external_rating"
    PROOF = "proof"
    REFERRALS = "referrals"

class RequestStatus(Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    DECLINED = "declined"
    EXPIRED = "expired"
    CANCELLED = "cancelled"

class ProofType(Enum):
    EXTERNAL_LINK = "external_link"
    FILE = "file"

class ProofStatus(Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"

class Sport(Base):
    __tablename__ = 'sports'

    id = Column(Integer, primary_key=True)
    name = Column(String(50), nullable=False, unique=True)
    display_name = Column(String(100), nullable=False)
    is_active = Column(Boolean, default=True)

    created_at = Column(DateTime, default=func.now())

    rating_systems = relationship("RatingSystem", back_populates="sport")

    def __repr__(self):
        return f"<Sport(name='{self.name}')>"

class RatingSystem(Base):
    __tablename__ = 'rating_systems'

    id = Column(Integer, primary_key=True)
    sport_id = Column(Integer, ForeignKey('sports.id'), nullable=False, index=True)
    code = Column(String(50), nullable=False, unique=True)
    name = Column(String(150), nullable=False)
    description = Column(Text)

    min_value = Column(Float, nullable=False)
    max_value = Column(Float, nullable=False)
    step = Column(Float, nullable=False, default=0.5)
    default_initial_value = Column(Float)
    min_for_referral = Column(Float, nullable=True)  # Overrides the built-in floor for this code when set
    is_active = Column(Boolean, default=True)

    created_at = Column(DateTime, default=func.now())

    sport = relationship("Sport", back_populates="rating_systems")
    scores = relationship("RatingScore", back_populates="rating_system", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<RatingSystem(code='{self.code}', sport_id={self.sport_id})>"

class RatingScore(Base):
    __tablename__ = 'rating_scores'

    id = Column(Integer, primary_key=True)
    rating_system_id = Column(Integer, ForeignKey('rating_systems.id'), nullable=False, index=True)
    value = Column(Float, nullable=False)
    label = Column(String(50), nullable=False)
    description = Column(Text)

    created_at = Column(DateTime, default=func.now())

    rating_system = relationship("RatingSystem", back_populates="scores")

    __table_args__ = (UniqueConstraint('rating_system_id', 'value', name='uq_rating_score_system_value'),)

    def __repr__(self):
        return f"<RatingScore(system_id={self.rating_system_id}, value={self.value})>"

class Player(Base):
    __tablename__ = 'players'

    id = Column(Integer, primary_key=True)
    username = Column(String(100), nullable=False, unique=True)
    display_name = Column(String(100))
    is_active = Column(Boolean, default=True)

    registered_at = Column(DateTime, default=func.now())
    last_active = Column(DateTime, default=func.now())

    ratings = relationship("PlayerRatingScore", back_populates="player", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Player(id={self.id}, username='{self.username}')>"

class PlayerRatingScore(Base):
    """One player's rating within one sport's rating system.

    The row id is what proofs and reference requests point at, so a
    self-declared level change updates ``rating_score_id`` on this row instead
    of replacing it.
    """
    __tablename__ = 'player_rating_scores'

    id = Column(Integer, primary_key=True)
    player_id = Column(Integer, ForeignKey('players.id'), nullable=False, index=True)
    sport_id = Column(Integer, ForeignKey('sports.id'), nullable=False, index=True)  # Denormalized for the unique key
    rating_score_id = Column(Integer, ForeignKey('rating_scores.id'), nullable=False)
    source = Column(SQLEnum(RatingSource), nullable=False, default=RatingSource.SELF_REPORTED)

    # Certification state
    is_certified = Column(Boolean, nullable=False, default=False)
    badge_status = Column(SQLEnum(BadgeStatus), nullable=False, default=BadgeStatus.SELF_DECLARED, index=True)
    certified_via = Column(SQLEnum(CertificationMethod), nullable=True)
    certified_at = Column(DateTime, nullable=True)

    # Evidence counters (current level only)
    referrals_count = Column(Integer, nullable=False, default=0)
    approved_proofs_count = Column(Integer, nullable=False, default=0)
    peer_evaluation_average = Column(Float, nullable=True)
    peer_evaluation_count = Column(Integer, nullable=False, default=0)

    # Level change tracking
    previous_rating_score_id = Column(Integer, ForeignKey('rating_scores.id'), nullable=True)
    level_changed_at = Column(DateTime, nullable=True)

    # Moderation
    dispute_reason = Column(Text, nullable=True)

    # Metadata
    assigned_at = Column(DateTime, default=func.now())
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    player = relationship("Player", back_populates="ratings")
    sport = relationship("Sport")
    rating_score = relationship("RatingScore", foreign_keys=[rating_score_id])
    previous_rating_score = relationship("RatingScore", foreign_keys=[previous_rating_score_id])
    proofs = relationship("RatingProof", back_populates="player_rating_score", cascade="all, delete-orphan")
    reference_requests = relationship(
        "RatingReferenceRequest", back_populates="player_rating_score", cascade="all, delete-orphan"
    )

    __table_args__ = (
        UniqueConstraint('player_id', 'sport_id', 'source', name='uq_player_rating_sport_source'),
        CheckConstraint('referrals_count >= 0', name='ck_referrals_count_non_negative'),
        CheckConstraint('approved_proofs_count >= 0', name='ck_approved_proofs_count_non_negative'),
        CheckConstraint('peer_evaluation_count >= 0', name='ck_peer_evaluation_count_non_negative'),
    )

    def __repr__(self):
        source = self.source.value if self.source else None
        badge = self.badge_status.value if self.badge_status else None
        return (
            f"<PlayerRatingScore(id={self.id}, player_id={self.player_id}, "
            f"rating_score_id={self.rating_score_id}, source={source}, badge={badge})>"
        )

class RatingProof(Base):
    __tablename__ = 'rating_proofs'

    id = Column(Integer, primary_key=True)
    player_rating_score_id = Column(Integer, ForeignKey('player_rating_scores.id'), nullable=False, index=True)
    rating_score_id = Column(Integer, ForeignKey('rating_scores.id'), nullable=True, index=True)  # Level at submission time

    proof_type = Column(SQLEnum(ProofType), nullable=False)
    file_id = Column(String(255), nullable=True)
    external_url = Column(Text, nullable=True)
    title = Column(String(255), nullable=False)
    description = Column(Text)

    # Review
    status = Column(SQLEnum(ProofStatus), nullable=False, default=ProofStatus.PENDING)
    reviewed_by = Column(Integer, ForeignKey('players.id'), nullable=True)
    reviewed_at = Column(DateTime, nullable=True)
    review_notes = Column(Text)
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    player_rating_score = relationship("PlayerRatingScore", back_populates="proofs")

    def __repr__(self):
        return (
            f"<RatingProof(id={self.id}, record_id={self.player_rating_score_id}, "
            f"rating_score_id={self.rating_score_id}, active={self.is_active})>"
        )

class RatingReferenceRequest(Base):
    __tablename__ = 'rating_reference_requests'

    id = Column(Integer, primary_key=True)
    requester_id = Column(Integer, ForeignKey('players.id'), nullable=False, index=True)
    referee_id = Column(Integer, ForeignKey('players.id'), nullable=False, index=True)
    player_rating_score_id = Column(Integer, ForeignKey('player_rating_scores.id'), nullable=False, index=True)
    rating_score_id = Column(Integer, ForeignKey('rating_scores.id'), nullable=True)  # Level the reference vouches for

    message = Column(Text)
    status = Column(SQLEnum(RequestStatus), nullable=False, default=RequestStatus.PENDING)
    rating_supported = Column(Boolean, nullable=False, default=False)
    response_message = Column(Text)
    responded_at = Column(DateTime, nullable=True)

    expires_at = Column(DateTime, nullable=False, index=True)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    player_rating_score = relationship("PlayerRatingScore", back_populates="reference_requests")
    requester = relationship("Player", foreign_keys=[requester_id])
    referee = relationship("Player", foreign_keys=[referee_id])

    # One pending request per requester/referee/record
    __table_args__ = (
        Index(
            'uq_pending_reference_request',
            'requester_id', 'referee_id', 'player_rating_score_id',
            unique=True,
            sqlite_where=text("status = 'PENDING'"),
            postgresql_where=text("status = 'PENDING'"),
        ),
    )

    def __repr__(self):
        return (
            f"<RatingReferenceRequest(id={self.id}, requester_id={self.requester_id}, "
            f"referee_id={self.referee_id}, status={self.status.value if self.status else None})>"
        )

class PeerRatingRequest(Base):
    __tablename__ = 'peer_rating_requests'

    id = Column(Integer, primary_key=True)
    requester_id = Column(Integer, ForeignKey('players.id'), nullable=False, index=True)
    evaluator_id = Column(Integer, ForeignKey('players.id'), nullable=False, index=True)
    rating_system_id = Column(Integer, ForeignKey('rating_systems.id'), nullable=False)

    message = Column(Text)
    status = Column(SQLEnum(RequestStatus), nullable=False, default=RequestStatus.PENDING)
    assigned_rating_score_id = Column(Integer, ForeignKey('rating_scores.id'), nullable=True)
    response_message = Column(Text)
    responded_at = Column(DateTime, nullable=True)

    expires_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    rating_system = relationship("RatingSystem")
    assigned_rating_score = relationship("RatingScore")

    __table_args__ = (
        UniqueConstraint('requester_id', 'rating_system_id', 'evaluator_id', name='uq_peer_rating_request'),
    )

    def __repr__(self):
        return (
            f"<PeerRatingRequest(id={self.id}, requester_id={self.requester_id}, "
            f"evaluator_id={self.evaluator_id}, status={self.status.value if self.status else None})>"
        )
