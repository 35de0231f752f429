"""
Tests for the pure certification logic (no database).
"""

from types import SimpleNamespace

import pytest

from rallia.data_models.rating import CertificationInput, ProofTag
from rallia.database.models import (
    BadgeStatus, CertificationMethod, PlayerRatingScore, RatingSource, RequestStatus
)
from rallia.utils.certification import CertificationCalculator
from rallia.utils.time_utils import days_left, expiry_from, utc_now


def _record(badge_status=BadgeStatus.SELF_DECLARED, referrals_count=0):
    return CertificationInput(badge_status=badge_status, referrals_count=referrals_count)


class TestCertificationStatus:

    def test_enough_references_certifies(self):
        status = CertificationCalculator.compute_certification_status(_record(referrals_count=3), 0, 3, 2)
        assert status == BadgeStatus.CERTIFIED

    def test_enough_current_level_proofs_certifies(self):
        status = CertificationCalculator.compute_certification_status(_record(referrals_count=0), 2, 3, 2)
        assert status == BadgeStatus.CERTIFIED

    def test_below_both_thresholds_stays_self_declared(self):
        status = CertificationCalculator.compute_certification_status(_record(referrals_count=2), 1, 3, 2)
        assert status == BadgeStatus.SELF_DECLARED

    @pytest.mark.parametrize("referrals, proofs", [(0, 0), (3, 0), (0, 2), (10, 10)])
    def test_disputed_wins_regardless_of_counts(self, referrals, proofs):
        record = _record(badge_status=BadgeStatus.DISPUTED, referrals_count=referrals)
        status = CertificationCalculator.compute_certification_status(record, proofs, 3, 2)
        assert status == BadgeStatus.DISPUTED

    def test_defaults_come_from_config(self):
        assert CertificationCalculator.compute_certification_status(_record(referrals_count=3), 0) == BadgeStatus.CERTIFIED
        assert CertificationCalculator.compute_certification_status(_record(), 1) == BadgeStatus.SELF_DECLARED

    def test_reads_orm_rows_and_string_badges(self):
        row = SimpleNamespace(badge_status='disputed', referrals_count=None)
        assert CertificationCalculator.compute_certification_status(row, 5) == BadgeStatus.DISPUTED

        row = SimpleNamespace(badge_status=None, referrals_count=None)
        assert CertificationCalculator.compute_certification_status(row, 0) == BadgeStatus.SELF_DECLARED

    def test_proofs_take_precedence_as_method(self):
        assert CertificationCalculator.certification_method(3, 2, 3, 2) == CertificationMethod.PROOF
        assert CertificationCalculator.certification_method(3, 1, 3, 2) == CertificationMethod.REFERRALS
        assert CertificationCalculator.certification_method(2, 1, 3, 2) is None


class TestProofCounting:

    def test_only_current_level_proofs_count(self):
        proofs = [ProofTag(rating_score_id=7), ProofTag(rating_score_id=7), ProofTag(rating_score_id=9)]

        counts = CertificationCalculator.count_proofs(7, proofs)

        assert counts.current_level_count == 2
        assert counts.total_count == 3

    def test_inactive_proofs_are_ignored(self):
        proofs = [ProofTag(rating_score_id=7), ProofTag(rating_score_id=7, is_active=False), ProofTag(rating_score_id=None)]

        counts = CertificationCalculator.count_proofs(7, proofs)

        assert counts.current_level_count == 1
        assert counts.total_count == 2

    def test_no_proofs(self):
        counts = CertificationCalculator.count_proofs(7, [])
        assert (counts.total_count, counts.current_level_count) == (0, 0)

    def test_supporting_references_must_match_current_level(self):
        references = [
            SimpleNamespace(status=RequestStatus.COMPLETED, rating_supported=True, rating_score_id=7),
            SimpleNamespace(status=RequestStatus.COMPLETED, rating_supported=True, rating_score_id=6),
            SimpleNamespace(status=RequestStatus.DECLINED, rating_supported=False, rating_score_id=7),
            SimpleNamespace(status=RequestStatus.PENDING, rating_supported=False, rating_score_id=7),
        ]
        assert CertificationCalculator.count_supporting_references(7, references) == 1


class TestSelfReportedRating:

    def _certified_record(self):
        return PlayerRatingScore(
            id=42,
            player_id=1,
            sport_id=1,
            rating_score_id=5,
            source=RatingSource.SELF_REPORTED,
            is_certified=True,
            badge_status=BadgeStatus.CERTIFIED,
            certified_via=CertificationMethod.PROOF,
            certified_at=utc_now(),
            referrals_count=0,
            approved_proofs_count=2,
        )

    def test_level_change_resets_certification_in_place(self):
        record = self._certified_record()
        now = utc_now()

        changed = CertificationCalculator.apply_self_reported_rating(record, 6, now)

        assert changed is True
        assert record.id == 42
        assert record.rating_score_id == 6
        assert record.previous_rating_score_id == 5
        assert record.level_changed_at == now
        assert record.is_certified is False
        assert record.badge_status == BadgeStatus.SELF_DECLARED
        assert record.certified_via is None
        assert record.certified_at is None

    def test_same_level_still_resets_but_keeps_history(self):
        record = self._certified_record()

        changed = CertificationCalculator.apply_self_reported_rating(record, 5, utc_now())

        assert changed is False
        assert record.previous_rating_score_id is None
        assert record.badge_status == BadgeStatus.SELF_DECLARED

    def test_new_record_starts_self_declared(self):
        record = CertificationCalculator.new_self_reported_record(1, 2, 3, utc_now())

        assert record.source == RatingSource.SELF_REPORTED
        assert record.badge_status == BadgeStatus.SELF_DECLARED
        assert record.is_certified is False
        assert record.referrals_count == 0

    def test_apply_certified_then_self_declared(self):
        record = PlayerRatingScore(is_certified=False, badge_status=BadgeStatus.SELF_DECLARED)
        now = utc_now()

        assert CertificationCalculator.apply_certification_status(
            record, BadgeStatus.CERTIFIED, CertificationMethod.REFERRALS, now
        ) is True
        assert record.is_certified is True
        assert record.certified_at == now
        assert record.certified_via == CertificationMethod.REFERRALS

        # Re-applying the same status is a no-op
        assert CertificationCalculator.apply_certification_status(
            record, BadgeStatus.CERTIFIED, CertificationMethod.REFERRALS, utc_now()
        ) is False
        assert record.certified_at == now

        assert CertificationCalculator.apply_certification_status(
            record, BadgeStatus.SELF_DECLARED, None, now
        ) is True
        assert record.is_certified is False
        assert record.certified_at is None

    def test_disputed_status_is_never_written(self):
        record = PlayerRatingScore(is_certified=False, badge_status=BadgeStatus.DISPUTED)
        assert CertificationCalculator.apply_certification_status(
            record, BadgeStatus.DISPUTED, None, utc_now()
        ) is False
        assert record.badge_status == BadgeStatus.DISPUTED


class TestEligibility:

    @pytest.mark.parametrize("code, value, eligible", [
        ('NTRP', 2.5, False),
        ('NTRP', 3.0, True),
        ('NTRP', 4.5, True),
        ('DUPR', 3.0, False),
        ('DUPR', 3.5, True),
        ('ntrp', 2.5, False),
        ('UTR', 1.0, True),
    ])
    def test_floors_by_rating_system(self, code, value, eligible):
        assert CertificationCalculator.is_eligible_for_references(code, value) is eligible

    def test_missing_level_is_ineligible(self):
        assert CertificationCalculator.is_eligible_for_references('UTR', None) is False

    def test_rating_system_floor_overrides_default(self):
        floors = CertificationCalculator.reference_floors('NTRP', 4.0)

        assert floors['NTRP'] == 4.0
        assert floors['DUPR'] == 3.5
        assert CertificationCalculator.is_eligible_for_references('NTRP', 3.5, floors) is False

    def test_minimum_level_lookup(self):
        assert CertificationCalculator.minimum_level_for('dupr') == 3.5
        assert CertificationCalculator.minimum_level_for('UTR') is None
        assert CertificationCalculator.minimum_level_for(None) is None


class TestPeerEvaluationAverage:

    def test_outliers_are_excluded(self):
        summary = CertificationCalculator.compute_peer_evaluation_average(4.0, [3.5, 4.0, 5.5, 2.5])

        assert summary.count == 2
        assert summary.average == 3.75

    def test_only_most_recent_window_is_averaged(self):
        values = [4.0, 4.0, 4.0, 4.0, 4.0, 3.0, 3.0]

        summary = CertificationCalculator.compute_peer_evaluation_average(4.0, values, window=5)

        assert summary.count == 5
        assert summary.average == 4.0

    def test_nothing_qualifies(self):
        summary = CertificationCalculator.compute_peer_evaluation_average(4.0, [6.0, 1.5])
        assert summary.average is None
        assert summary.count == 0

    def test_average_rounds_to_two_decimals(self):
        summary = CertificationCalculator.compute_peer_evaluation_average(4.0, [4.0, 4.0, 3.5])
        assert summary.average == 3.83

    def test_review_suggested_when_peers_rate_clearly_lower(self):
        assert CertificationCalculator.peer_review_suggested(4.0, 3.5) is True
        assert CertificationCalculator.peer_review_suggested(4.0, 3.75) is False
        assert CertificationCalculator.peer_review_suggested(4.0, None) is False


class TestTimeUtils:

    def test_expiry_and_days_left(self):
        now = utc_now()
        expires_at = expiry_from(now, 14)

        assert days_left(expires_at, now) == 14
        assert days_left(expires_at, expiry_from(now, 20)) == 0
        assert utc_now().tzinfo is None
