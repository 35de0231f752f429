"""
Tests for self-reported rating changes and certification recompute.
"""

import asyncio

import pytest

from rallia.config import Config
from rallia.data_models.rating import OperationOutcome
from rallia.database.models import (
    BadgeStatus, CertificationMethod, PlayerRatingScore, ProofType, RatingSource
)
from rallia.operations import RatingOperations


class TestAssignSelfReportedRating:

    @pytest.mark.asyncio
    async def test_first_assignment_creates_record(self, db, rating_ops, players, level, tennis):
        result = await rating_ops.assign_self_reported_rating(players['alice'].id, await level('NTRP', 3.5))

        assert result.success
        assert result.created is True
        record = await db.get_self_reported_rating(players['alice'].id, tennis.id)
        assert record.id == result.record_id
        assert record.badge_status == BadgeStatus.SELF_DECLARED
        assert record.is_certified is False

    @pytest.mark.asyncio
    async def test_record_id_is_stable_across_changes(self, db, rating_ops, players, level, tennis):
        alice = players['alice'].id
        first = await rating_ops.assign_self_reported_rating(alice, await level('NTRP', 3.0))

        ids = [first.record_id]
        for value in (3.5, 4.0, 3.0, 3.0):
            result = await rating_ops.assign_self_reported_rating(alice, await level('NTRP', value))
            assert result.success
            assert result.created is False
            ids.append(result.record_id)

        assert set(ids) == {first.record_id}
        assert len(await db.get_player_ratings(alice, tennis.id)) == 1

    @pytest.mark.asyncio
    async def test_level_change_resets_certification(self, db, rating_ops, proof_ops, players, level):
        alice = players['alice'].id
        assigned = await rating_ops.assign_self_reported_rating(alice, await level('NTRP', 4.0))
        for title in ('League results', 'Coach assessment'):
            await proof_ops.submit_proof(assigned.record_id, alice, ProofType.EXTERNAL_LINK, title,
                                         external_url='https://example.com/proof')

        certified = await rating_ops.get_record(assigned.record_id)
        assert certified.badge_status == BadgeStatus.CERTIFIED
        assert certified.certified_via == CertificationMethod.PROOF

        changed = await rating_ops.assign_self_reported_rating(alice, await level('NTRP', 4.5))

        assert changed.level_changed is True
        record = await rating_ops.get_record(assigned.record_id)
        assert record.badge_status == BadgeStatus.SELF_DECLARED
        assert record.is_certified is False
        assert record.certified_via is None
        assert record.previous_rating_score_id == await level('NTRP', 4.0)

        # Old-level proofs stay linked but no longer certify
        refreshed = await rating_ops.refresh_certification(assigned.record_id)
        assert refreshed.badge_status == BadgeStatus.SELF_DECLARED
        assert refreshed.proof_counts.total_count == 2
        assert refreshed.proof_counts.current_level_count == 0

    @pytest.mark.asyncio
    async def test_other_sources_are_untouched(self, db, rating_ops, players, level, tennis):
        alice = players['alice'].id
        api_level = await level('NTRP', 5.0)
        async with db.transaction() as session:
            session.add(PlayerRatingScore(
                player_id=alice,
                sport_id=tennis.id,
                rating_score_id=api_level,
                source=RatingSource.API_VERIFIED,
                is_certified=True,
                badge_status=BadgeStatus.CERTIFIED,
                certified_via=CertificationMethod.EXTERNAL_RATING
            ))

        await rating_ops.assign_self_reported_rating(alice, await level('NTRP', 3.0))
        await rating_ops.assign_self_reported_rating(alice, await level('NTRP', 3.5))

        records = await db.get_player_ratings(alice, tennis.id)
        by_source = {r.source: r for r in records}
        assert set(by_source) == {RatingSource.API_VERIFIED, RatingSource.SELF_REPORTED}
        assert by_source[RatingSource.API_VERIFIED].rating_score.value == 5.0
        assert by_source[RatingSource.API_VERIFIED].badge_status == BadgeStatus.CERTIFIED
        assert by_source[RatingSource.SELF_REPORTED].rating_score.value == 3.5

    @pytest.mark.asyncio
    async def test_sports_are_independent(self, db, rating_ops, players, level):
        alice = players['alice'].id
        tennis_result = await rating_ops.assign_self_reported_rating(alice, await level('NTRP', 3.0))
        pickleball_result = await rating_ops.assign_self_reported_rating(alice, await level('DUPR', 4.0))

        assert tennis_result.record_id != pickleball_result.record_id
        assert len(await db.get_player_ratings(alice)) == 2

    @pytest.mark.asyncio
    async def test_unknown_rating_score_writes_nothing(self, db, rating_ops, players):
        result = await rating_ops.assign_self_reported_rating(players['alice'].id, 99999)

        assert result.outcome == OperationOutcome.NOT_FOUND
        assert result.user_message
        assert await db.get_player_ratings(players['alice'].id) == []

    @pytest.mark.asyncio
    async def test_unknown_player(self, rating_ops, level):
        result = await rating_ops.assign_self_reported_rating(99999, await level('NTRP', 3.0))
        assert result.outcome == OperationOutcome.NOT_FOUND


class TestCertificationRecompute:

    @pytest.mark.asyncio
    async def test_recompute_is_idempotent(self, rating_ops, players, level):
        assigned = await rating_ops.assign_self_reported_rating(players['alice'].id, await level('NTRP', 3.0))

        first = await rating_ops.refresh_certification(assigned.record_id)
        second = await rating_ops.refresh_certification(assigned.record_id)

        assert first.badge_status == second.badge_status == BadgeStatus.SELF_DECLARED
        assert second.changed is False

    @pytest.mark.asyncio
    async def test_missing_record_is_not_found(self, rating_ops):
        result = await rating_ops.refresh_certification(12345)
        assert result.outcome == OperationOutcome.NOT_FOUND
        assert result.record_id == 12345

    @pytest.mark.asyncio
    async def test_snapshot(self, rating_ops, players, level, tennis):
        alice = players['alice'].id
        assert await rating_ops.get_sport_rating_snapshot(alice, tennis.id) is None

        assigned = await rating_ops.assign_self_reported_rating(alice, await level('NTRP', 2.5))
        snapshot = await rating_ops.get_sport_rating_snapshot(alice, tennis.id)

        assert snapshot.record_id == assigned.record_id
        assert snapshot.rating_system_code == 'NTRP'
        assert snapshot.level_label == '2.5'
        assert snapshot.badge_status == BadgeStatus.SELF_DECLARED
        assert snapshot.can_request_references is False
        assert snapshot.minimum_level_for_references == 3.0
        assert snapshot.total_proofs_count == 0


class TestConcurrentAssignment:

    @pytest.mark.asyncio
    async def test_simultaneous_first_declarations_share_one_record(self, file_db):
        rating_ops = RatingOperations(file_db)
        alice = await file_db.create_player('alice')
        tennis = await file_db.get_sport_by_name('tennis')
        score = await file_db.get_rating_score_by_value('NTRP', 3.5)

        results = await asyncio.gather(*[
            rating_ops.assign_self_reported_rating(alice.id, score.id) for _ in range(5)
        ])

        assert all(r.outcome == OperationOutcome.SUCCESS for r in results)
        assert len({r.record_id for r in results}) == 1
        assert sum(1 for r in results if r.created) == 1
        records = await file_db.get_player_ratings(alice.id, tennis.id)
        assert [record.id for record in records] == [results[0].record_id]


class TestThresholdOverrides:

    def test_explicit_zero_is_kept(self, db):
        ops = RatingOperations(db, required_references=0, required_proofs=0)

        assert ops.required_references == 0
        assert ops.required_proofs == 0

    def test_defaults_come_from_config(self, db):
        ops = RatingOperations(db)

        assert ops.required_references == Config.CERTIFICATION_REQUIRED_REFERENCES
        assert ops.required_proofs == Config.CERTIFICATION_REQUIRED_PROOFS
