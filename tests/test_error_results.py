"""
Tests for translating exceptions into operation results.
"""

import asyncio

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from rallia.data_models.rating import OperationOutcome, ReferenceRequestResult
from rallia.utils.error_results import ErrorResults
from rallia.utils.rating_exceptions import DuplicateRequestError


def _integrity_error(message, sqlstate=None):
    orig = Exception(message)
    if sqlstate:
        orig.sqlstate = sqlstate
    return IntegrityError("INSERT INTO rating_reference_requests", {}, orig)


class TestUniqueViolation:

    @pytest.mark.parametrize("message", [
        "UNIQUE constraint failed: rating_reference_requests.requester_id",
        'duplicate key value violates unique constraint "uq_player_sport_source"',
    ])
    def test_unique_key_messages(self, message):
        assert ErrorResults.is_unique_violation(_integrity_error(message)) is True

    def test_unique_sqlstate(self):
        assert ErrorResults.is_unique_violation(_integrity_error("violation", sqlstate="23505")) is True

    @pytest.mark.parametrize("message", [
        "FOREIGN KEY constraint failed",
        "CHECK constraint failed: ck_referrals_count_non_negative",
        "NOT NULL constraint failed: player_rating_scores.rating_score_id",
    ])
    def test_other_constraints(self, message):
        assert ErrorResults.is_unique_violation(_integrity_error(message)) is False

    def test_foreign_key_sqlstate(self):
        assert ErrorResults.is_unique_violation(_integrity_error("violation", sqlstate="23503")) is False

    def test_not_an_integrity_error(self):
        locked = OperationalError("SELECT 1", {}, Exception("UNIQUE constraint failed"))
        assert ErrorResults.is_unique_violation(locked) is False


class TestFromException:

    def test_duplicate(self):
        result = ErrorResults.from_exception(ReferenceRequestResult, DuplicateRequestError("reference"))

        assert result.outcome == OperationOutcome.DUPLICATE
        assert result.user_message == "You have already sent a request to this player."

    def test_constraint_failure_is_invalid(self):
        result = ErrorResults.from_exception(ReferenceRequestResult, _integrity_error("FOREIGN KEY constraint failed"))

        assert result.outcome == OperationOutcome.INVALID
        assert result.user_message

    def test_timeout_is_transient(self):
        result = ErrorResults.from_exception(ReferenceRequestResult, asyncio.TimeoutError())

        assert result.outcome == OperationOutcome.TRANSIENT_FAILURE
        assert result.success is False
