"""
Centralized translation of failures into typed operation results.

Operations raise domain exceptions internally; at their public boundary the
failure is turned into a result carrying an OperationOutcome and a user-facing
message. Exceptions that are not rating or persistence failures propagate.
"""

import asyncio
from typing import Optional, Type, TypeVar

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from rallia.data_models.rating import OperationOutcome, OperationResult
from rallia.utils.rating_exceptions import (
    RatingException, RatingRecordNotFoundError, RatingValidationError,
    DuplicateRequestError, IneligibleRequestError, RatingPersistenceError,
    RequestExpiredError, RequestAlreadyRespondedError
)

ResultT = TypeVar('ResultT', bound=OperationResult)

# Exceptions the public operation boundary converts into results
HANDLED_ERRORS = (RatingException, SQLAlchemyError, asyncio.TimeoutError, ConnectionError)

TRANSIENT_MESSAGE = RatingPersistenceError("operation").user_message

# Driver messages and SQLSTATE for a unique key violation (sqlite, postgresql)
UNIQUE_VIOLATION_MARKERS = ("unique constraint", "duplicate key", "unique violation")
UNIQUE_VIOLATION_SQLSTATE = "23505"


class ErrorResults:
    """Centralized result factory for consistent error handling."""

    @staticmethod
    def is_unique_violation(error: Exception) -> bool:
        """True only for an IntegrityError raised by a unique key, not a foreign key or check."""
        if not isinstance(error, IntegrityError):
            return False
        orig = getattr(error, "orig", None)
        for attr in ("sqlstate", "pgcode"):
            if getattr(orig, attr, None) == UNIQUE_VIOLATION_SQLSTATE:
                return True
        message = str(orig if orig is not None else error).lower()
        return any(marker in message for marker in UNIQUE_VIOLATION_MARKERS)

    @staticmethod
    def outcome_for(error: Exception) -> OperationOutcome:
        """Map an exception onto the outcome the caller branches on."""
        if isinstance(error, DuplicateRequestError):
            return OperationOutcome.DUPLICATE
        if isinstance(error, RatingRecordNotFoundError):
            return OperationOutcome.NOT_FOUND
        if isinstance(error, IneligibleRequestError):
            return OperationOutcome.INELIGIBLE
        if isinstance(error, RequestExpiredError):
            return OperationOutcome.EXPIRED
        if isinstance(error, RequestAlreadyRespondedError):
            return OperationOutcome.ALREADY_RESPONDED
        if isinstance(error, (RatingValidationError, IntegrityError)):
            return OperationOutcome.INVALID
        return OperationOutcome.TRANSIENT_FAILURE

    @staticmethod
    def user_message_for(error: Exception) -> str:
        if isinstance(error, RatingException):
            return error.user_message
        if isinstance(error, IntegrityError):
            return "This change conflicts with existing data."
        return TRANSIENT_MESSAGE

    @staticmethod
    def from_exception(result_cls: Type[ResultT], error: Exception, **fields) -> ResultT:
        """Build a failed result of ``result_cls`` from an exception."""
        return result_cls(
            outcome=ErrorResults.outcome_for(error),
            user_message=ErrorResults.user_message_for(error),
            **fields
        )

    @staticmethod
    def transient(result_cls: Type[ResultT], details: Optional[str] = None, **fields) -> ResultT:
        """Build a transient-failure result (timeouts, lost connections)."""
        return result_cls(
            outcome=OperationOutcome.TRANSIENT_FAILURE,
            user_message=details or TRANSIENT_MESSAGE,
            **fields
        )
