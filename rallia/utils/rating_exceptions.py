"""
Custom exceptions for the rating certification engine with user-friendly messages.
"""

class RatingException(Exception):
    """Base exception for rating-related errors."""
    def __init__(self, message: str, user_message: str = None):
        super().__init__(message)
        self.user_message = user_message or message

class RatingRecordNotFoundError(RatingException):
    """Raised when a rating record or one of its prerequisites does not exist."""
    def __init__(self, entity: str, entity_id):
        super().__init__(
            f"{entity} '{entity_id}' not found",
            "No active rating was found for this sport."
        )
        self.entity = entity
        self.entity_id = entity_id

class RatingValidationError(RatingException):
    """Raised when input for a rating operation is invalid."""
    def __init__(self, reason: str):
        super().__init__(
            f"Invalid rating operation: {reason}",
            reason
        )

class DuplicateRequestError(RatingException):
    """Raised when an identical pending request already exists."""
    def __init__(self, request_type: str):
        super().__init__(
            f"Duplicate pending {request_type} request",
            "You have already sent a request to this player."
        )
        self.request_type = request_type

class IneligibleRequestError(RatingException):
    """Raised when a rating does not meet the level required to ask for references."""
    def __init__(self, rating_system_code: str, minimum_level: float = None):
        if minimum_level is not None:
            user_message = f"A {rating_system_code} rating of at least {minimum_level} is required to request references."
        else:
            user_message = "This rating cannot request references."
        super().__init__(
            f"Rating below request floor for {rating_system_code} (minimum {minimum_level})",
            user_message
        )
        self.rating_system_code = rating_system_code
        self.minimum_level = minimum_level

class RatingPersistenceError(RatingException):
    """Raised when the backing store fails or times out."""
    def __init__(self, operation: str, details: str = None):
        super().__init__(
            f"Database error during {operation}: {details}",
            "Something went wrong while saving. Please try again."
        )
        self.operation = operation

class RequestExpiredError(RatingException):
    """Raised when answering a request past its expiry."""
    def __init__(self, request_id):
        super().__init__(
            f"Request {request_id} has expired",
            "This request has expired."
        )
        self.request_id = request_id

class RequestAlreadyRespondedError(RatingException):
    """Raised when a request is no longer pending."""
    def __init__(self, request_id, status: str):
        super().__init__(
            f"Request {request_id} is already {status}",
            "This request has already been answered."
        )
        self.request_id = request_id
        self.status = status
