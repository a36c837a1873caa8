# store/errors.py


class BookReviewError(Exception):
    """
    Base class for every error the store layer reports to API callers.

    Each subclass carries the HTTP status code the API surface renders it
    with and a human-readable message that is returned to the client as
    ``{"message": ...}``.

    Args:
        message (str, optional): Client-facing message. Defaults to the
            class-level ``message``.
    """

    status_code = 500
    message = "Server error"

    def __init__(self, message=None):
        if message is not None:
            self.message = message
        super().__init__(self.message)


class ValidationError(BookReviewError):
    status_code = 400
    message = "Invalid request"


class InvalidRating(ValidationError):
    message = "Rating must be an integer between 1 and 5"


class DuplicateReview(BookReviewError):
    status_code = 400
    message = "You have already reviewed this book"


class Unauthenticated(BookReviewError):
    status_code = 401
    message = "No token, authorization denied"


class Forbidden(BookReviewError):
    status_code = 403
    message = "Access denied"


class NotFound(BookReviewError):
    status_code = 404
    message = "Not found"


class StorageError(BookReviewError):
    status_code = 500
    message = "Server error"
