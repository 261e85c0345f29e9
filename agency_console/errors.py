"""Centralised error handling and custom exceptions.

The console distinguishes four families of failure:

* ``TransientIOError`` - network blips and timeouts. The gateway retries
  these and only escalates them once its attempts are exhausted.
* ``PermanentRemoteError`` - validation, permission, not-found and
  conflict failures reported by the backing store. Never retried.
* ``LocalInvariantViolation`` - an operation the console rejects before
  any remote call is made (e.g. a second response to a review).
* ``PartialCollectionFailure`` - one dependent collection failed to load
  while the others succeeded. It is recorded in the console snapshot
  rather than raised to the HTTP layer.

Every exception knows how to serialise itself into a JSON error
response; the Flask app registers the handlers during application
factory initialisation.
"""
from __future__ import annotations

from flask import jsonify


class ConsoleError(Exception):
    """Base class for every error the console reports to a caller."""

    code = "CONSOLE_ERROR"
    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def payload(self) -> dict:
        return {"code": self.code, "message": self.message}

    def to_response(self, status_code: int | None = None):
        payload = self.payload()
        payload["message"] = describe_error(self)
        return jsonify({"error": payload}), status_code or self.status_code


class TransientIOError(ConsoleError):
    """Raised when the backing store is temporarily unreachable."""

    code = "SERVICE_UNAVAILABLE"
    status_code = 503


class PermanentRemoteError(ConsoleError):
    """Raised when the backing store rejects an operation outright."""

    code = "REMOTE_ERROR"
    status_code = 400


class ValidationError(PermanentRemoteError):
    """Raised when input validation fails."""

    code = "VALIDATION_ERROR"
    status_code = 400

    def __init__(self, message: str, fields: dict | None = None) -> None:
        super().__init__(message)
        self.fields = fields or {}

    def payload(self) -> dict:
        payload = super().payload()
        payload["fields"] = self.fields
        return payload


class PermissionDeniedError(PermanentRemoteError):
    """Raised when the current actor may not perform an operation."""

    code = "FORBIDDEN"
    status_code = 403


class NotFoundError(PermanentRemoteError):
    """Raised when a requested resource cannot be found."""

    code = "NOT_FOUND"
    status_code = 404


class ConflictError(PermanentRemoteError):
    """Raised when a uniqueness or resource conflict occurs."""

    code = "CONFLICT"
    status_code = 409


class LocalInvariantViolation(ConsoleError):
    """Raised when an operation would break an invariant of the aggregate."""

    code = "INVARIANT_VIOLATION"
    status_code = 409


class ResponseAlreadyExistsError(LocalInvariantViolation):
    """Raised when a review already carries an administrator response."""

    code = "RESPONSE_EXISTS"

    def __init__(self, review_id: int) -> None:
        super().__init__(f"Review {review_id} already has a response.")
        self.review_id = review_id


class PartialCollectionFailure(ConsoleError):
    """A single dependent collection failed to load.

    Instances are stored per collection in the console snapshot so the
    rest of the aggregate stays usable.
    """

    code = "COLLECTION_UNAVAILABLE"
    status_code = 502

    def __init__(self, collection: str, message: str, cause: ConsoleError | None = None) -> None:
        super().__init__(message)
        self.collection = collection
        self.cause = cause

    def payload(self) -> dict:
        payload = super().payload()
        payload["collection"] = self.collection
        return payload


class LoadTimeoutError(PartialCollectionFailure):
    """A dependent collection did not resolve before the load timeout."""

    code = "LOAD_TIMEOUT"

    def __init__(self, collection: str) -> None:
        super().__init__(collection, f"Loading {collection} timed out.")


class CoverPhotoTransitionError(ConsoleError):
    """The cover flag was cleared but could not be set on the new photo.

    The agency is left without a cover photo until the operation is
    retried. ``refresh`` carries the photo list as it stands remotely.
    """

    code = "COVER_PHOTO_INCOMPLETE"
    status_code = 502

    def __init__(self, photo_id: int, cause: ConsoleError, refresh=None) -> None:
        super().__init__(
            f"Cover photo cleared but photo {photo_id} could not be set as cover: "
            f"{cause.message} Retry to restore a cover photo."
        )
        self.photo_id = photo_id
        self.cause = cause
        self.refresh = refresh


_REASON_MESSAGES = {
    ValidationError: "The submitted data is invalid.",
    PermissionDeniedError: "You don't have permission to perform this action.",
    NotFoundError: "No data found.",
    ConflictError: "This record already exists.",
}


def describe_error(error: BaseException) -> str:
    """Return a user-facing message for ``error``.

    Console errors with a specific message keep it, except transient
    ones whose message names the underlying exception; anything else is
    mapped onto a generic sentence so internal details never leak into
    the interface.
    """
    if isinstance(error, TransientIOError):
        return "Service is temporarily unavailable. Please try again in a few minutes."
    if isinstance(error, ConsoleError):
        if error.message:
            return error.message
        for error_type, message in _REASON_MESSAGES.items():
            if isinstance(error, error_type):
                return message
    return "An unexpected error occurred. Please try again later."


def register_error_handlers(app) -> None:
    """Register custom error handlers on the given Flask app."""
    @app.errorhandler(ConsoleError)
    def handle_console_error(err: ConsoleError):
        if err.status_code >= 500:
            app.logger.warning("%s: %s", err.code, err.message)
        return err.to_response()
