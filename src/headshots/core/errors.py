"""Error taxonomy for the Headshots service.

Every failure the service reports to a caller is one of these exceptions.
The core and store layers raise them; ``headshots.api.main`` maps each class
to an HTTP status code with a single exception handler.

=========================  ======  ==========================================
Exception                  Status  Raised when
=========================  ======  ==========================================
InvalidInputError          400     Prompt is blank or input is malformed
ConflictError              400     Image is already favourited
AuthenticationError        401     Bearer token missing or rejected
PermissionDeniedError      403     Caller does not own the image
NotFoundError              404     Image does not exist (or is not visible)
UpstreamUnavailableError   502     Replicate or Supabase failed
=========================  ======  ==========================================

Upstream failures are never retried here; the message of the underlying
error is preserved so callers can decide for themselves.
"""


class HeadshotsError(Exception):
    """Base class for all service errors.

    The message is intended to be shown to the API caller.
    """

    status_code: int = 500


class InvalidInputError(HeadshotsError):
    """Request input is missing or unusable (e.g. blank prompt)."""

    status_code = 400


class ConflictError(HeadshotsError):
    """The requested change already exists."""

    status_code = 400


class AuthenticationError(HeadshotsError):
    """No bearer token was supplied, or the data store rejected it."""

    status_code = 401


class PermissionDeniedError(HeadshotsError):
    """The authenticated user may not modify the target row."""

    status_code = 403


class NotFoundError(HeadshotsError):
    """The target row does not exist or is hidden by row-level security."""

    status_code = 404


class UpstreamUnavailableError(HeadshotsError):
    """An external service could not be reached or returned a fault.

    Args:
        message: Human-readable description, usually including the
            upstream message.
        service: Name of the failing service (``"replicate"`` or
            ``"supabase"``).
        code: Error code reported by the service (e.g. a Postgres SQLSTATE),
            when there is one.
    """

    status_code = 502

    def __init__(
        self, message: str, service: str | None = None, code: str | None = None
    ) -> None:
        super().__init__(message)
        self.service = service
        self.code = code
