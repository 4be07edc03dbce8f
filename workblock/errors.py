"""Calendar integration error taxonomy.

Every error carries a stable ``code`` (used in API payloads and redirect
query strings) and a user-facing ``message``. Raw upstream error text goes
to the logs only, never into ``message``.
"""


class CalendarError(Exception):
    """Base class for calendar integration errors."""

    code = "calendar_error"
    status_code = 500

    def __init__(self, message: str, *, details: dict | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class AuthError(CalendarError):
    """Invalid or expired OAuth state, or an unusable token."""

    code = "auth_error"
    status_code = 401


class NotFoundError(CalendarError):
    """A connection, event, lesson or organization could not be found."""

    code = "not_found"
    status_code = 404


class AccessDenied(CalendarError):
    """Cross-organization access or an action by a non-owner."""

    code = "access_denied"
    status_code = 403


class ProviderError(CalendarError):
    """Upstream provider failure: HTTP error, rate limit, network fault, timeout."""

    code = "provider_error"
    status_code = 502


class ValidationError(CalendarError):
    """Malformed request (resolution, settings patch, slot query)."""

    code = "validation_error"
    status_code = 422


class ConflictAlreadyResolved(CalendarError):
    """The work event already reached a terminal resolution state."""

    code = "conflict_already_resolved"
    status_code = 409


class SyncInProgress(CalendarError):
    """Another sync for the same connection holds the lease."""

    code = "sync_in_progress"
    status_code = 409


RECONNECT_MESSAGE = "Your calendar authorization has expired. Please reconnect your calendar."
PROVIDER_UNAVAILABLE_MESSAGE = (
    "Your calendar provider is not responding right now. Please try again in a few minutes."
)
