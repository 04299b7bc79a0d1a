"""Service error kinds.

Messages are user-visible; never put stack traces or internal identifiers in them.
"""


class SearchServiceError(Exception):
    """Base service error with HTTP status code and public message."""

    status_code = 500
    default_message = "Search is temporarily unavailable."

    def __init__(self, message: str | None = None, status_code: int | None = None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> dict:
        return {"success": False, "error": self.message}


class InvalidInput(SearchServiceError):
    """Input failed structural validation."""

    status_code = 400
    default_message = "Invalid search request."


class Unauthorized(SearchServiceError):
    """History operation invoked without an identity."""

    status_code = 401
    default_message = "Authentication required."


class IndexUnavailable(SearchServiceError):
    status_code = 503
    default_message = "Search index unavailable."


class SpellingUnavailable(SearchServiceError):
    status_code = 503
    default_message = "Spelling suggestions unavailable."


class HistoryUnavailable(SearchServiceError):
    status_code = 503
    default_message = "Search history is temporarily unavailable."


class RequestSuperseded(SearchServiceError):
    """The request was canceled by a newer one from the same client."""

    status_code = 409
    default_message = "Superseded by a newer search."
