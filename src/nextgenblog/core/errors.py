"""Error taxonomy shared by the stores, the auth gate and the HTTP layer."""


class BlogError(Exception):
    """Base class for errors that map onto an HTTP response."""

    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(BlogError):
    """A required field is missing or malformed."""

    status_code = 400


class Unauthorized(BlogError):
    """Missing, invalid or expired credential."""

    status_code = 401


class Forbidden(BlogError):
    """Authenticated identity is not on the allow-list."""

    status_code = 403


class NotFound(BlogError):
    """Unknown post or message identifier."""

    status_code = 404


class Conflict(BlogError):
    """Derived slug or filename already belongs to another post."""

    status_code = 409


class UpstreamFailure(BlogError):
    """Storage backend or OAuth provider is unreachable or erroring.

    The message is what the caller sees; the underlying cause is only
    logged.
    """

    status_code = 500
