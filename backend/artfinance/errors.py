"""
Error taxonomy for the registration / sign-in flow.

Each error carries a stable machine-readable code and the HTTP status the
API returns for it. Token lifecycle errors and precondition errors are
expected, user-facing outcomes; StorageError never exposes detail.
"""


class AuthFlowError(Exception):
    """Base class for errors surfaced to API clients."""

    code = "AUTH_FLOW_ERROR"
    status_code = 500
    default_message = "Something went wrong. Please try again."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidToken(AuthFlowError):
    """No pending request exists for the token."""
    code = "INVALID_TOKEN"
    status_code = 404
    default_message = "Invalid link. Please request a new one."


class TokenExpired(AuthFlowError):
    """The token was presented after its expiry time."""
    code = "TOKEN_EXPIRED"
    status_code = 410
    default_message = "This link has expired. Please request a new one."


class TokenAlreadyUsed(AuthFlowError):
    """The token was already consumed by an earlier verification."""
    code = "TOKEN_ALREADY_USED"
    status_code = 409
    default_message = "This link has already been used."


class UserExists(AuthFlowError):
    code = "USER_EXISTS"
    status_code = 409
    default_message = "A user with this email already exists. Please sign in instead."


class UserNotFound(AuthFlowError):
    code = "USER_NOT_FOUND"
    status_code = 404
    default_message = "No account found with this email. Please register first."


class ContinueUrlNotAllowed(AuthFlowError):
    code = "INVALID_CONTINUE_URL"
    status_code = 400
    default_message = "The continue URL is not allowed."


class InvalidSession(AuthFlowError):
    code = "INVALID_SESSION"
    status_code = 401
    default_message = "Invalid or expired session."


class StorageError(AuthFlowError):
    """Infrastructure failure. Logged server-side, reported generically."""
    code = "STORAGE_ERROR"
    status_code = 500
