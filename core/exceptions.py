"""
Custom Exception Classes for the Portfolio Live API.

Every error the service raises on purpose derives from
`PortfolioAPIException`, which carries a human-readable message, a stable
`error_code` the clients switch on, a `details` dictionary and the HTTP status
it maps to. Handlers raise these freely; the exception handler installed by
`core.middleware.install_error_handlers` turns them into JSON responses, so no
endpoint has to build error bodies by hand.

Taxonomy:
- `ValidationError` (400): a request field is missing or malformed.
- `AuthenticationError` (401, or 404 for `USER_NOT_FOUND`): credentials are
  absent, expired, invalid or point at an identity that no longer exists. The
  `kind` attribute tells "please log in" apart from "session expired".
- `AuthorizationError` (403): caller is authenticated but not allowed.
- `NotFoundError` (404): missing or unpublished portfolio, unknown user.
- `UpstreamError` (500): the external asset host rejected or failed an upload.
  Its message names the asset and is shown to clients in every environment.
- `DatabaseConnectionError` (500) and `WebSocketConnectionError` (500). Their
  reasons carry driver or socket text, so production responses replace them
  with a generic message.
"""

from typing import Optional, Dict, Any


class PortfolioAPIException(Exception):
    """Base exception class for Portfolio API"""

    status_code = 500

    # Whether a 5xx message and its details may reach clients in production
    client_safe = False

    def __init__(
        self,
        message: str,
        error_code: str = "PORTFOLIO_API_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(PortfolioAPIException):
    """Raised when input validation fails"""

    status_code = 400

    def __init__(self, field: str, reason: str, value: Any = None):
        details = {"field": field, "reason": reason}
        if value is not None:
            details["value"] = str(value)
        super().__init__(
            f"Validation failed for field '{field}': {reason}",
            "VALIDATION_ERROR",
            details,
        )
        self.field = field


class AuthenticationError(PortfolioAPIException):
    """Raised when authentication fails"""

    NO_TOKEN = "NO_TOKEN"
    TOKEN_EXPIRED = "TOKEN_EXPIRED"
    TOKEN_INVALID = "TOKEN_INVALID"
    USER_NOT_FOUND = "USER_NOT_FOUND"
    ACCOUNT_INACTIVE = "ACCOUNT_INACTIVE"
    INVALID_CREDENTIALS = "INVALID_CREDENTIALS"

    MESSAGES = {
        NO_TOKEN: "No token provided",
        TOKEN_EXPIRED: "Token expired",
        TOKEN_INVALID: "Invalid token",
        USER_NOT_FOUND: "User not found",
        ACCOUNT_INACTIVE: "Account is not active",
        INVALID_CREDENTIALS: "Invalid email or password",
    }

    def __init__(self, kind: str, reason: Optional[str] = None):
        self.kind = kind
        super().__init__(
            reason or self.MESSAGES.get(kind, "Authentication failed"),
            kind,
            {"kind": kind},
        )

    @property
    def status_code(self) -> int:
        return 404 if self.kind == self.USER_NOT_FOUND else 401


class TokenExpiredError(AuthenticationError):
    """Token signature is valid but its expiry has passed"""

    def __init__(self):
        super().__init__(AuthenticationError.TOKEN_EXPIRED)


class TokenInvalidError(AuthenticationError):
    """Token is malformed, forged or issued for another purpose"""

    def __init__(self, reason: Optional[str] = None):
        super().__init__(AuthenticationError.TOKEN_INVALID, reason)


class AuthorizationError(PortfolioAPIException):
    """Raised when an authenticated caller lacks permission"""

    status_code = 403

    def __init__(self, action: str):
        super().__init__(
            f"Not allowed to {action}",
            "FORBIDDEN",
            {"action": action},
        )


class NotFoundError(PortfolioAPIException):
    """Raised when a portfolio or user cannot be found"""

    status_code = 404

    def __init__(self, resource: str, identifier: str):
        super().__init__(
            f"{resource.capitalize()} not found: {identifier}",
            f"{resource.upper()}_NOT_FOUND",
            {"resource": resource, "identifier": identifier},
        )


class UpstreamError(PortfolioAPIException):
    """Raised when the external asset host fails an upload"""

    status_code = 500
    client_safe = True

    def __init__(self, asset: str, reason: str):
        super().__init__(
            f"Upload of {asset} failed: {reason}",
            "UPLOAD_FAILED",
            {"asset": asset, "reason": reason},
        )
        self.asset = asset


class DatabaseConnectionError(PortfolioAPIException):
    """Raised when database operations fail"""

    status_code = 500

    def __init__(self, operation: str, reason: str):
        super().__init__(
            f"Database operation '{operation}' failed: {reason}",
            "DATABASE_ERROR",
            {"operation": operation, "reason": reason},
        )


class WebSocketConnectionError(PortfolioAPIException):
    """Raised when WebSocket operations fail"""

    status_code = 500

    def __init__(self, connection_id: str, reason: str):
        super().__init__(
            f"WebSocket error for connection {connection_id}: {reason}",
            "WEBSOCKET_ERROR",
            {"connection_id": connection_id, "reason": reason},
        )

