import pytest

from core.exceptions import (
    AuthenticationError,
    AuthorizationError,
    DatabaseConnectionError,
    NotFoundError,
    PortfolioAPIException,
    TokenExpiredError,
    TokenInvalidError,
    UpstreamError,
    ValidationError,
    WebSocketConnectionError,
)


class TestCustomExceptions:
    """Test custom exception classes."""

    def test_base_exception_defaults(self):
        error = PortfolioAPIException("Something broke")

        assert error.message == "Something broke"
        assert error.error_code == "PORTFOLIO_API_ERROR"
        assert error.details == {}
        assert error.status_code == 500
        assert str(error) == "Something broke"

    def test_validation_error(self):
        error = ValidationError("theme", "Theme must be one of: light", "neon")

        assert error.status_code == 400
        assert error.error_code == "VALIDATION_ERROR"
        assert error.field == "theme"
        assert error.details == {
            "field": "theme",
            "reason": "Theme must be one of: light",
            "value": "neon",
        }
        assert "theme" in error.message

    @pytest.mark.parametrize(
        "kind,status",
        [
            (AuthenticationError.NO_TOKEN, 401),
            (AuthenticationError.TOKEN_EXPIRED, 401),
            (AuthenticationError.TOKEN_INVALID, 401),
            (AuthenticationError.ACCOUNT_INACTIVE, 401),
            (AuthenticationError.INVALID_CREDENTIALS, 401),
            (AuthenticationError.USER_NOT_FOUND, 404),
        ],
    )
    def test_authentication_error_status_by_kind(self, kind, status):
        error = AuthenticationError(kind)

        assert error.status_code == status
        assert error.error_code == kind
        assert error.details == {"kind": kind}
        assert error.message == AuthenticationError.MESSAGES[kind]

    def test_token_errors_are_authentication_errors(self):
        assert isinstance(TokenExpiredError(), AuthenticationError)
        assert TokenExpiredError().kind == AuthenticationError.TOKEN_EXPIRED
        assert TokenInvalidError("bad signature").message == "bad signature"
        assert TokenInvalidError().message == "Invalid token"

    def test_authorization_error(self):
        error = AuthorizationError("perform admin operations")

        assert error.status_code == 403
        assert error.error_code == "FORBIDDEN"

    def test_not_found_error(self):
        error = NotFoundError("portfolio", "carol")

        assert error.status_code == 404
        assert error.error_code == "PORTFOLIO_NOT_FOUND"
        assert error.message == "Portfolio not found: carol"

    def test_upstream_error(self):
        error = UpstreamError("resumeFile", "timeout")

        assert error.status_code == 500
        assert error.error_code == "UPLOAD_FAILED"
        assert error.asset == "resumeFile"
        assert error.client_safe is True

    def test_internal_errors_are_not_client_safe(self):
        assert DatabaseConnectionError("get_user", "locked").client_safe is False
        assert WebSocketConnectionError("c-1", "gone").client_safe is False
        assert PortfolioAPIException("boom").client_safe is False

    def test_database_and_websocket_errors(self):
        assert DatabaseConnectionError("get_user", "locked").error_code == "DATABASE_ERROR"
        ws_error = WebSocketConnectionError("c-1", "gone")
        assert ws_error.error_code == "WEBSOCKET_ERROR"
        assert ws_error.details["connection_id"] == "c-1"
