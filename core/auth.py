"""
Core Authentication and Authorization System.

This module implements the authenticated-session half of the Portfolio Live
API: issuing and verifying signed session tokens, hashing passwords, pulling a
token out of an inbound HTTP request or WebSocket handshake and resolving it to
a live user record.

Key Components:
- `PasswordManager`: bcrypt hashing with a per-record salt. A fixed dummy hash
  lets login spend the same bcrypt time whether or not the email exists.
- `SessionTokenCodec`: issues and verifies HS256 JWTs. Two purposes exist:
  `session` tokens (7 days) and `password_reset` tokens (1 hour). `verify`
  takes the expected purpose, so a session token can never be replayed as a
  reset credential and vice versa. Failures are classified: an expired token
  raises `TokenExpiredError`; a forged, malformed or wrong-purpose token
  raises `TokenInvalidError`. The signature is checked before expiry, so an
  expired token with a bad signature is reported as invalid.
- `CookieTokenExtractor` / `HeaderTokenExtractor`: credential extraction
  strategies. `Authenticator` tries them in order and the first non-empty
  result wins. The default order is cookie, then `Authorization` header (raw
  token or `Bearer <token>`), which makes a present cookie authoritative even
  when a header is also sent.
- `Authenticator`: the request gate. Used as a FastAPI dependency it verifies
  the token, performs a fresh Credential Store lookup (never the identity
  cache, so suspensions take effect immediately), rejects inactive accounts
  and attaches the non-secret user record to `request.state.user`. The
  `verify_only` path stops after decoding and serves the cache-assisted
  "who am I" read.
- `require_admin`: the single-administrator check used by admin-only routes.

Failure kinds and their HTTP mapping live on `core.exceptions.AuthenticationError`.
"""

import secrets
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Protocol

import bcrypt
import jwt
from starlette.requests import HTTPConnection

from core.exceptions import (
    AuthenticationError,
    AuthorizationError,
    TokenExpiredError,
    TokenInvalidError,
)
from core.logging_config import get_logger
from core.models import User, UserPublic

logger = get_logger(__name__)

SESSION = "session"
PASSWORD_RESET = "password_reset"

SESSION_LIFETIME = timedelta(days=7)
RESET_LIFETIME = timedelta(hours=1)


class PasswordManager:
    """Password hashing and verification"""

    _dummy_hash: Optional[str] = None

    @staticmethod
    def hash_password(password: str) -> str:
        """Hash password using bcrypt"""
        salt = bcrypt.gensalt()
        hashed = bcrypt.hashpw(password.encode("utf-8"), salt)
        return hashed.decode("utf-8")

    @staticmethod
    def verify_password(password: str, hashed: str) -> bool:
        """Verify password against hash"""
        try:
            return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))
        except ValueError as e:
            logger.error(f"Password verification error: {e}")
            return False

    @classmethod
    def dummy_hash(cls) -> str:
        """Hash compared against when the account does not exist"""
        if cls._dummy_hash is None:
            cls._dummy_hash = cls.hash_password(secrets.token_urlsafe(16))
        return cls._dummy_hash


class SessionTokenCodec:
    """JWT issue and verification for session and password-reset tokens"""

    def __init__(
        self,
        secret_key: Optional[str] = None,
        algorithm: str = "HS256",
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.secret_key = secret_key or self._generate_secret_key()
        self.algorithm = algorithm
        self.clock = clock or datetime.utcnow

    def _generate_secret_key(self) -> str:
        """Generate a secure secret key"""
        key = secrets.token_urlsafe(32)
        logger.warning(
            "Generated new JWT secret key. This should be set via JWT_SECRET environment variable."
        )
        return key

    def _issue(self, user: User, token_type: str, lifetime: timedelta) -> str:
        issued_at = self.clock()
        payload = {
            "userId": user.id,
            "username": user.username,
            "type": token_type,
            "iat": issued_at,
            "exp": issued_at + lifetime,
        }
        return jwt.encode(payload, self.secret_key, algorithm=self.algorithm)

    def issue_session(self, user: User) -> str:
        """Create a 7-day session token"""
        token = self._issue(user, SESSION, SESSION_LIFETIME)
        logger.info(f"Issued session token for user {user.username}")
        return token

    def issue_password_reset(self, user: User) -> str:
        """Create a 1-hour password-reset token"""
        token = self._issue(user, PASSWORD_RESET, RESET_LIFETIME)
        logger.info(f"Issued password reset token for user {user.username}")
        return token

    def verify(self, token: str, expected_type: str = SESSION) -> Dict[str, Any]:
        """Verify and decode a token of the expected purpose"""
        try:
            payload = jwt.decode(
                token,
                self.secret_key,
                algorithms=[self.algorithm],
                options={"require": ["exp", "iat"]},
            )
        except jwt.ExpiredSignatureError:
            raise TokenExpiredError()
        except jwt.InvalidTokenError as e:
            raise TokenInvalidError(f"Invalid token: {str(e)}")

        if payload.get("type") != expected_type:
            raise TokenInvalidError(f"Invalid token type. Expected {expected_type}")

        if not payload.get("userId"):
            raise TokenInvalidError("Token does not identify a user")

        return payload


class TokenExtractor(Protocol):
    source: str

    def extract(self, connection: HTTPConnection) -> Optional[str]: ...


class CookieTokenExtractor:
    """Reads the session token from the session cookie"""

    source = "cookie"

    def __init__(self, cookie_name: str = "token"):
        self.cookie_name = cookie_name

    def extract(self, connection: HTTPConnection) -> Optional[str]:
        token = connection.cookies.get(self.cookie_name)
        if not token:
            return None
        return token.strip() or None


class HeaderTokenExtractor:
    """Reads the token from `Authorization: <token>` or `Authorization: Bearer <token>`"""

    source = "header"

    def __init__(self, header_name: str = "Authorization"):
        self.header_name = header_name

    def extract(self, connection: HTTPConnection) -> Optional[str]:
        value = connection.headers.get(self.header_name)
        if not value:
            return None

        value = value.strip()
        if value.lower().startswith("bearer "):
            value = value[7:].strip()

        return value or None


def default_extractors(cookie_name: str = "token") -> List[TokenExtractor]:
    return [CookieTokenExtractor(cookie_name), HeaderTokenExtractor()]


class CredentialLookup(Protocol):
    async def get_by_id(self, user_id: str) -> Optional[User]: ...


class Authenticator:
    """Resolves the credentials on a request or handshake to a live user"""

    def __init__(
        self,
        codec: SessionTokenCodec,
        credential_store: CredentialLookup,
        extractors: Optional[List[TokenExtractor]] = None,
    ):
        self.codec = codec
        self.credential_store = credential_store
        self.extractors = extractors if extractors is not None else default_extractors()

    def extract_token(self, connection: HTTPConnection) -> Optional[str]:
        """First non-empty credential in extractor order"""
        for extractor in self.extractors:
            token = extractor.extract(connection)
            if token:
                logger.debug(f"Credential found in {extractor.source}")
                return token
        return None

    def verify_only(self, connection: HTTPConnection) -> Dict[str, Any]:
        """Extract and decode the session token without a store lookup"""
        token = self.extract_token(connection)
        if not token:
            raise AuthenticationError(AuthenticationError.NO_TOKEN)
        return self.codec.verify(token, SESSION)

    async def authenticate(self, connection: HTTPConnection) -> User:
        """Full check: token, fresh store lookup and account status"""
        payload = self.verify_only(connection)

        user = await self.credential_store.get_by_id(payload["userId"])
        if user is None:
            logger.warning(f"Token references missing user {payload['userId']}")
            raise AuthenticationError(AuthenticationError.USER_NOT_FOUND)

        if user.status != "active":
            logger.warning(f"Rejected {user.status} account {user.username}")
            raise AuthenticationError(AuthenticationError.ACCOUNT_INACTIVE)

        return user

    async def __call__(self, connection: HTTPConnection) -> UserPublic:
        user = await self.authenticate(connection)
        public = UserPublic.from_user(user)
        connection.state.user = public
        return public


def require_admin(user: UserPublic, admin_email: str) -> UserPublic:
    """Reject everyone except the configured administrator"""
    if user.email.lower() != admin_email.lower():
        logger.warning(f"Non-admin {user.username} attempted an admin operation")
        raise AuthorizationError("perform admin operations")
    return user
