"""
Unit tests for SessionTokenCodec and PasswordManager

Covers token purposes, expiry classification and password hashing.
"""
import pytest
import jwt
from datetime import datetime, timedelta

from core.auth import (
    PASSWORD_RESET,
    SESSION,
    PasswordManager,
    SessionTokenCodec,
)
from core.exceptions import AuthenticationError, TokenExpiredError, TokenInvalidError
from core.models import User

SECRET = "unit-test-secret"


def make_user(**overrides) -> User:
    fields = {
        "id": "user-1",
        "username": "alice",
        "email": "alice@example.com",
        "password_hash": "not-a-real-hash",
    }
    fields.update(overrides)
    return User(**fields)


class TestSessionTokenCodec:
    """Test token issue and verification"""

    @pytest.fixture
    def codec(self):
        return SessionTokenCodec(SECRET)

    @pytest.fixture
    def user(self):
        return make_user()

    def test_session_token_round_trip(self, codec, user):
        """A fresh session token verifies and identifies the user"""
        payload = codec.verify(codec.issue_session(user), SESSION)

        assert payload["userId"] == "user-1"
        assert payload["username"] == "alice"
        assert payload["type"] == SESSION

    def test_session_lifetime_is_seven_days(self, codec, user):
        payload = codec.verify(codec.issue_session(user))
        assert payload["exp"] - payload["iat"] == int(timedelta(days=7).total_seconds())

    def test_reset_lifetime_is_one_hour(self, codec, user):
        payload = codec.verify(codec.issue_password_reset(user), PASSWORD_RESET)
        assert payload["exp"] - payload["iat"] == 3600

    def test_expired_token_is_classified_expired(self, user):
        """A genuine token past its expiry raises TokenExpiredError"""
        issued_long_ago = SessionTokenCodec(
            SECRET, clock=lambda: datetime.utcnow() - timedelta(days=8)
        )
        token = issued_long_ago.issue_session(user)

        with pytest.raises(TokenExpiredError) as exc_info:
            SessionTokenCodec(SECRET).verify(token)

        assert exc_info.value.error_code == AuthenticationError.TOKEN_EXPIRED
        assert exc_info.value.status_code == 401

    def test_expired_forged_token_is_classified_invalid(self, user):
        """Signature is checked before expiry"""
        forger = SessionTokenCodec(
            "another-secret", clock=lambda: datetime.utcnow() - timedelta(days=8)
        )
        token = forger.issue_session(user)

        with pytest.raises(TokenInvalidError):
            SessionTokenCodec(SECRET).verify(token)

    def test_wrong_secret_is_invalid(self, codec, user):
        token = SessionTokenCodec("another-secret").issue_session(user)

        with pytest.raises(TokenInvalidError) as exc_info:
            codec.verify(token)

        assert exc_info.value.error_code == AuthenticationError.TOKEN_INVALID

    def test_malformed_token_is_invalid(self, codec):
        with pytest.raises(TokenInvalidError):
            codec.verify("not.a.jwt")

    def test_reset_token_rejected_as_session(self, codec, user):
        """A password reset token can never act as a session"""
        with pytest.raises(TokenInvalidError):
            codec.verify(codec.issue_password_reset(user), SESSION)

    def test_session_token_rejected_as_reset(self, codec, user):
        with pytest.raises(TokenInvalidError):
            codec.verify(codec.issue_session(user), PASSWORD_RESET)

    def test_token_without_user_id_is_invalid(self, codec):
        now = datetime.utcnow()
        token = jwt.encode(
            {"type": SESSION, "iat": now, "exp": now + timedelta(hours=1)},
            SECRET,
            algorithm="HS256",
        )

        with pytest.raises(TokenInvalidError):
            codec.verify(token)

    def test_token_without_expiry_is_invalid(self, codec):
        token = jwt.encode(
            {"userId": "user-1", "type": SESSION, "iat": datetime.utcnow()},
            SECRET,
            algorithm="HS256",
        )

        with pytest.raises(TokenInvalidError):
            codec.verify(token)

    def test_missing_secret_generates_one(self):
        codec = SessionTokenCodec()
        assert codec.secret_key
        assert codec.secret_key != SessionTokenCodec().secret_key


class TestPasswordManager:
    """Test bcrypt hashing"""

    def test_hash_and_verify(self):
        hashed = PasswordManager.hash_password("correct horse")

        assert hashed != "correct horse"
        assert PasswordManager.verify_password("correct horse", hashed)
        assert not PasswordManager.verify_password("wrong horse", hashed)

    def test_hashes_are_salted(self):
        assert PasswordManager.hash_password("same") != PasswordManager.hash_password("same")

    def test_malformed_hash_does_not_verify(self):
        assert PasswordManager.verify_password("anything", "not-a-bcrypt-hash") is False

    def test_dummy_hash_is_stable_and_never_matches_blank(self):
        dummy = PasswordManager.dummy_hash()

        assert dummy == PasswordManager.dummy_hash()
        assert not PasswordManager.verify_password("", dummy)
