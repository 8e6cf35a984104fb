"""
Password hashing and token classes
"""
from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt

from educonnect.core.config import settings
from educonnect.core.errors import InvalidToken
from educonnect.core.security import (
    create_access_token,
    create_pending_2fa_token,
    decode_access_token,
    decode_pending_2fa_token,
    hash_password,
    verify_password,
)
from educonnect.models.user import User, UserRole


def _user(**overrides) -> User:
    fields = {"id": 7, "name": "Jane", "email": "jane@x.edu", "role": UserRole.FACULTY}
    fields.update(overrides)
    return User(**fields)


class TestPasswords:
    def test_hash_and_verify(self):
        hashed = hash_password("s3cret-pass")
        assert hashed != "s3cret-pass"
        assert verify_password("s3cret-pass", hashed)
        assert not verify_password("wrong-pass", hashed)

    def test_same_password_hashes_differently(self):
        assert hash_password("abc123") != hash_password("abc123")

    @pytest.mark.parametrize("bad_hash", [None, "", "not-a-bcrypt-hash"])
    def test_missing_or_malformed_hash_never_verifies(self, bad_hash):
        assert verify_password("anything", bad_hash) is False


class TestTokens:
    def test_access_token_round_trip(self):
        payload = decode_access_token(create_access_token(_user()))
        assert payload["sub"] == "7"
        assert payload["email"] == "jane@x.edu"
        assert payload["role"] == "faculty"
        assert payload["type"] == "access"

    def test_pending_token_is_not_an_access_token(self):
        token = create_pending_2fa_token(_user())
        with pytest.raises(InvalidToken):
            decode_access_token(token)
        assert decode_pending_2fa_token(token)["sub"] == "7"

    def test_access_token_is_not_a_pending_token(self):
        with pytest.raises(InvalidToken):
            decode_pending_2fa_token(create_access_token(_user()))

    def test_expired_token_rejected(self):
        past = datetime.now(timezone.utc) - timedelta(minutes=10)
        token = jwt.encode(
            {"sub": "7", "type": "access", "iat": past, "exp": past + timedelta(minutes=1)},
            settings.SECRET_KEY,
            algorithm=settings.ALGORITHM,
        )
        with pytest.raises(InvalidToken):
            decode_access_token(token)

    def test_tampered_token_rejected(self):
        token = create_access_token(_user())
        header, body, signature = token.split(".")
        flipped = ("A" if signature[0] != "A" else "B") + signature[1:]
        with pytest.raises(InvalidToken):
            decode_access_token(".".join([header, body, flipped]))

    def test_wrong_secret_rejected(self):
        token = jwt.encode({"sub": "7", "type": "access"}, "another-secret", algorithm="HS256")
        with pytest.raises(InvalidToken):
            decode_access_token(token)

    def test_untyped_token_rejected(self):
        token = jwt.encode({"sub": "7"}, settings.SECRET_KEY, algorithm=settings.ALGORITHM)
        with pytest.raises(InvalidToken):
            decode_access_token(token)
