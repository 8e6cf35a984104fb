"""
TOTP and one-time code helpers
"""
import base64
from urllib.parse import parse_qs, urlparse

from educonnect.core.totp import (
    generate_numeric_code,
    generate_secret,
    hash_code,
    mask_phone,
    provisioning_uri,
    totp_at,
    verify_totp,
)

# RFC 6238 appendix B seed for HMAC-SHA1
RFC_SECRET = base64.b32encode(b"12345678901234567890").decode("ascii")


class TestTotpAt:
    def test_rfc6238_vectors(self):
        # the RFC lists 8-digit codes; 6-digit codes are their last six digits
        assert totp_at(RFC_SECRET, 59) == "287082"
        assert totp_at(RFC_SECRET, 1111111109) == "081804"
        assert totp_at(RFC_SECRET, 1234567890) == "005924"
        assert totp_at(RFC_SECRET, 2000000000) == "279037"

    def test_same_step_same_code(self):
        assert totp_at(RFC_SECRET, 60) == totp_at(RFC_SECRET, 89)

    def test_unpadded_lowercase_secret(self):
        secret = generate_secret()
        assert "=" not in secret
        assert totp_at(secret.lower(), 1000) == totp_at(secret, 1000)

    def test_invalid_secret_yields_no_code(self):
        assert totp_at("not base32!!", 59) == ""


class TestVerifyTotp:
    def test_accepts_current_step(self):
        now = 1_700_000_000
        assert verify_totp(RFC_SECRET, totp_at(RFC_SECRET, now), at=now)

    def test_accepts_one_step_of_skew(self):
        now = 1_700_000_000
        assert verify_totp(RFC_SECRET, totp_at(RFC_SECRET, now - 30), at=now)
        assert verify_totp(RFC_SECRET, totp_at(RFC_SECRET, now + 30), at=now)

    def test_rejects_beyond_window(self):
        now = 1_700_000_000
        assert not verify_totp(RFC_SECRET, totp_at(RFC_SECRET, now - 90), at=now)
        assert not verify_totp(RFC_SECRET, totp_at(RFC_SECRET, now + 90), at=now)

    def test_rejects_malformed_codes(self):
        assert not verify_totp(RFC_SECRET, "", at=59)
        assert not verify_totp(RFC_SECRET, "28708", at=59)
        assert not verify_totp(RFC_SECRET, "28708a", at=59)
        assert not verify_totp("", "287082", at=59)


def test_provisioning_uri():
    uri = provisioning_uri(RFC_SECRET, "jane@x.edu", "EduConnect ERP")
    parsed = urlparse(uri)
    params = parse_qs(parsed.query)

    assert parsed.scheme == "otpauth"
    assert parsed.netloc == "totp"
    assert params["secret"] == [RFC_SECRET]
    assert params["issuer"] == ["EduConnect ERP"]
    assert params["digits"] == ["6"]
    assert params["period"] == ["30"]


def test_numeric_code_is_six_digits():
    for _ in range(200):
        code = generate_numeric_code()
        assert len(code) == 6
        assert code.isdigit()
        assert code[0] != "0"


def test_hash_code_is_stable_and_not_plaintext():
    assert hash_code("123456") == hash_code("123456")
    assert hash_code("123456") != hash_code("123457")
    assert "123456" not in hash_code("123456")


def test_mask_phone():
    assert mask_phone("+15551234567") == "********4567"
    assert mask_phone("4567") == "4567"
