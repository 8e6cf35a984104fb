import base64
import hashlib
import hmac
import io
import secrets
import struct
import time
from urllib.parse import quote, urlencode

import qrcode

TOTP_STEP_SECONDS = 30
TOTP_DIGITS = 6


def generate_secret() -> str:
    """Random 160-bit base32 secret, the size authenticator apps expect."""
    return base64.b32encode(secrets.token_bytes(20)).decode("ascii").rstrip("=")


def _decode_secret(secret: str) -> bytes | None:
    padded = secret.upper() + "=" * ((8 - len(secret) % 8) % 8)
    try:
        return base64.b32decode(padded, casefold=True)
    except (ValueError, TypeError):
        return None


def totp_at(secret: str, timestamp: float, *, step: int = TOTP_STEP_SECONDS, digits: int = TOTP_DIGITS) -> str:
    """RFC 6238 code (HMAC-SHA1) for the step containing `timestamp`."""
    key = _decode_secret(secret)
    if key is None:
        return ""
    counter = struct.pack(">Q", int(timestamp // step))
    digest = hmac.new(key, counter, hashlib.sha1).digest()
    offset = digest[-1] & 0x0F
    code_int = (struct.unpack(">I", digest[offset:offset + 4])[0] & 0x7FFFFFFF) % (10 ** digits)
    return str(code_int).zfill(digits)


def verify_totp(secret: str, code: str, *, at: float | None = None, window: int = 1, step: int = TOTP_STEP_SECONDS) -> bool:
    """
    Accepts the code for the current step or up to `window` steps before or
    after it (clock skew). Anything further away is rejected.
    """
    if not secret or not code or not code.isdigit() or len(code) != TOTP_DIGITS:
        return False
    now = time.time() if at is None else at
    for offset in range(-window, window + 1):
        generated = totp_at(secret, now + offset * step, step=step)
        if generated and hmac.compare_digest(generated, code):
            return True
    return False


def provisioning_uri(secret: str, account: str, issuer: str) -> str:
    """otpauth:// URI that authenticator apps import (usually shown as a QR code)."""
    label = quote(f"{issuer}:{account}")
    params = urlencode(
        {
            "secret": secret,
            "issuer": issuer,
            "algorithm": "SHA1",
            "digits": TOTP_DIGITS,
            "period": TOTP_STEP_SECONDS,
        },
        quote_via=quote,
    )
    return f"otpauth://totp/{label}?{params}"


def qr_data_uri(data: str) -> str:
    """PNG QR code as a data: URI the frontend can drop into an <img>."""
    qr = qrcode.QRCode(box_size=6, border=2)
    qr.add_data(data)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")

    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buf.getvalue()).decode("ascii")


# ── One-time numeric codes (SMS) ──────────────────────────────────────
def generate_numeric_code() -> str:
    # 6 digits, 100000-999999, never shorter
    return str(100000 + secrets.randbelow(900000))


def hash_code(code: str) -> str:
    # Store only hash in DB
    return hashlib.sha256(code.encode("utf-8")).hexdigest()


def constant_time_equals(a: str, b: str) -> bool:
    return hmac.compare_digest(a, b)


def mask_phone(phone: str) -> str:
    """
    ********4567
    """
    if len(phone) <= 4:
        return phone
    return "*" * (len(phone) - 4) + phone[-4:]
