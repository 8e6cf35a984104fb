from datetime import datetime
from typing import Annotated, Literal, Union

from pydantic import BaseModel, EmailStr, Field

from educonnect.models.user import TwoFactorMethod, UserRole


# ── Request Bodies ────────────────────────────────────────────────────
class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)

    model_config = {
        "json_schema_extra": {
            "example": {
                "email": "jane@x.edu",
                "password": "YourPassword123",
            }
        }
    }


class RegisterRequest(BaseModel):
    """Open self-registration. The account starts as role=pending, unverified."""
    name: str = Field(..., min_length=1, max_length=150)
    email: EmailStr
    password: str = Field(..., min_length=6, max_length=128)


class RegistrationRequest(BaseModel):
    """Pre-account role request; the account is created only on approval."""
    name: str = Field(..., min_length=1, max_length=150)
    email: EmailStr
    password: str = Field(..., min_length=6, max_length=128)
    confirm_password: str = Field(..., min_length=1, max_length=128)
    requested_role: UserRole
    branch: str | None = None
    course: str | None = None
    program: str | None = None


class ProfileUpdateRequest(BaseModel):
    name: str | None = Field(None, max_length=150)
    email: EmailStr | None = None
    branch: str | None = None
    course: str | None = None


# ── Response Bodies ───────────────────────────────────────────────────
class UserInfo(BaseModel):
    """
    Safe user info sent to the frontend.
    password_hash and two-factor secrets are never included here.
    """
    id: int
    name: str
    email: str
    role: UserRole
    is_verified: bool
    branch: str | None = None
    program: str | None = None
    course: str | None = None
    admin_programs: list[str] = []
    two_factor_enabled: bool = False
    two_factor_method: TwoFactorMethod = TwoFactorMethod.NONE
    last_login_at: datetime | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class NoChallenge(BaseModel):
    """Login complete: a full session token is issued."""
    kind: Literal["no_challenge"] = "no_challenge"
    access_token: str
    token_type: str = "bearer"
    expires_in: int  # seconds, frontend uses this to know when token expires
    user: UserInfo


class ChallengePending(BaseModel):
    """
    Password accepted, second factor required. `pending_token` is only
    accepted by POST /auth/2fa/verify-login.
    """
    kind: Literal["challenge_pending"] = "challenge_pending"
    method: TwoFactorMethod
    masked_contact: str | None = None
    pending_token: str
    expires_in: int
    dev_code: str | None = None  # only outside production


LoginResponse = Annotated[Union[NoChallenge, ChallengePending], Field(discriminator="kind")]


class MessageResponse(BaseModel):
    detail: str
