from typing import Literal

from pydantic import BaseModel, Field


class TwoFactorSetupRequest(BaseModel):
    method: Literal["totp", "sms"]
    phone: str | None = None

    model_config = {
        "json_schema_extra": {
            "example": {"method": "sms", "phone": "+15551234567"}
        }
    }


class TwoFactorSetupResponse(BaseModel):
    method: Literal["totp", "sms"]
    # totp
    secret: str | None = None
    otpauth_uri: str | None = None
    qr_code: str | None = None  # data:image/png;base64,...
    # sms
    masked_phone: str | None = None
    expires_in: int | None = None
    dev_code: str | None = None  # only outside production
    detail: str


class TwoFactorCodeRequest(BaseModel):
    code: str = Field(..., min_length=6, max_length=6, pattern=r"^\d{6}$")


class TwoFactorConfirmRequest(TwoFactorCodeRequest):
    method: Literal["totp", "sms"]


class TwoFactorLoginRequest(TwoFactorCodeRequest):
    pending_token: str = Field(..., min_length=1)


class TwoFactorResendResponse(BaseModel):
    masked_phone: str
    expires_in: int
    dev_code: str | None = None
    detail: str


class TwoFactorStatusResponse(BaseModel):
    enabled: bool
    method: Literal["none", "totp", "sms"]
    detail: str
