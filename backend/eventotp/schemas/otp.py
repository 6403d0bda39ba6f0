from typing import Optional

from pydantic import BaseModel, EmailStr

from eventotp.core.errors import RejectReason


class SendOTPSubmit(BaseModel):
    email: EmailStr
    otp: str  # 6-digit code (digits only, validated in endpoint)


class SendOTPResponse(BaseModel):
    success: bool
    message: Optional[str] = None
    error: Optional[str] = None


class RequestOTPSubmit(BaseModel):
    email: EmailStr


class RequestOTPResponse(BaseModel):
    success: bool
    message: Optional[str] = None
    error: Optional[str] = None
    expires_in_seconds: Optional[int] = None
    resend_after_seconds: Optional[int] = None


class VerifyOTPSubmit(BaseModel):
    email: EmailStr
    code: str


class VerifyOTPResponse(BaseModel):
    verified: bool
    reason: Optional[RejectReason] = None
    message: str = "Email verified. You can continue."
    attempts_remaining: Optional[int] = None


class ErrorResponse(BaseModel):
    detail: str
