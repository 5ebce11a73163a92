# workfinder/schemas/auth/telegram.py
from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any


class SendCodeRequest(BaseModel):
    phone: str = Field(..., min_length=5, max_length=32, description="Phone number, any common format")
    userId: Optional[str] = Field(None, description="Id of the profile starting the login, if known")
    sessionId: Optional[str] = Field(None, description="Client session id, stored with the request")


class SendCodeResponse(BaseModel):
    success: bool
    requestId: str
    expiresIn: int
    sent: bool
    reused: bool = False
    canResend: bool = False
    resendAfter: int = 0
    message: Optional[str] = None
    error: Optional[str] = None
    code: Optional[str] = None
    helpSteps: List[str] = []


class VerifyCodeRequest(BaseModel):
    requestId: str = Field(..., description="requestId returned by send-code")
    code: str = Field(..., min_length=1, max_length=16)
    phone: Optional[str] = Field(None, max_length=32)


class SessionInfo(BaseModel):
    sessionId: str
    accessToken: str
    refreshToken: str
    tokenType: str = "bearer"
    expiresIn: int


class VerifyCodeResponse(BaseModel):
    success: bool = True
    userId: str
    isNewUser: bool
    phone: str
    fullName: Optional[str] = None
    telegramUserId: Optional[int] = None
    session: SessionInfo
    redirectTo: str


class VerificationStatusResponse(BaseModel):
    success: bool = True
    data: Dict[str, Any]
