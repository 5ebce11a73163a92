import logging

from fastapi import APIRouter, Depends, Query, Response

from ..application.services.otp_service import ClientInfo, IssueOutcome, OTPService
from ..core.config import settings
from ..schemas.auth.telegram import (
    SendCodeRequest,
    SendCodeResponse,
    SessionInfo,
    VerificationStatusResponse,
    VerifyCodeRequest,
    VerifyCodeResponse,
)
from .deps import get_client_info, get_otp_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth/telegram", tags=["Telegram Auth"])


def _issue_response(outcome: IssueOutcome) -> SendCodeResponse:
    if outcome.sent:
        message = "Code sent to Telegram"
    elif outcome.reused:
        message = "A code was already issued for this phone"
    else:
        message = None
    return SendCodeResponse(
        success=outcome.sent or outcome.reused,
        requestId=outcome.request_id,
        expiresIn=outcome.expires_in,
        sent=outcome.sent,
        reused=outcome.reused,
        canResend=outcome.can_resend,
        resendAfter=outcome.resend_after,
        message=message,
        error=outcome.error,
        code=outcome.error_code,
        helpSteps=outcome.help_steps,
    )


@router.post("/send-code", response_model=SendCodeResponse)
async def send_code(
    body: SendCodeRequest,
    client: ClientInfo = Depends(get_client_info),
    otp: OTPService = Depends(get_otp_service),
):
    """Issue a login code and deliver it through the Telegram bot.

    Delivery failures still return the ``requestId``: the code stays
    redeemable and the response carries the failure ``code`` and help steps.
    """
    outcome = await otp.request_code(body.phone, user_id=body.userId, session_id=body.sessionId, client=client)
    return _issue_response(outcome)


@router.get("/send-code", response_model=VerificationStatusResponse)
def verification_status(
    requestId: str = Query(..., description="requestId returned by send-code"),
    otp: OTPService = Depends(get_otp_service),
):
    return VerificationStatusResponse(data=otp.get_status(requestId))


@router.post("/resend/{request_id}", response_model=SendCodeResponse)
async def resend_code(
    request_id: str,
    client: ClientInfo = Depends(get_client_info),
    otp: OTPService = Depends(get_otp_service),
):
    outcome = await otp.resend_code(request_id, client=client)
    return _issue_response(outcome)


@router.post("/verify", response_model=VerifyCodeResponse)
async def verify_code(
    body: VerifyCodeRequest,
    response: Response,
    client: ClientInfo = Depends(get_client_info),
    otp: OTPService = Depends(get_otp_service),
):
    outcome = await otp.verify_code(body.requestId, body.code, phone=body.phone, client=client)

    # httpOnly cookies let the browser reach protected pages without an Authorization header
    response.set_cookie(
        key="access_token",
        value=outcome.session.access_token,
        httponly=True,
        secure=settings.COOKIE_SECURE,
        samesite="lax",
        max_age=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
    )
    response.set_cookie(
        key="refresh_token",
        value=outcome.session.refresh_token,
        httponly=True,
        secure=settings.COOKIE_SECURE,
        samesite="lax",
        max_age=settings.REFRESH_TOKEN_EXPIRE_DAYS * 24 * 3600,
    )
    logger.info(f"Telegram login completed for user {outcome.user_id} (new={outcome.is_new_user})")

    return VerifyCodeResponse(
        userId=outcome.user_id,
        isNewUser=outcome.is_new_user,
        phone=outcome.phone,
        fullName=outcome.full_name,
        telegramUserId=outcome.telegram_user_id,
        session=SessionInfo(
            sessionId=outcome.session.session_id,
            accessToken=outcome.session.access_token,
            refreshToken=outcome.session.refresh_token,
            tokenType=outcome.session.token_type,
            expiresIn=outcome.session.expires_in,
        ),
        redirectTo=outcome.redirect_to,
    )
