import logging
import math
import re
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from ...core.config import settings
from ...exceptions import APIException
from ...utils import (
    create_jwt_token,
    create_refresh_token,
    generate_otp,
    is_uuid,
    mask_phone,
    normalize_phone,
    utcnow,
)
from ..ports.audit_logger import AuditLogger
from ..ports.bot_sender import BotSender, DeliveryResult
from ..ports.profile_repo import ProfileDto, ProfileRepository, TelegramIdentity
from ..ports.session_repo import SessionCache, SessionRepository
from ..ports.telegram_resolver import TelegramIdResolver
from ..ports.verification_repo import ActiveVerificationExists, VerificationDto, VerificationRepository
from .sliding_window import SlidingWindow

logger = logging.getLogger(__name__)

NEW_USER_REDIRECT = "/dashboard/profile/setup"
EXISTING_USER_REDIRECT = "/dashboard"


def telegram_help_steps() -> List[str]:
    bot = settings.TELEGRAM_BOT_USERNAME
    return [
        "Install Telegram if you have not already",
        "Link this phone number to your Telegram account",
        f"Find @{bot} and open a chat with it",
        "Press /start in the chat with the bot",
        "Try logging in again",
    ]


@dataclass
class ClientInfo:
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


@dataclass
class IssueOutcome:
    request_id: str
    expires_in: int
    sent: bool
    reused: bool = False
    can_resend: bool = False
    resend_after: int = 0
    telegram_user_id: Optional[int] = None
    error_code: Optional[str] = None
    error: Optional[str] = None
    help_steps: List[str] = field(default_factory=list)


@dataclass
class IssuedSession:
    session_id: str
    access_token: str
    refresh_token: str
    expires_in: int
    token_type: str = "bearer"


@dataclass
class VerifyOutcome:
    user_id: str
    is_new_user: bool
    phone: str
    session: IssuedSession
    redirect_to: str
    telegram_user_id: Optional[int] = None
    full_name: Optional[str] = None


@dataclass
class OTPService:
    """Issues one-time codes over the Telegram bot and redeems them into sessions."""

    verifications: VerificationRepository
    resolver: TelegramIdResolver
    bot: BotSender
    profiles: ProfileRepository
    sessions: SessionRepository
    audit: AuditLogger
    cache: Optional[SessionCache] = None
    clock: Callable[[], datetime] = utcnow
    code_length: int = settings.OTP_LENGTH
    ttl_seconds: int = settings.OTP_TTL_SECONDS
    max_attempts: int = settings.OTP_MAX_ATTEMPTS
    requests_per_hour: int = settings.OTP_REQUESTS_PER_HOUR
    resend_threshold_seconds: int = settings.OTP_RESEND_THRESHOLD_SECONDS
    resend_cooldown_seconds: int = settings.OTP_RESEND_COOLDOWN_SECONDS

    # ---------- issuance ----------

    async def request_code(
        self,
        phone: str,
        user_id: Optional[str] = None,
        session_id: Optional[str] = None,
        client: Optional[ClientInfo] = None,
    ) -> IssueOutcome:
        client = client or ClientInfo()
        normalized = normalize_phone(phone)
        if not normalized:
            raise APIException(status_code=400, detail="Invalid phone number format", code="INVALID_PHONE_FORMAT")

        now = self.clock()
        window = SlidingWindow(window_seconds=3600, threshold=self.requests_per_hour)
        decision = window.evaluate_count(self.verifications.request_times(normalized, now - timedelta(hours=1)), now)
        if not decision.allowed:
            wait = decision.retry_after_seconds
            self.audit.log("otp_rate_limited", normalized, user_id=user_id, ip_address=client.ip_address, success=False, details={"wait_seconds": wait})
            raise APIException(
                status_code=429,
                detail=f"Too many code requests. Try again in {math.ceil(wait / 60)} min",
                code="RATE_LIMIT_EXCEEDED",
                headers={"Retry-After": str(wait)},
                wait_seconds=wait,
            )

        existing = self.verifications.find_active(normalized, now)
        if existing:
            logger.info(f"Reusing active verification {existing.id}")
            return self._reuse(existing, now)

        code = generate_otp(self.code_length)
        meta = {
            "user_id": user_id,
            "session_id": session_id,
            "user_agent": client.user_agent,
            "ip_address": client.ip_address,
            "requested_at": now.isoformat(),
        }
        try:
            record = self.verifications.create(
                normalized, code, now + timedelta(seconds=self.ttl_seconds), self.max_attempts, meta, now
            )
        except ActiveVerificationExists:
            winner = self.verifications.find_active(normalized, now)
            if winner is None:
                raise APIException(status_code=409, detail="Verification request conflict, try again", code="VERIFICATION_CONFLICT")
            return self._reuse(winner, now)

        return await self._deliver_new(record, code, user_id, client)

    def _reuse(self, record: VerificationDto, now: datetime) -> IssueOutcome:
        expires_in = max(0, int((record.expires_at - now).total_seconds()))
        return IssueOutcome(
            request_id=record.id,
            expires_in=expires_in,
            sent=record.status == "sent",
            reused=True,
            can_resend=expires_in < self.resend_threshold_seconds,
            resend_after=max(0, expires_in - self.resend_threshold_seconds),
            telegram_user_id=record.telegram_user_id,
        )

    async def _deliver_new(self, record: VerificationDto, code: str, user_id: Optional[str], client: ClientInfo) -> IssueOutcome:
        phone = record.phone
        telegram_id = self.resolver.resolve(phone)
        if telegram_id is None:
            self.verifications.mark_failed(record.id, "delivery", self.clock(), {"error": "telegram_id_not_found"})
            self.audit.log("otp_telegram_not_linked", phone, user_id=user_id, request_id=record.id, ip_address=client.ip_address, success=False)
            return IssueOutcome(
                request_id=record.id,
                expires_in=self.ttl_seconds,
                sent=False,
                error_code="TELEGRAM_ID_NOT_FOUND",
                error="No Telegram account is linked to this phone number",
                help_steps=telegram_help_steps(),
            )

        error_code = "TELEGRAM_SEND_ERROR"
        try:
            result = await self.bot.send_verification_code(telegram_id, phone, code)
        except Exception as e:
            logger.error(f"Telegram delivery raised for {record.id}: {e}", exc_info=True)
            result = DeliveryResult(success=False, error=str(e))
            error_code = "TELEGRAM_EXCEPTION"

        if not result.success:
            self.verifications.mark_failed(
                record.id, "delivery", self.clock(), {"error": result.error, "telegram_user_id": telegram_id}
            )
            self.audit.log("otp_delivery_failed", phone, user_id=user_id, request_id=record.id, ip_address=client.ip_address, success=False, details={"error": result.error})
            return IssueOutcome(
                request_id=record.id,
                expires_in=self.ttl_seconds,
                sent=False,
                telegram_user_id=telegram_id,
                error_code=error_code,
                error=result.error or "Failed to send the code via Telegram",
            )

        self.verifications.mark_sent(record.id, telegram_id, result.message_id, self.clock())
        self.audit.log("otp_sent", phone, user_id=user_id, request_id=record.id, ip_address=client.ip_address, details={"telegram_user_id": telegram_id})
        return IssueOutcome(
            request_id=record.id,
            expires_in=self.ttl_seconds,
            sent=True,
            can_resend=False,
            resend_after=max(0, self.ttl_seconds - self.resend_threshold_seconds),
            telegram_user_id=telegram_id,
        )

    # ---------- status / resend ----------

    def get_status(self, request_id: str) -> Dict[str, Any]:
        record = self._load(request_id)
        now = self.clock()
        remaining = max(0, int((record.expires_at - now).total_seconds()))
        active = record.is_active(now)
        return {
            "request_id": record.id,
            "status": record.status,
            "failure_reason": record.failure_reason,
            "phone": mask_phone(record.phone),
            "attempts": record.attempts,
            "max_attempts": record.max_attempts,
            "remaining_attempts": max(0, record.max_attempts - record.attempts),
            "created_at": record.created_at,
            "expires_at": record.expires_at,
            "verified_at": record.verified_at,
            "is_active": active,
            "is_expired": now >= record.expires_at,
            "remaining_seconds": remaining,
            "can_resend": active and remaining < self.resend_threshold_seconds,
            "resend_after": max(0, remaining - self.resend_threshold_seconds) if active else 0,
        }

    async def resend_code(self, request_id: str, client: Optional[ClientInfo] = None) -> IssueOutcome:
        client = client or ClientInfo()
        record = self._load(request_id)
        now = self.clock()
        if not record.is_active(now):
            raise APIException(status_code=400, detail="Verification request is no longer active", code="VERIFICATION_NOT_ACTIVE")

        elapsed = (now - (record.last_sent_at or record.created_at)).total_seconds()
        if elapsed < self.resend_cooldown_seconds:
            wait = math.ceil(self.resend_cooldown_seconds - elapsed)
            raise APIException(
                status_code=429,
                detail=f"Please wait {wait} s before requesting the code again",
                code="RESEND_COOLDOWN",
                headers={"Retry-After": str(wait)},
                wait_seconds=wait,
            )

        telegram_id = record.telegram_user_id or self.resolver.resolve(record.phone)
        if telegram_id is None:
            raise APIException(
                status_code=400,
                detail="No Telegram account is linked to this phone number",
                code="TELEGRAM_ID_NOT_FOUND",
                help_steps=telegram_help_steps(),
            )

        try:
            result = await self.bot.send_verification_code(telegram_id, record.phone, record.code)
        except Exception as e:
            logger.error(f"Telegram resend raised for {record.id}: {e}", exc_info=True)
            result = DeliveryResult(success=False, error=str(e))

        if not result.success:
            self.audit.log("otp_resend_failed", record.phone, request_id=record.id, ip_address=client.ip_address, success=False, details={"error": result.error})
            raise APIException(status_code=502, detail=result.error or "Failed to send the code via Telegram", code="TELEGRAM_SEND_ERROR")

        self.verifications.mark_sent(record.id, telegram_id, result.message_id, now)
        self.audit.log("otp_resent", record.phone, request_id=record.id, ip_address=client.ip_address)
        outcome = self._reuse(record, now)
        outcome.sent = True
        outcome.telegram_user_id = telegram_id
        return outcome

    # ---------- verification ----------

    async def verify_code(
        self,
        request_id: str,
        code: str,
        phone: Optional[str] = None,
        client: Optional[ClientInfo] = None,
    ) -> VerifyOutcome:
        client = client or ClientInfo()
        if not code:
            raise APIException(status_code=400, detail="Verification code is required", code="CODE_REQUIRED")
        cleaned = re.sub(r"\D", "", code)
        if len(cleaned) != self.code_length:
            raise APIException(status_code=400, detail=f"Code must be {self.code_length} digits", code="INVALID_CODE_LENGTH")

        normalized = None
        if phone:
            normalized = normalize_phone(phone)
            if not normalized:
                raise APIException(status_code=400, detail="Invalid phone number format", code="INVALID_PHONE_FORMAT")

        record = self._load(request_id)
        if normalized and record.phone != normalized:
            raise APIException(status_code=404, detail="Verification request not found", code="VERIFICATION_NOT_FOUND")

        now = self.clock()
        self._ensure_redeemable(record, now)

        details = {"ip_address": client.ip_address, "attempted_at": now.isoformat()}
        if not self.verifications.register_attempt(record.id, record.attempts, now, details):
            raise APIException(status_code=409, detail="Concurrent verification attempt, try again", code="VERIFICATION_CONFLICT")
        attempts = record.attempts + 1

        if not secrets.compare_digest(record.code, cleaned):
            remaining = max(0, record.max_attempts - attempts)
            if remaining == 0:
                self.verifications.mark_failed(record.id, "max_attempts", now, {"final_attempts": attempts})
            self.audit.log("otp_invalid_code", record.phone, request_id=record.id, ip_address=client.ip_address, success=False, details={"attempts": attempts})
            raise APIException(
                status_code=400,
                detail=f"Invalid code. Attempts left: {remaining}",
                code="INVALID_CODE",
                remaining_attempts=remaining,
            )

        # The code is only consumed once a session exists for it
        try:
            outcome = self._open_session(record, client, now)
        except Exception:
            logger.exception(f"Sign-in failed for verification {record.id}, the code stays redeemable")
            self.verifications.release_attempt(record.id, attempts, now)
            raise

        if not self.verifications.mark_verified(record.id, now):
            self.sessions.revoke(outcome.session.session_id)
            raise APIException(status_code=400, detail="Code has already been used", code="CODE_ALREADY_USED")

        return await self._finish_sign_in(record, outcome, client, now)

    def _load(self, request_id: str) -> VerificationDto:
        if not request_id:
            raise APIException(status_code=400, detail="requestId is required", code="REQUEST_ID_REQUIRED")
        if not is_uuid(request_id):
            raise APIException(status_code=400, detail="Invalid requestId format", code="INVALID_REQUEST_ID")
        record = self.verifications.get(request_id)
        if not record:
            raise APIException(status_code=404, detail="Verification request not found", code="VERIFICATION_NOT_FOUND")
        return record

    def _ensure_redeemable(self, record: VerificationDto, now: datetime) -> None:
        if record.status == "verified":
            raise APIException(status_code=400, detail="Code has already been used", code="CODE_ALREADY_USED")

        if record.failure_reason == "max_attempts" or record.attempts >= record.max_attempts:
            if record.failure_reason != "max_attempts":
                self.verifications.mark_failed(record.id, "max_attempts", now)
            raise APIException(
                status_code=429,
                detail="Maximum verification attempts exceeded. Request a new code",
                code="MAX_ATTEMPTS_EXCEEDED",
            )

        if record.failure_reason == "expired" or now >= record.expires_at:
            if record.failure_reason != "expired":
                self.verifications.mark_failed(record.id, "expired", now)
            raise APIException(status_code=400, detail="Code has expired. Request a new one", code="EXPIRED")

    def _open_session(self, record: VerificationDto, client: ClientInfo, now: datetime) -> VerifyOutcome:
        """Find or create the profile and persist a session for it."""
        identity: Optional[TelegramIdentity] = None
        if record.telegram_user_id:
            identity = self.profiles.get_telegram_identity(record.telegram_user_id) or TelegramIdentity(
                telegram_id=record.telegram_user_id
            )

        profile: Optional[ProfileDto] = self.profiles.get_by_phone(record.phone)
        is_new_user = profile is None
        if is_new_user:
            profile = self.profiles.create_for_phone(record.phone, identity)
        elif identity:
            self.profiles.link_telegram(profile.id, record.phone, identity)

        claims = {"sub": profile.id, "phone": record.phone, "auth_method": "telegram"}
        access_token = create_jwt_token(claims)
        refresh_token = create_refresh_token({"sub": profile.id})
        stored = self.sessions.create(
            profile.id,
            access_token,
            refresh_token,
            now + timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS),
            ip_address=client.ip_address,
            device_info=client.user_agent,
        )
        return VerifyOutcome(
            user_id=profile.id,
            is_new_user=is_new_user,
            phone=record.phone,
            telegram_user_id=record.telegram_user_id,
            full_name=profile.full_name or (identity.full_name if identity else None),
            session=IssuedSession(
                session_id=stored.id,
                access_token=access_token,
                refresh_token=refresh_token,
                expires_in=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
            ),
            redirect_to=NEW_USER_REDIRECT if is_new_user else EXISTING_USER_REDIRECT,
        )

    async def _finish_sign_in(self, record: VerificationDto, outcome: VerifyOutcome, client: ClientInfo, now: datetime) -> VerifyOutcome:
        if self.cache is not None:
            self.cache.set_session(outcome.session.session_id, {
                "user_id": outcome.user_id,
                "phone": record.phone,
                "telegram_user_id": record.telegram_user_id,
                "created_at": now.isoformat(),
            })
        try:
            self.sessions.record_login(outcome.user_id, record.phone, record.telegram_user_id, record.id, client.ip_address, client.user_agent)
        except Exception as e:
            logger.warning(f"Auth log write failed for verification {record.id}: {e}")

        if record.telegram_user_id:
            await self._notify_success(record.telegram_user_id, outcome.full_name or "there")

        self.audit.log("telegram_login", record.phone, user_id=outcome.user_id, request_id=record.id, ip_address=client.ip_address, details={"is_new_user": outcome.is_new_user})
        return outcome

    async def _notify_success(self, chat_id: int, user_name: str) -> None:
        try:
            await self.bot.send_auth_success(chat_id, user_name)
        except Exception as e:
            logger.warning(f"Auth success notification failed for chat {chat_id}: {e}")
