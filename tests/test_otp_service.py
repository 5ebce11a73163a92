from dataclasses import replace
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional

import pytest

from workfinder.application.ports.bot_sender import DeliveryResult
from workfinder.application.ports.profile_repo import ProfileDto, TelegramIdentity
from workfinder.application.ports.session_repo import SessionDto
from workfinder.application.ports.verification_repo import ActiveVerificationExists, VerificationDto
from workfinder.application.services.otp_service import ClientInfo, OTPService
from workfinder.exceptions import APIException
from workfinder.utils import decode_jwt_token

PHONE = "+79991234567"
T0 = datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now = self.now + timedelta(seconds=seconds)


class FakeVerificationRepo:
    def __init__(self):
        self.records = {}
        self._seq = 0
        self.insert_race_winner = None
        self.steal_next_attempt = False
        self.lose_verify_race = False

    def _new_id(self) -> str:
        self._seq += 1
        return f"00000000-0000-4000-8000-{self._seq:012d}"

    def add(self, phone, code, created_at, status="pending", failure_reason=None, attempts=0):
        rec = VerificationDto(
            id=self._new_id(), phone=phone, code=code, status=status, attempts=attempts, max_attempts=3,
            expires_at=created_at + timedelta(seconds=600), created_at=created_at, updated_at=created_at,
            failure_reason=failure_reason,
        )
        self.records[rec.id] = rec
        return rec

    def get(self, request_id):
        r = self.records.get(request_id)
        return replace(r) if r else None

    def find_active(self, phone, now):
        active = [r for r in self.records.values() if r.phone == phone and r.is_active(now)]
        return replace(max(active, key=lambda r: r.created_at)) if active else None

    def request_times(self, phone, since):
        return [r.created_at for r in self.records.values() if r.phone == phone and r.created_at >= since]

    def create(self, phone, code, expires_at, max_attempts, meta, now):
        if self.insert_race_winner is not None:
            winner, self.insert_race_winner = self.insert_race_winner, None
            self.records[winner.id] = winner
            raise ActiveVerificationExists(phone)
        rec = VerificationDto(
            id=self._new_id(), phone=phone, code=code, status="pending", attempts=0, max_attempts=max_attempts,
            expires_at=expires_at, created_at=now, updated_at=now, meta=dict(meta),
        )
        self.records[rec.id] = rec
        return replace(rec)

    def mark_sent(self, request_id, telegram_user_id, message_id, now):
        r = self.records[request_id]
        if r.status in ("pending", "sent"):
            r.status = "sent"
            r.telegram_user_id = telegram_user_id
            r.last_sent_at = now

    def mark_failed(self, request_id, reason, now, details=None):
        r = self.records[request_id]
        if r.status == "verified" or r.failure_reason in ("expired", "max_attempts"):
            return
        r.status = "failed"
        r.failure_reason = reason

    def register_attempt(self, request_id, expected_attempts, now, details=None):
        r = self.records[request_id]
        if self.steal_next_attempt:
            self.steal_next_attempt = False
            r.attempts += 1
        if r.attempts != expected_attempts or r.attempts >= r.max_attempts or r.status == "verified":
            return False
        r.attempts += 1
        return True

    def release_attempt(self, request_id, counted_attempts, now):
        r = self.records[request_id]
        if r.attempts != counted_attempts or r.status == "verified":
            return False
        r.attempts -= 1
        return True

    def mark_verified(self, request_id, now):
        r = self.records[request_id]
        if self.lose_verify_race:
            self.lose_verify_race = False
            r.status = "verified"
            return False
        if r.status in ("pending", "sent") or (r.status == "failed" and r.failure_reason == "delivery"):
            r.status = "verified"
            r.failure_reason = None
            r.verified_at = now
            return True
        return False


class FakeResolver:
    def __init__(self, mapping=None):
        self.mapping = mapping if mapping is not None else {PHONE: 424242}

    def resolve(self, phone: str) -> Optional[int]:
        return self.mapping.get(phone)


class FakeBot:
    def __init__(self, result=None, raise_on_send=False, raise_on_success=False):
        self.result = result or DeliveryResult(success=True, message_id=77)
        self.raise_on_send = raise_on_send
        self.raise_on_success = raise_on_success
        self.sent = []
        self.success_notices = []

    async def send_verification_code(self, chat_id, phone, code):
        if self.raise_on_send:
            raise RuntimeError("network down")
        self.sent.append((chat_id, phone, code))
        return self.result

    async def send_auth_success(self, chat_id, user_name):
        if self.raise_on_success:
            raise RuntimeError("bot offline")
        self.success_notices.append((chat_id, user_name))
        return True


class FakeProfiles:
    def __init__(self):
        self.profiles = {}
        self.linked = []
        self.identities = {424242: TelegramIdentity(telegram_id=424242, username="ivan", first_name="Ivan", last_name="Petrov")}

    def get_by_id(self, profile_id):
        return self.profiles.get(profile_id)

    def get_by_phone(self, phone):
        return next((p for p in self.profiles.values() if p.phone == phone), None)

    def get_telegram_identity(self, telegram_id):
        return self.identities.get(telegram_id)

    def create_for_phone(self, phone, identity):
        p = ProfileDto(
            id=f"profile-{len(self.profiles) + 1}", phone=phone,
            full_name=identity.full_name if identity else None,
            telegram_id=identity.telegram_id if identity else None,
            balance=Decimal("0"), pending_withdrawal=Decimal("0"), verification_status="unverified",
        )
        self.profiles[p.id] = p
        return p

    def link_telegram(self, profile_id, phone, identity):
        self.linked.append((profile_id, identity.telegram_id))


class FakeSessions:
    def __init__(self, fail_next_create=False):
        self.created = []
        self.revoked = []
        self.logins = []
        self.fail_next_create = fail_next_create

    def create(self, user_id, token, refresh_token, expires_at, ip_address=None, device_info=None):
        if self.fail_next_create:
            self.fail_next_create = False
            raise RuntimeError("database connection lost")
        s = SessionDto(id=f"session-{len(self.created) + 1}", user_id=user_id, token=token,
                       refresh_token=refresh_token, expires_at=expires_at, created_at=T0)
        self.created.append(s)
        return s

    def revoke(self, session_id):
        self.revoked.append(session_id)

    def record_login(self, user_id, phone, telegram_user_id, verification_id, ip_address, user_agent):
        self.logins.append((user_id, verification_id))


class FakeAudit:
    def __init__(self):
        self.events = []

    def log(self, action, phone, user_id=None, request_id=None, ip_address=None, success=True, details=None):
        self.events.append((action, success))


class FakeCache:
    def __init__(self):
        self.sessions = {}

    def set_session(self, session_id, data, ttl=86400):
        self.sessions[session_id] = data
        return True


def make_service(clock=None, resolver=None, bot=None, repo=None, profiles=None, sessions=None):
    return OTPService(
        verifications=repo or FakeVerificationRepo(),
        resolver=resolver or FakeResolver(),
        bot=bot or FakeBot(),
        profiles=profiles or FakeProfiles(),
        sessions=sessions or FakeSessions(),
        audit=FakeAudit(),
        cache=FakeCache(),
        clock=clock or FakeClock(T0),
    )


@pytest.mark.asyncio
async def test_request_verify_replay_scenario():
    clock = FakeClock(T0)
    svc = make_service(clock=clock)

    issued = await svc.request_code("(999) 123-45-67", client=ClientInfo(ip_address="10.0.0.1"))
    assert issued.sent is True
    assert issued.expires_in == 600
    assert issued.can_resend is False
    assert issued.resend_after == 300
    rec = svc.verifications.records[issued.request_id]
    assert rec.phone == PHONE
    assert rec.expires_at == T0 + timedelta(seconds=600)
    assert rec.status == "sent"
    assert svc.bot.sent == [(424242, PHONE, rec.code)]

    clock.advance(10)
    wrong = "000000" if rec.code != "000000" else "111111"
    with pytest.raises(APIException) as exc:
        await svc.verify_code(issued.request_id, wrong)
    assert exc.value.code == "INVALID_CODE"
    assert exc.value.extra["remaining_attempts"] == 2
    assert rec.attempts == 1

    clock.advance(10)
    outcome = await svc.verify_code(issued.request_id, rec.code)
    assert rec.status == "verified"
    assert outcome.is_new_user is True
    assert outcome.redirect_to == "/dashboard/profile/setup"
    assert outcome.full_name == "Ivan Petrov"
    assert decode_jwt_token(outcome.session.access_token)["sub"] == outcome.user_id
    assert svc.cache.sessions[outcome.session.session_id]["user_id"] == outcome.user_id
    assert svc.bot.success_notices == [(424242, "Ivan Petrov")]

    clock.advance(10)
    with pytest.raises(APIException) as exc:
        await svc.verify_code(issued.request_id, rec.code)
    assert exc.value.code == "CODE_ALREADY_USED"
    assert rec.attempts == 2


@pytest.mark.asyncio
async def test_invalid_phone_persists_nothing():
    svc = make_service()
    with pytest.raises(APIException) as exc:
        await svc.request_code("12-34")
    assert exc.value.status_code == 400
    assert exc.value.code == "INVALID_PHONE_FORMAT"
    assert svc.verifications.records == {}


@pytest.mark.asyncio
async def test_active_record_is_reused_with_resend_hint():
    clock = FakeClock(T0)
    svc = make_service(clock=clock)
    first = await svc.request_code(PHONE)

    clock.advance(60)
    second = await svc.request_code(PHONE)
    assert second.request_id == first.request_id
    assert second.reused is True
    assert second.expires_in == 540
    assert second.can_resend is False
    assert second.resend_after == 240

    clock.advance(360)
    third = await svc.request_code(PHONE)
    assert third.request_id == first.request_id
    assert third.expires_in == 180
    assert third.can_resend is True
    assert third.resend_after == 0
    assert len(svc.verifications.records) == 1
    assert len(svc.bot.sent) == 1


@pytest.mark.asyncio
async def test_sixth_request_in_an_hour_is_rate_limited():
    repo = FakeVerificationRepo()
    for minutes in (50, 40, 30, 20, 10):
        repo.add(PHONE, "123456", T0 - timedelta(minutes=minutes), status="failed", failure_reason="delivery")
    svc = make_service(repo=repo)

    with pytest.raises(APIException) as exc:
        await svc.request_code(PHONE)
    assert exc.value.status_code == 429
    assert exc.value.code == "RATE_LIMIT_EXCEEDED"
    assert exc.value.extra["wait_seconds"] == 600
    assert exc.value.headers["Retry-After"] == "600"
    assert len(repo.records) == 5


@pytest.mark.asyncio
async def test_unlinked_phone_keeps_code_redeemable():
    svc = make_service(resolver=FakeResolver(mapping={}))
    outcome = await svc.request_code(PHONE)
    assert outcome.sent is False
    assert outcome.error_code == "TELEGRAM_ID_NOT_FOUND"
    assert any("register_injob_bot" in step for step in outcome.help_steps)

    rec = svc.verifications.records[outcome.request_id]
    assert rec.status == "failed"
    assert rec.failure_reason == "delivery"

    verified = await svc.verify_code(outcome.request_id, rec.code)
    assert rec.status == "verified"
    assert verified.telegram_user_id is None


@pytest.mark.asyncio
async def test_bot_exception_is_reported_not_raised():
    svc = make_service(bot=FakeBot(raise_on_send=True))
    outcome = await svc.request_code(PHONE)
    assert outcome.sent is False
    assert outcome.error_code == "TELEGRAM_EXCEPTION"
    assert svc.verifications.records[outcome.request_id].failure_reason == "delivery"


@pytest.mark.asyncio
async def test_bot_rejection_reports_send_error():
    svc = make_service(bot=FakeBot(result=DeliveryResult(success=False, error="User has blocked the bot")))
    outcome = await svc.request_code(PHONE)
    assert outcome.error_code == "TELEGRAM_SEND_ERROR"
    assert outcome.error == "User has blocked the bot"


@pytest.mark.asyncio
async def test_third_wrong_code_exhausts_attempts():
    svc = make_service()
    issued = await svc.request_code(PHONE)
    rec = svc.verifications.records[issued.request_id]
    wrong = "000000" if rec.code != "000000" else "111111"

    for expected_remaining in (2, 1, 0):
        with pytest.raises(APIException) as exc:
            await svc.verify_code(issued.request_id, wrong)
        assert exc.value.extra["remaining_attempts"] == expected_remaining
    assert rec.status == "failed"
    assert rec.failure_reason == "max_attempts"
    assert rec.attempts == 3

    with pytest.raises(APIException) as exc:
        await svc.verify_code(issued.request_id, rec.code)
    assert exc.value.status_code == 429
    assert exc.value.code == "MAX_ATTEMPTS_EXCEEDED"
    assert rec.attempts == 3


@pytest.mark.asyncio
async def test_expired_code_is_marked_failed():
    clock = FakeClock(T0)
    svc = make_service(clock=clock)
    issued = await svc.request_code(PHONE)
    rec = svc.verifications.records[issued.request_id]

    clock.advance(600)
    with pytest.raises(APIException) as exc:
        await svc.verify_code(issued.request_id, rec.code)
    assert exc.value.code == "EXPIRED"
    assert rec.status == "failed"
    assert rec.failure_reason == "expired"
    assert rec.attempts == 0


@pytest.mark.asyncio
async def test_concurrent_insert_returns_winner():
    repo = FakeVerificationRepo()
    winner = VerificationDto(
        id="00000000-0000-4000-8000-999999999999", phone=PHONE, code="654321", status="sent", attempts=0,
        max_attempts=3, expires_at=T0 + timedelta(seconds=600), created_at=T0, updated_at=T0,
    )
    repo.insert_race_winner = winner
    svc = make_service(repo=repo)

    outcome = await svc.request_code(PHONE)
    assert outcome.request_id == winner.id
    assert outcome.reused is True
    assert svc.bot.sent == []


@pytest.mark.asyncio
async def test_lost_attempt_race_is_a_conflict():
    svc = make_service()
    issued = await svc.request_code(PHONE)
    rec = svc.verifications.records[issued.request_id]
    svc.verifications.steal_next_attempt = True

    with pytest.raises(APIException) as exc:
        await svc.verify_code(issued.request_id, rec.code)
    assert exc.value.status_code == 409
    assert exc.value.code == "VERIFICATION_CONFLICT"
    assert rec.status == "sent"


@pytest.mark.asyncio
async def test_existing_profile_goes_to_dashboard():
    profiles = FakeProfiles()
    existing = profiles.create_for_phone(PHONE, None)
    bot = FakeBot(raise_on_success=True)
    svc = make_service(profiles=profiles, bot=bot)
    issued = await svc.request_code(PHONE)
    rec = svc.verifications.records[issued.request_id]

    outcome = await svc.verify_code(issued.request_id, f"{rec.code[:3]}-{rec.code[3:]}", phone="7 999 123 45 67")
    assert outcome.user_id == existing.id
    assert outcome.is_new_user is False
    assert outcome.redirect_to == "/dashboard"
    assert profiles.linked == [(existing.id, 424242)]
    assert svc.sessions.logins == [(existing.id, issued.request_id)]


@pytest.mark.asyncio
async def test_verify_input_validation():
    svc = make_service()
    issued = await svc.request_code(PHONE)

    with pytest.raises(APIException) as exc:
        await svc.verify_code("not-a-uuid", "123456")
    assert exc.value.code == "INVALID_REQUEST_ID"

    with pytest.raises(APIException) as exc:
        await svc.verify_code(issued.request_id, "12345")
    assert exc.value.code == "INVALID_CODE_LENGTH"

    with pytest.raises(APIException) as exc:
        await svc.verify_code(issued.request_id, "123456", phone="+79990000000")
    assert exc.value.status_code == 404

    with pytest.raises(APIException) as exc:
        await svc.verify_code("00000000-0000-4000-8000-000000000404", "123456")
    assert exc.value.code == "VERIFICATION_NOT_FOUND"


@pytest.mark.asyncio
async def test_resend_respects_cooldown_then_redelivers_same_code():
    clock = FakeClock(T0)
    svc = make_service(clock=clock)
    issued = await svc.request_code(PHONE)
    rec = svc.verifications.records[issued.request_id]

    clock.advance(10)
    with pytest.raises(APIException) as exc:
        await svc.resend_code(issued.request_id)
    assert exc.value.code == "RESEND_COOLDOWN"
    assert exc.value.extra["wait_seconds"] == 20

    clock.advance(30)
    outcome = await svc.resend_code(issued.request_id)
    assert outcome.sent is True
    assert outcome.request_id == issued.request_id
    assert svc.bot.sent[-1] == (424242, PHONE, rec.code)
    assert rec.last_sent_at == T0 + timedelta(seconds=40)


@pytest.mark.asyncio
async def test_resend_failure_keeps_status():
    clock = FakeClock(T0)
    bot = FakeBot()
    svc = make_service(clock=clock, bot=bot)
    issued = await svc.request_code(PHONE)

    clock.advance(60)
    bot.result = DeliveryResult(success=False, error="Too many messages")
    with pytest.raises(APIException) as exc:
        await svc.resend_code(issued.request_id)
    assert exc.value.status_code == 502
    assert svc.verifications.records[issued.request_id].status == "sent"


@pytest.mark.asyncio
async def test_status_masks_phone():
    clock = FakeClock(T0)
    svc = make_service(clock=clock)
    issued = await svc.request_code(PHONE)

    clock.advance(400)
    status = svc.get_status(issued.request_id)
    assert status["phone"] == "+7 (999) ***-**-67"
    assert status["status"] == "sent"
    assert status["is_active"] is True
    assert status["remaining_seconds"] == 200
    assert status["can_resend"] is True
    assert status["remaining_attempts"] == 3


@pytest.mark.asyncio
async def test_failed_session_write_keeps_code_redeemable():
    sessions = FakeSessions(fail_next_create=True)
    svc = make_service(sessions=sessions)
    issued = await svc.request_code(PHONE)
    rec = svc.verifications.records[issued.request_id]

    with pytest.raises(RuntimeError):
        await svc.verify_code(issued.request_id, rec.code)
    assert rec.status == "sent"
    assert rec.attempts == 0
    assert svc.cache.sessions == {}

    outcome = await svc.verify_code(issued.request_id, rec.code)
    assert rec.status == "verified"
    assert rec.attempts == 1
    assert [s.id for s in sessions.created] == [outcome.session.session_id]


@pytest.mark.asyncio
async def test_losing_the_verified_race_revokes_the_new_session():
    sessions = FakeSessions()
    svc = make_service(sessions=sessions)
    issued = await svc.request_code(PHONE)
    rec = svc.verifications.records[issued.request_id]
    svc.verifications.lose_verify_race = True

    with pytest.raises(APIException) as exc:
        await svc.verify_code(issued.request_id, rec.code)
    assert exc.value.code == "CODE_ALREADY_USED"
    assert sessions.revoked == [sessions.created[0].id]
    assert sessions.logins == []
    assert svc.bot.success_notices == []
