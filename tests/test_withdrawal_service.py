from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from workfinder.application.ports.profile_repo import ProfileDto
from workfinder.application.ports.withdrawal_repo import BalanceChanged, WithdrawalDto
from workfinder.application.services.withdrawal_service import WithdrawalService, calculate_fee
from workfinder.exceptions import APIException

NOW = datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeProfiles:
    def __init__(self, balance="100000", verification_status="unverified"):
        self.profile = ProfileDto(
            id="user-1", phone="+79991234567", full_name="Ivan", telegram_id=None,
            balance=Decimal(balance), pending_withdrawal=Decimal("0"), verification_status=verification_status,
        )

    def get_by_id(self, profile_id):
        return self.profile if profile_id == self.profile.id else None


class FakeWithdrawalRepo:
    def __init__(self, history=None, balance_race=False):
        self.history = history or []  # (created_at, amount, status)
        self.created = []
        self.balance_race = balance_race

    def recent(self, user_id, since, statuses):
        return [(ts, amount) for ts, amount, status in self.history if ts >= since and status in statuses]

    def create_request(self, user_id, amount, fee, net_amount, method, details, notify_admin):
        if self.balance_race:
            raise BalanceChanged(user_id)
        w = WithdrawalDto(
            id=f"w-{len(self.created) + 1}", user_id=user_id, amount=amount, net_amount=net_amount, fee=fee,
            method=method, status="pending", currency="RUB", created_at=NOW, details=details,
        )
        self.created.append((w, notify_admin))
        return w

    def list_for_user(self, user_id, status, limit, offset):
        items = [w for w, _ in self.created if status is None or w.status == status]
        return items[offset:offset + limit], len(items)


def make_service(profiles=None, repo=None):
    return WithdrawalService(repo=repo or FakeWithdrawalRepo(), profiles=profiles or FakeProfiles(), clock=lambda: NOW)


def test_fee_is_clamped_per_method():
    assert calculate_fee(Decimal("100"), "card") == Decimal("50.00")
    assert calculate_fee(Decimal("5000"), "card") == Decimal("250.00")
    assert calculate_fee(Decimal("20000"), "card") == Decimal("500.00")
    assert calculate_fee(Decimal("1234.50"), "bank_account") == Decimal("24.69")
    assert calculate_fee(Decimal("5000"), "unknown") == Decimal("250.00")


def test_request_creates_pending_withdrawal():
    svc = make_service()
    result = svc.request_withdrawal("user-1", Decimal("5000"), "yoomoney", {"wallet": "4100"})
    assert result["fee"] == Decimal("150.00")
    assert result["net_amount"] == Decimal("4850.00")
    withdrawal, notify_admin = svc.repo.created[0]
    assert withdrawal.status == "pending"
    assert withdrawal.details == {"wallet": "4100"}
    assert notify_admin is False


def test_insufficient_funds():
    svc = make_service(profiles=FakeProfiles(balance="500"))
    with pytest.raises(APIException) as exc:
        svc.request_withdrawal("user-1", Decimal("1000"), "card")
    assert exc.value.status_code == 400
    assert exc.value.code == "INSUFFICIENT_FUNDS"


def test_balance_race_maps_to_insufficient_funds():
    svc = make_service(repo=FakeWithdrawalRepo(balance_race=True))
    with pytest.raises(APIException) as exc:
        svc.request_withdrawal("user-1", Decimal("1000"), "card")
    assert exc.value.code == "INSUFFICIENT_FUNDS"


def test_large_amount_requires_verification():
    svc = make_service()
    with pytest.raises(APIException) as exc:
        svc.request_withdrawal("user-1", Decimal("15000.01"), "card")
    assert exc.value.status_code == 403
    assert exc.value.code == "VERIFICATION_REQUIRED"


def test_daily_limit_uses_trailing_24_hours():
    history = [
        (NOW - timedelta(hours=30), Decimal("15000"), "completed"),  # outside window
        (NOW - timedelta(hours=20), Decimal("15000"), "pending"),
        (NOW - timedelta(hours=10), Decimal("15000"), "completed"),
        (NOW - timedelta(hours=5), Decimal("15000"), "cancelled"),  # never counted
        (NOW - timedelta(hours=1), Decimal("15000"), "processing"),
    ]
    svc = make_service(repo=FakeWithdrawalRepo(history=history))

    ok = svc.request_withdrawal("user-1", Decimal("5000"), "card")
    assert ok["withdrawal"].amount == Decimal("5000.00")

    with pytest.raises(APIException) as exc:
        svc.request_withdrawal("user-1", Decimal("5000.01"), "card")
    assert exc.value.code == "DAILY_LIMIT_EXCEEDED"
    assert exc.value.extra["available"] == "5000"
    # the -20h withdrawal leaves the window in 4 hours
    assert exc.value.extra["retry_after_seconds"] == 4 * 3600


def test_verified_profile_gets_higher_limit_and_admin_notice():
    svc = make_service(profiles=FakeProfiles(verification_status="verified"))
    svc.request_withdrawal("user-1", Decimal("60000"), "bank_account")
    _, notify_admin = svc.repo.created[0]
    assert notify_admin is True


def test_unknown_profile_is_not_found():
    svc = make_service()
    with pytest.raises(APIException) as exc:
        svc.request_withdrawal("ghost", Decimal("1000"), "card")
    assert exc.value.status_code == 404


def test_list_includes_limits():
    svc = make_service()
    svc.request_withdrawal("user-1", Decimal("1000"), "crypto")
    listing = svc.list_withdrawals("user-1")
    assert len(listing["withdrawals"]) == 1
    assert listing["limits"]["daily_limit"] == Decimal("50000")
    assert listing["limits"]["fees"]["crypto"] == {"percent": 1, "min": 10, "max": 100}
    assert listing["pagination"] == {"total": 1, "limit": 20, "offset": 0}
