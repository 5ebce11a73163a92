from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine, select

from workfinder.application.ports.order_repo import SearchFilters
from workfinder.application.ports.profile_repo import TelegramIdentity
from workfinder.application.ports.withdrawal_repo import BalanceChanged
from workfinder.db.models import AdminNotification, BalanceTransaction, Notification, Order, Profile, TelegramUser, UserSession
from workfinder.infrastructure.persistence.sqlalchemy.repositories.order_repository_sql import SqlOrderRepository
from workfinder.infrastructure.persistence.sqlalchemy.repositories.profile_repository_sql import SqlProfileRepository
from workfinder.infrastructure.persistence.sqlalchemy.repositories.session_repository_sql import SqlSessionRepository
from workfinder.infrastructure.persistence.sqlalchemy.repositories.withdrawal_repository_sql import SqlWithdrawalRepository

NOW = datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def session():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    SQLModel.metadata.create_all(engine)
    with Session(engine) as s:
        yield s


@pytest.fixture
def profile(session):
    p = Profile(phone="+79991234567", balance=Decimal("80000"), verification_status="verified")
    session.add(p)
    session.commit()
    session.refresh(p)
    return p


def test_withdrawal_reserves_balance_and_writes_side_records(session, profile):
    repo = SqlWithdrawalRepository(session)
    w = repo.create_request(profile.id, Decimal("60000"), Decimal("200"), Decimal("59800"), "bank_account", {"iban": "X"}, notify_admin=True)
    assert w.status == "pending"
    assert w.amount == Decimal("60000")

    stored = SqlProfileRepository(session).get_by_id(profile.id)
    assert stored.balance == Decimal("20000")
    assert stored.pending_withdrawal == Decimal("60000")

    tx = session.exec(select(BalanceTransaction)).one()
    assert tx.amount == Decimal("-60000")
    assert tx.reference_id == w.id
    assert session.exec(select(Notification)).one().type == "withdrawal_requested"
    assert session.exec(select(AdminNotification)).one().priority == "high"

    assert [amount for _, amount in repo.recent(profile.id, NOW - timedelta(days=3650), ("pending",))] == [Decimal("60000")]
    items, total = repo.list_for_user(profile.id, None, 20, 0)
    assert total == 1 and items[0].id == w.id


def test_withdrawal_refuses_when_balance_moved(session, profile):
    repo = SqlWithdrawalRepository(session)
    with pytest.raises(BalanceChanged):
        repo.create_request(profile.id, Decimal("90000"), Decimal("200"), Decimal("89800"), "card", {}, notify_admin=False)
    assert SqlProfileRepository(session).get_by_id(profile.id).balance == Decimal("80000")
    assert session.exec(select(BalanceTransaction)).all() == []


def test_profile_create_and_link_telegram(session):
    repo = SqlProfileRepository(session)
    identity = TelegramIdentity(telegram_id=424242, username="ivan", first_name="Ivan", last_name="Petrov")
    created = repo.create_for_phone("+79990000000", identity)
    assert created.full_name == "Ivan Petrov"
    assert created.telegram_id == 424242

    tg = session.exec(select(TelegramUser).where(TelegramUser.telegram_id == 424242)).one()
    assert tg.user_id == created.id
    assert tg.phone == "+79990000000"
    assert repo.get_telegram_identity(424242).username == "ivan"

    repo.link_telegram(created.id, "+79990000000", TelegramIdentity(telegram_id=424242, username="ivan_new"))
    assert session.exec(select(TelegramUser)).one().last_auth is not None
    assert session.exec(select(Profile).where(Profile.id == created.id)).one().telegram_username == "ivan_new"


def seed_orders(session):
    rows = [
        Order(title="Fix tap", category="plumbing", city="Moscow", budget=Decimal("1500"), bids_count=4, created_at=NOW - timedelta(days=1)),
        Order(title="Paint wall", category="repair", city="Moscow", budget=Decimal("8000"), bids_count=9, created_at=NOW - timedelta(days=2)),
        Order(title="Clean flat", category="cleaning", city="Saint Petersburg", budget=Decimal("3000"), bids_count=1, created_at=NOW - timedelta(days=3)),
        Order(title="Old job", category="repair", city="Moscow", budget=Decimal("500"), status="closed", created_at=NOW - timedelta(days=4)),
    ]
    for r in rows:
        session.add(r)
    session.commit()


def test_order_search_filters_and_sorting(session):
    seed_orders(session)
    repo = SqlOrderRepository(session)

    orders, total = repo.search(SearchFilters(), 0, 20)
    assert total == 3
    assert [o.title for o in orders] == ["Fix tap", "Paint wall", "Clean flat"]

    orders, total = repo.search(SearchFilters(city="moscow", sort_by="price_desc"), 0, 20)
    assert [o.title for o in orders] == ["Paint wall", "Fix tap"]

    orders, total = repo.search(SearchFilters(category=["repair", "cleaning"], min_price=Decimal("2000")), 0, 20)
    assert {o.title for o in orders} == {"Paint wall", "Clean flat"}

    orders, total = repo.search(SearchFilters(status=["closed"]), 0, 20)
    assert [o.title for o in orders] == ["Old job"]

    orders, total = repo.search(SearchFilters(sort_by="popularity"), 1, 1)
    assert total == 3
    assert [o.title for o in orders] == ["Fix tap"]


def test_popular_categories_and_cities(session):
    seed_orders(session)
    repo = SqlOrderRepository(session)
    assert repo.popular_categories(2) == [("cleaning", 1), ("plumbing", 1)]
    assert repo.popular_cities(5) == [("Moscow", 2), ("Saint Petersburg", 1)]


def test_session_revoke_removes_the_row(session, profile):
    repo = SqlSessionRepository(session)
    created = repo.create(profile.id, "access", "refresh", NOW + timedelta(days=7), ip_address="10.0.0.1")
    assert created.expires_at == NOW + timedelta(days=7)
    assert created.expires_at.tzinfo is not None

    repo.revoke(created.id)
    assert session.get(UserSession, created.id) is None
