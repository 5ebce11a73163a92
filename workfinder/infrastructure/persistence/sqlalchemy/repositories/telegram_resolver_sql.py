import logging
from typing import Callable, List, Optional, Tuple

from sqlmodel import Session, select

from .....db.models import Profile, TelegramUser, User
from .....application.ports.telegram_resolver import TelegramIdResolver

logger = logging.getLogger(__name__)


class SqlTelegramIdResolver(TelegramIdResolver):
    """Finds the Telegram chat id for a phone.

    Sources are tried in order and the first hit wins:
    bot-registered ``telegram_users`` (active only), then legacy ``users``
    rows, then marketplace ``profiles``.
    """

    def __init__(self, session: Session):
        self.session = session
        self.sources: List[Tuple[str, Callable[[str], Optional[int]]]] = [
            ("telegram_users", self._from_telegram_users),
            ("users", self._from_users),
            ("profiles", self._from_profiles),
        ]

    def resolve(self, phone: str) -> Optional[int]:
        for name, lookup in self.sources:
            telegram_id = lookup(phone)
            if telegram_id:
                logger.debug(f"Telegram id for phone resolved from {name}")
                return int(telegram_id)
        return None

    def _from_telegram_users(self, phone: str) -> Optional[int]:
        return self.session.exec(
            select(TelegramUser.telegram_id)
            .where(TelegramUser.phone == phone)
            .where(TelegramUser.is_active == True)  # noqa: E712
            .order_by(TelegramUser.updated_at.desc())
        ).first()

    def _from_users(self, phone: str) -> Optional[int]:
        return self.session.exec(
            select(User.telegram_id)
            .where(User.phone == phone)
            .where(User.telegram_id.is_not(None))
        ).first()

    def _from_profiles(self, phone: str) -> Optional[int]:
        return self.session.exec(
            select(Profile.telegram_id)
            .where(Profile.phone == phone)
            .where(Profile.telegram_id.is_not(None))
        ).first()
