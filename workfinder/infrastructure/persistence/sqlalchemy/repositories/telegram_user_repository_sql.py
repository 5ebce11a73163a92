import logging
from datetime import datetime

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from .....db.models import TelegramUser
from .....application.ports.profile_repo import TelegramIdentity
from .....application.ports.telegram_user_repo import TelegramUserDto, TelegramUserRepository

logger = logging.getLogger(__name__)


class SqlTelegramUserRepository(TelegramUserRepository):
    def __init__(self, session: Session):
        self.session = session

    def _to_dto(self, t: TelegramUser, created: bool = False) -> TelegramUserDto:
        return TelegramUserDto(
            telegram_id=t.telegram_id,
            username=t.username,
            first_name=t.first_name,
            phone=t.phone,
            user_id=t.user_id,
            created=created,
        )

    def _find(self, telegram_id: int):
        return self.session.exec(select(TelegramUser).where(TelegramUser.telegram_id == telegram_id)).first()

    def register(self, identity: TelegramIdentity, now: datetime) -> TelegramUserDto:
        t = self._find(identity.telegram_id)
        created = t is None
        if created:
            t = TelegramUser(telegram_id=identity.telegram_id, created_at=now)
        t.username = identity.username or t.username
        t.first_name = identity.first_name or t.first_name
        t.last_name = identity.last_name or t.last_name
        t.language_code = identity.language_code or t.language_code
        t.is_active = True
        t.last_seen = now
        t.updated_at = now
        self.session.add(t)
        try:
            self.session.commit()
        except IntegrityError:
            # a concurrent update for the same user inserted the row first
            self.session.rollback()
            logger.info(f"Telegram user {identity.telegram_id} registered concurrently, refreshing instead")
            return self.register(identity, now)
        self.session.refresh(t)
        return self._to_dto(t, created=created)

    def link_phone(self, identity: TelegramIdentity, phone: str, now: datetime) -> TelegramUserDto:
        self.register(identity, now)
        t = self._find(identity.telegram_id)
        t.phone = phone
        t.updated_at = now
        self.session.add(t)
        self.session.commit()
        self.session.refresh(t)
        return self._to_dto(t)
