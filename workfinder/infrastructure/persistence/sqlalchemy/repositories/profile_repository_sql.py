from decimal import Decimal
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from .....db.models import Profile, TelegramUser
from .....application.ports.profile_repo import ProfileDto, ProfileRepository, TelegramIdentity
from .....utils import utcnow


class SqlProfileRepository(ProfileRepository):
    def __init__(self, session: Session):
        self.session = session

    def _to_dto(self, p: Profile) -> ProfileDto:
        return ProfileDto(
            id=p.id,
            phone=p.phone,
            full_name=p.full_name,
            telegram_id=p.telegram_id,
            balance=Decimal(p.balance or 0),
            pending_withdrawal=Decimal(p.pending_withdrawal or 0),
            verification_status=p.verification_status,
        )

    def get_by_id(self, profile_id: str) -> Optional[ProfileDto]:
        p = self.session.exec(select(Profile).where(Profile.id == profile_id)).first()
        return self._to_dto(p) if p else None

    def get_by_phone(self, phone: str) -> Optional[ProfileDto]:
        p = self.session.exec(select(Profile).where(Profile.phone == phone)).first()
        return self._to_dto(p) if p else None

    def get_telegram_identity(self, telegram_id: int) -> Optional[TelegramIdentity]:
        t = self.session.exec(select(TelegramUser).where(TelegramUser.telegram_id == telegram_id)).first()
        if not t:
            return None
        return TelegramIdentity(
            telegram_id=t.telegram_id,
            username=t.username,
            first_name=t.first_name,
            last_name=t.last_name,
            language_code=t.language_code,
        )

    def create_for_phone(self, phone: str, identity: Optional[TelegramIdentity]) -> ProfileDto:
        p = Profile(phone=phone, auth_method="telegram")
        if identity:
            self._apply_identity(p, identity)
        self.session.add(p)
        try:
            self.session.commit()
        except IntegrityError:
            # another sign-in created the profile for this phone first
            self.session.rollback()
            existing = self.get_by_phone(phone)
            if existing is None:
                raise
            return existing
        self.session.refresh(p)
        if identity:
            self._touch_telegram_user(p.id, phone, identity)
        return self._to_dto(p)

    def link_telegram(self, profile_id: str, phone: str, identity: TelegramIdentity) -> None:
        p = self.session.exec(select(Profile).where(Profile.id == profile_id)).first()
        if not p:
            return
        self._apply_identity(p, identity)
        p.updated_at = utcnow()
        self.session.add(p)
        self.session.commit()
        self._touch_telegram_user(profile_id, phone, identity)

    def _apply_identity(self, p: Profile, identity: TelegramIdentity) -> None:
        p.telegram_id = identity.telegram_id
        p.telegram_username = identity.username or p.telegram_username
        p.telegram_first_name = identity.first_name or p.telegram_first_name
        p.telegram_last_name = identity.last_name or p.telegram_last_name
        p.telegram_language_code = identity.language_code or p.telegram_language_code
        if not p.full_name and identity.full_name:
            p.full_name = identity.full_name

    def _touch_telegram_user(self, profile_id: str, phone: str, identity: TelegramIdentity) -> None:
        now = utcnow()
        t = self.session.exec(select(TelegramUser).where(TelegramUser.telegram_id == identity.telegram_id)).first()
        if not t:
            t = TelegramUser(
                telegram_id=identity.telegram_id,
                username=identity.username,
                first_name=identity.first_name,
                last_name=identity.last_name,
                language_code=identity.language_code,
            )
        t.phone = phone
        t.user_id = profile_id
        t.last_auth = now
        t.updated_at = now
        self.session.add(t)
        self.session.commit()
