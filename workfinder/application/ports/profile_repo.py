from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Protocol


@dataclass
class ProfileDto:
    id: str
    phone: Optional[str]
    full_name: Optional[str]
    telegram_id: Optional[int]
    balance: Decimal
    pending_withdrawal: Decimal
    verification_status: str


@dataclass
class TelegramIdentity:
    telegram_id: int
    username: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    language_code: Optional[str] = None

    @property
    def full_name(self) -> Optional[str]:
        if not self.first_name:
            return None
        return f"{self.first_name} {self.last_name or ''}".strip()


class ProfileRepository(Protocol):
    def get_by_id(self, profile_id: str) -> Optional[ProfileDto]:
        ...

    def get_by_phone(self, phone: str) -> Optional[ProfileDto]:
        ...

    def get_telegram_identity(self, telegram_id: int) -> Optional[TelegramIdentity]:
        ...

    def create_for_phone(self, phone: str, identity: Optional[TelegramIdentity]) -> ProfileDto:
        ...

    def link_telegram(self, profile_id: str, phone: str, identity: TelegramIdentity) -> None:
        ...
