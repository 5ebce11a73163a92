from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Protocol

from .profile_repo import TelegramIdentity


@dataclass
class TelegramUserDto:
    telegram_id: int
    username: Optional[str]
    first_name: Optional[str]
    phone: Optional[str]
    user_id: Optional[str]
    created: bool = False


class TelegramUserRepository(Protocol):
    def register(self, identity: TelegramIdentity, now: datetime) -> TelegramUserDto:
        """Insert or refresh the bot user row keyed by telegram id."""
        ...

    def link_phone(self, identity: TelegramIdentity, phone: str, now: datetime) -> TelegramUserDto:
        ...
