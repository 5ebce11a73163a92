from typing import Optional, Protocol


class TelegramIdResolver(Protocol):
    def resolve(self, phone: str) -> Optional[int]:
        ...
