from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol


@dataclass
class DeliveryResult:
    success: bool
    message_id: Optional[int] = None
    error: Optional[str] = None


class BotSender(Protocol):
    async def send_verification_code(self, chat_id: int, phone: str, code: str) -> DeliveryResult:
        ...

    async def send_auth_success(self, chat_id: int, user_name: str) -> bool:
        ...

    async def send_text(self, chat_id: int, text: str, reply_markup: Optional[Dict[str, Any]] = None) -> DeliveryResult:
        ...
