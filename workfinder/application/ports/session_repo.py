from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional, Protocol


@dataclass
class SessionDto:
    id: str
    user_id: str
    token: str
    refresh_token: str
    expires_at: datetime
    created_at: datetime


class SessionRepository:
    def create(self, user_id: str, token: str, refresh_token: str, expires_at: datetime, ip_address: Optional[str] = None, device_info: Optional[str] = None) -> SessionDto:
        ...

    def revoke(self, session_id: str) -> None:
        ...

    def record_login(self, user_id: str, phone: str, telegram_user_id: Optional[int], verification_id: str, ip_address: Optional[str], user_agent: Optional[str]) -> None:
        ...


class SessionCache(Protocol):
    def set_session(self, session_id: str, data: Dict[str, Any], ttl: int = 86400) -> bool:
        ...
