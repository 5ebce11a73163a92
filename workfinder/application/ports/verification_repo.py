from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol


class ActiveVerificationExists(Exception):
    """Another active code for the same phone won the insert."""


@dataclass
class VerificationDto:
    id: str
    phone: str
    code: str
    status: str
    attempts: int
    max_attempts: int
    expires_at: datetime
    created_at: datetime
    updated_at: datetime
    telegram_user_id: Optional[int] = None
    failure_reason: Optional[str] = None
    last_sent_at: Optional[datetime] = None
    verified_at: Optional[datetime] = None
    meta: Dict[str, Any] = field(default_factory=dict)

    def is_active(self, now: datetime) -> bool:
        return self.status in ("pending", "sent") and now < self.expires_at


class VerificationRepository(Protocol):
    def get(self, request_id: str) -> Optional[VerificationDto]:
        ...

    def find_active(self, phone: str, now: datetime) -> Optional[VerificationDto]:
        ...

    def request_times(self, phone: str, since: datetime) -> List[datetime]:
        ...

    def create(self, phone: str, code: str, expires_at: datetime, max_attempts: int, meta: Dict[str, Any], now: datetime) -> VerificationDto:
        ...

    def mark_sent(self, request_id: str, telegram_user_id: int, message_id: Optional[int], now: datetime) -> None:
        ...

    def mark_failed(self, request_id: str, reason: str, now: datetime, details: Optional[Dict[str, Any]] = None) -> None:
        ...

    def register_attempt(self, request_id: str, expected_attempts: int, now: datetime, details: Optional[Dict[str, Any]] = None) -> bool:
        ...

    def release_attempt(self, request_id: str, counted_attempts: int, now: datetime) -> bool:
        """Undo an attempt that matched but could not be turned into a session."""
        ...

    def mark_verified(self, request_id: str, now: datetime) -> bool:
        ...
