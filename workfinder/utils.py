import re
import uuid
import hashlib
import secrets
import jwt
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any

from .core.config import settings

UUID_RE = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE)
PHONE_RE = re.compile(r"^\+\d{10,15}$")


def utcnow() -> datetime:
    """Timezone-aware UTC timestamp, the format stored in the database."""
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive values read back from backends that drop the offset (SQLite)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# =========================
# Phone numbers
# =========================
def normalize_phone(phone: Optional[str]) -> Optional[str]:
    """Normalize a phone number to +<digits>. Returns None when it cannot be normalized."""
    if not phone:
        return None
    digits = re.sub(r"\D", "", phone)

    # Russian numbers
    if len(digits) == 11 and digits.startswith("7"):
        return f"+{digits}"
    if len(digits) == 10 and digits.startswith("9"):
        return f"+7{digits}"

    # International numbers
    if 10 <= len(digits) <= 15:
        return f"+{digits}"
    return None


def is_valid_phone(phone: Optional[str]) -> bool:
    normalized = normalize_phone(phone)
    if not normalized:
        return False
    return bool(PHONE_RE.match(normalized))


def mask_phone(phone: str) -> str:
    """+79991234567 -> +7 (999) ***-**-67"""
    normalized = normalize_phone(phone)
    if not normalized:
        return phone
    return f"{normalized[:2]} ({normalized[2:5]}) ***-**-{normalized[-2:]}"


def hash_phone(phone: str) -> str:
    """Hash phone number for logs (one-way hash)"""
    return hashlib.sha256(phone.encode()).hexdigest()


def is_uuid(value: Optional[str]) -> bool:
    return bool(value) and isinstance(value, str) and bool(UUID_RE.match(value))


# =========================
# OTP Generation
# =========================
def generate_otp(length: int = 6) -> str:
    """Generate a cryptographically random numeric code."""
    return f"{secrets.randbelow(10 ** length):0{length}d}"


# =========================
# JWT Token Handling
# =========================
def create_jwt_token(data: Dict[str, Any], expires_minutes: Optional[int] = None) -> str:
    to_encode = data.copy()
    expire = utcnow() + timedelta(minutes=expires_minutes or settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    to_encode.update({"exp": expire, "type": "access"})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def create_refresh_token(data: Dict[str, Any], days: Optional[int] = None) -> str:
    to_encode = data.copy()
    expire = utcnow() + timedelta(days=days or settings.REFRESH_TOKEN_EXPIRE_DAYS)
    to_encode.update({"exp": expire, "type": "refresh", "jti": str(uuid.uuid4())})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_jwt_token(token: str) -> Optional[Dict[str, Any]]:
    """Decode and verify JWT token"""
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except jwt.ExpiredSignatureError:
        return None
    except jwt.InvalidTokenError:
        return None
