from typing import Optional

from fastapi import Depends, Request
from sqlmodel import Session

from ..application.ports.bot_sender import BotSender
from ..application.services.otp_service import ClientInfo, OTPService
from ..application.services.search_service import SearchService
from ..application.services.telegram_webhook_service import TelegramWebhookService
from ..application.services.withdrawal_service import WithdrawalService
from ..database import get_session
from ..exceptions import APIException
from ..infrastructure.audit.std_logger import StdAuditLogger
from ..infrastructure.cache.redis_cache import CacheService
from ..infrastructure.persistence.sqlalchemy.repositories.order_repository_sql import SqlOrderRepository
from ..infrastructure.persistence.sqlalchemy.repositories.profile_repository_sql import SqlProfileRepository
from ..infrastructure.persistence.sqlalchemy.repositories.session_repository_sql import SqlSessionRepository
from ..infrastructure.persistence.sqlalchemy.repositories.telegram_resolver_sql import SqlTelegramIdResolver
from ..infrastructure.persistence.sqlalchemy.repositories.telegram_user_repository_sql import SqlTelegramUserRepository
from ..infrastructure.persistence.sqlalchemy.repositories.verification_repository_sql import SqlVerificationRepository
from ..infrastructure.persistence.sqlalchemy.repositories.withdrawal_repository_sql import SqlWithdrawalRepository
from ..utils import decode_jwt_token


def get_cache(request: Request) -> Optional[CacheService]:
    return getattr(request.app.state, "cache", None)


def get_bot(request: Request) -> BotSender:
    return request.app.state.bot


def get_client_info(request: Request) -> ClientInfo:
    forwarded = request.headers.get("x-forwarded-for")
    ip = forwarded.split(",")[0].strip() if forwarded else (request.client.host if request.client else None)
    return ClientInfo(ip_address=ip, user_agent=request.headers.get("user-agent"))


def get_otp_service(
    session: Session = Depends(get_session),
    bot: BotSender = Depends(get_bot),
    cache: Optional[CacheService] = Depends(get_cache),
) -> OTPService:
    return OTPService(
        verifications=SqlVerificationRepository(session),
        resolver=SqlTelegramIdResolver(session),
        bot=bot,
        profiles=SqlProfileRepository(session),
        sessions=SqlSessionRepository(session),
        audit=StdAuditLogger(),
        cache=cache,
    )


def get_withdrawal_service(session: Session = Depends(get_session)) -> WithdrawalService:
    return WithdrawalService(repo=SqlWithdrawalRepository(session), profiles=SqlProfileRepository(session))


def get_search_service(session: Session = Depends(get_session)) -> SearchService:
    return SearchService(repo=SqlOrderRepository(session))


def get_webhook_service(session: Session = Depends(get_session), bot: BotSender = Depends(get_bot)) -> TelegramWebhookService:
    return TelegramWebhookService(users=SqlTelegramUserRepository(session), bot=bot)


def get_current_user(request: Request) -> str:
    """User id from the Bearer header, falling back to the access_token cookie."""
    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.startswith("Bearer "):
        token = auth_header.split(" ", 1)[1]
    else:
        token = request.cookies.get("access_token")
    if not token:
        raise APIException(status_code=401, detail="Authentication required", code="UNAUTHORIZED")

    payload = decode_jwt_token(token)
    if not payload or payload.get("type") != "access":
        raise APIException(status_code=401, detail="Invalid or expired token", code="UNAUTHORIZED")
    user_id = payload.get("sub")
    if not user_id:
        raise APIException(status_code=401, detail="Invalid token: missing user ID", code="UNAUTHORIZED")
    return user_id
