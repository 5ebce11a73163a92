import hmac
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Header

from ..application.services.telegram_webhook_service import TelegramWebhookService
from ..core.config import settings
from ..exceptions import APIException
from .deps import get_webhook_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/telegram", tags=["Telegram Bot"])


@router.post("/webhook")
async def telegram_webhook(
    update: Dict[str, Any],
    secret_token: Optional[str] = Header(None, alias="X-Telegram-Bot-Api-Secret-Token"),
    service: TelegramWebhookService = Depends(get_webhook_service),
):
    """Receive bot updates pushed by Telegram (set with ``setWebhook``).

    When ``TELEGRAM_WEBHOOK_SECRET`` is configured the request must carry the
    same value in ``X-Telegram-Bot-Api-Secret-Token``.
    """
    expected = settings.TELEGRAM_WEBHOOK_SECRET
    if expected and not hmac.compare_digest(secret_token or "", expected):
        raise APIException(status_code=401, detail="Invalid webhook secret", code="UNAUTHORIZED")

    handled = await service.handle_update(update)
    logger.debug(f"Telegram update {update.get('update_id')} handled as {handled}")
    return {"success": True}
