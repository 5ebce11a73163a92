import asyncio
import html
import logging
from typing import Any, Dict, Optional

import aiohttp

from ...application.ports.bot_sender import BotSender, DeliveryResult
from ...utils import mask_phone

logger = logging.getLogger(__name__)

TELEGRAM_ERRORS = {
    403: "User has blocked the bot or never started it",
    400: "Chat not found or message rejected by Telegram",
    429: "Too many messages, Telegram asked to slow down",
}


class TelegramBotClient(BotSender):
    """Telegram Bot API sender over a shared aiohttp session.

    ``start()`` opens the session and ``close()`` releases it; both are called
    from the application lifespan.
    """

    def __init__(self, token: str, api_url: str = "https://api.telegram.org", app_url: str = "", timeout_seconds: int = 10) -> None:
        self.token = token
        self.api_url = api_url.rstrip("/")
        self.app_url = app_url.rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._session: Optional[aiohttp.ClientSession] = None

    async def start(self) -> None:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    @property
    def configured(self) -> bool:
        return bool(self.token)

    async def send_verification_code(self, chat_id: int, phone: str, code: str) -> DeliveryResult:
        text = (
            "🔐 <b>WorkFinder login code</b>\n\n"
            f"Your code: <code>{html.escape(code)}</code>\n"
            f"Phone: {html.escape(mask_phone(phone))}\n\n"
            "The code is valid for 10 minutes. Never share it with anyone."
        )
        return await self._send_message(chat_id, text, self._continue_button())

    async def send_auth_success(self, chat_id: int, user_name: str) -> bool:
        text = (
            f"✅ <b>Login successful</b>\n\n"
            f"Welcome, {html.escape(user_name)}! You are now signed in to WorkFinder."
        )
        result = await self._send_message(chat_id, text, self._continue_button())
        return result.success

    async def send_text(self, chat_id: int, text: str, reply_markup: Optional[Dict[str, Any]] = None) -> DeliveryResult:
        """Send an HTML message, used by the webhook replies."""
        return await self._send_message(chat_id, text, reply_markup)

    def _continue_button(self) -> Optional[Dict[str, Any]]:
        if not self.app_url:
            return None
        return {"inline_keyboard": [[{"text": "Continue on site", "url": f"{self.app_url}/dashboard"}]]}

    async def _send_message(self, chat_id: int, text: str, reply_markup: Optional[Dict[str, Any]] = None) -> DeliveryResult:
        if not self.configured:
            return DeliveryResult(success=False, error="Telegram bot token is not configured")
        await self.start()

        payload: Dict[str, Any] = {"chat_id": chat_id, "text": text, "parse_mode": "HTML"}
        if reply_markup:
            payload["reply_markup"] = reply_markup

        url = f"{self.api_url}/bot{self.token}/sendMessage"
        try:
            async with self._session.post(url, json=payload) as response:
                data = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"Telegram sendMessage failed for chat {chat_id}: {e}")
            return DeliveryResult(success=False, error=f"Telegram is unreachable: {e}")

        if not data.get("ok"):
            error_code = data.get("error_code")
            description = data.get("description", "unknown error")
            logger.warning(f"Telegram rejected message to chat {chat_id}: {error_code} {description}")
            return DeliveryResult(success=False, error=TELEGRAM_ERRORS.get(error_code, description))

        message_id = data.get("result", {}).get("message_id")
        logger.info(f"Telegram message {message_id} delivered to chat {chat_id}")
        return DeliveryResult(success=True, message_id=message_id)
