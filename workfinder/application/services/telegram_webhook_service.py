import html
import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from ...core.config import settings
from ...utils import mask_phone, normalize_phone, utcnow
from ..ports.bot_sender import BotSender
from ..ports.profile_repo import TelegramIdentity
from ..ports.telegram_user_repo import TelegramUserRepository

logger = logging.getLogger(__name__)

CODE_RE = re.compile(r"^\d{6}$")
COMMAND_RE = re.compile(r"^/(\w+)(?:@\w+)?(?:\s+(.*))?$", re.DOTALL)

CONTACT_KEYBOARD = {
    "keyboard": [[{"text": "📱 Share phone number", "request_contact": True}]],
    "resize_keyboard": True,
    "one_time_keyboard": True,
}
REMOVE_KEYBOARD = {"remove_keyboard": True}


def _identity(sender: Dict[str, Any]) -> TelegramIdentity:
    return TelegramIdentity(
        telegram_id=sender["id"],
        username=sender.get("username"),
        first_name=sender.get("first_name"),
        last_name=sender.get("last_name"),
        language_code=sender.get("language_code"),
    )


def login_steps_text() -> str:
    return (
        "📱 <b>How to sign in:</b>\n\n"
        "1. On the site press \"Sign in with Telegram\"\n"
        "2. Enter the phone number linked to this Telegram account\n"
        "3. The bot sends you a 6-digit code here\n"
        "4. Enter the code on the site\n\n"
        "Codes are valid for 10 minutes. Never share them with anyone."
    )


def help_text() -> str:
    return (
        "🆘 <b>WorkFinder bot help</b>\n\n"
        "/start - register with the bot and share your phone\n"
        "/login - how to sign in on the site\n"
        "/help - show this message\n\n"
        f"{login_steps_text()}"
    )


@dataclass
class TelegramWebhookService:
    """Handles updates Telegram posts to the bot webhook.

    ``/start`` registers the sender in ``telegram_users`` and asks for the phone
    number; a shared contact links that phone so login codes can be delivered.
    """

    users: TelegramUserRepository
    bot: BotSender
    clock: Callable[[], datetime] = utcnow

    async def handle_update(self, update: Dict[str, Any]) -> str:
        """Dispatch one update and return the name of the handler that ran."""
        if "callback_query" in update:
            return await self._handle_callback(update["callback_query"])

        message = update.get("message") or update.get("edited_message")
        if not message or "from" not in message or "chat" not in message:
            return "ignored"
        if message["from"].get("is_bot"):
            return "ignored"

        chat_id = message["chat"]["id"]
        if "contact" in message:
            return await self._handle_contact(chat_id, message)

        text = (message.get("text") or "").strip()
        command = COMMAND_RE.match(text)
        if command:
            name = command.group(1).lower()
            if name == "start":
                return await self._handle_start(chat_id, message, command.group(2))
            if name == "login":
                await self._reply(chat_id, login_steps_text(), self._site_button())
                return "login"
            await self._reply(chat_id, help_text())
            return "help"

        if CODE_RE.match(text):
            # codes are entered on the site, never redeemed through the bot
            await self._reply(chat_id, "The code is entered on the WorkFinder site, not here. Return to the login page to finish signing in.")
            return "code"

        await self._reply(chat_id, help_text())
        return "help"

    async def _handle_start(self, chat_id: int, message: Dict[str, Any], payload: Optional[str]) -> str:
        user = self.users.register(_identity(message["from"]), self.clock())
        if payload:
            logger.info(f"Telegram user {user.telegram_id} started the bot with payload {payload!r}")
        logger.info(f"Telegram user {user.telegram_id} {'registered' if user.created else 'refreshed'} via /start")

        name = html.escape(user.first_name or user.username or "friend")
        if user.phone:
            text = (
                f"👋 <b>Hi, {name}!</b>\n\n"
                f"Your phone {html.escape(mask_phone(user.phone))} is linked. "
                "Login codes for WorkFinder will arrive in this chat.\n\n"
                f"{login_steps_text()}"
            )
            await self._reply(chat_id, text, self._site_button())
        else:
            text = (
                f"👋 <b>Hi, {name}!</b>\n\n"
                "Welcome to the <b>WorkFinder</b> bot. Share your phone number so we can "
                "send your login codes to this chat."
            )
            await self._reply(chat_id, text, CONTACT_KEYBOARD)
        return "start"

    async def _handle_contact(self, chat_id: int, message: Dict[str, Any]) -> str:
        contact = message["contact"]
        sender = message["from"]
        if contact.get("user_id") != sender["id"]:
            await self._reply(chat_id, "Please share your own contact using the button below.", CONTACT_KEYBOARD)
            return "contact_rejected"

        phone = normalize_phone(contact.get("phone_number"))
        if not phone:
            await self._reply(chat_id, "This phone number cannot be used for WorkFinder login.", CONTACT_KEYBOARD)
            return "contact_rejected"

        self.users.link_phone(_identity(sender), phone, self.clock())
        logger.info(f"Telegram user {sender['id']} linked phone {mask_phone(phone)}")
        await self._reply(
            chat_id,
            f"✅ Phone {html.escape(mask_phone(phone))} is linked. You can now sign in to WorkFinder with it.",
            REMOVE_KEYBOARD,
        )
        return "contact"

    async def _handle_callback(self, query: Dict[str, Any]) -> str:
        chat = (query.get("message") or {}).get("chat") or {}
        if query.get("data") != "start_login" or "id" not in chat:
            return "ignored"
        await self._reply(chat["id"], login_steps_text(), self._site_button())
        return "login"

    def _site_button(self) -> Optional[Dict[str, Any]]:
        if not settings.PUBLIC_APP_URL:
            return None
        return {"inline_keyboard": [[{"text": "🌐 Open WorkFinder", "url": settings.PUBLIC_APP_URL}]]}

    async def _reply(self, chat_id: int, text: str, reply_markup: Optional[Dict[str, Any]] = None) -> None:
        result = await self.bot.send_text(chat_id, text, reply_markup)
        if not result.success:
            logger.warning(f"Webhook reply to chat {chat_id} failed: {result.error}")
