# Models package (re-export feature modules for stable imports)
from .auth.verification import TelegramVerification, AuthLog, ACTIVE_STATUSES
from .auth.telegram_user import TelegramUser
from .users.user import User
from .users.profile import Profile
from .users.session import UserSession
from .users.notification import Notification, AdminNotification
from .payments.withdrawal import Withdrawal, BalanceTransaction
from .projects.order import Order

__all__ = [
    "TelegramVerification",
    "AuthLog",
    "ACTIVE_STATUSES",
    "TelegramUser",
    "User",
    "Profile",
    "UserSession",
    "Notification",
    "AdminNotification",
    "Withdrawal",
    "BalanceTransaction",
    "Order",
]
