from models.app_notification import AppNotification
from models.auth_session import AuthSession
from models.company import Company
from models.invitation import Invitation
from models.user import User

__all__ = [
    "User",
    "AuthSession",
    "Company",
    "Invitation",
    "AppNotification",
]
