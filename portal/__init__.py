from portal.api_client import AccessClient, Actor
from portal.session import Navigator, SessionController, SessionState

__all__ = [
    "AccessClient",
    "Actor",
    "Navigator",
    "SessionController",
    "SessionState",
]
