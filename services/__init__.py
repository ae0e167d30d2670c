from .threads import ThreadService
from .turns import TurnService
from .auth import AuthService

__all__ = ["ThreadService", "TurnService", "AuthService"]
