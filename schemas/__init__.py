from .threads import ThreadResponse, TurnResponse
from .auth import UserCreate, UserResponse, Token
from .chat import ChatResponse

__all__ = ["ThreadResponse", "TurnResponse",
           "UserCreate", "UserResponse", "Token",
           "ChatResponse"]
