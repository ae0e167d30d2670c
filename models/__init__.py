from .threads import Thread, Base, GUEST_OWNER, PLACEHOLDER_TITLE
from .turns import Turn, USER_ROLE, ASSISTANT_ROLE, USER_INPUT_TIER
from .users import User

__all__ = ["Thread", "Turn", "User", "Base", "GUEST_OWNER", "PLACEHOLDER_TITLE",
           "USER_ROLE", "ASSISTANT_ROLE", "USER_INPUT_TIER"]
