"""Per-request thread resolution and ownership checks."""
from dataclasses import dataclass
from typing import Optional
from uuid import UUID, uuid4
import logging

from sqlalchemy.orm import Session

from models.threads import Thread, GUEST_OWNER, PLACEHOLDER_TITLE
from services.errors import ThreadOwnershipViolation
from services.threads import ThreadService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CallerIdentity:
    """An already-authenticated caller; ``user_id`` is None for guests."""
    user_id: Optional[int] = None

    @property
    def is_guest(self) -> bool:
        return self.user_id is None

    @property
    def owner_key(self) -> str:
        return GUEST_OWNER if self.is_guest else str(self.user_id)


GUEST = CallerIdentity()


@dataclass
class ThreadResolution:
    thread: Thread
    is_new: bool

    @property
    def thread_id(self) -> UUID:
        return self.thread.id


class ThreadIdentityResolver:
    """Decides which thread a chat request writes to."""

    def resolve(self, db: Session, caller: CallerIdentity, thread_ref: Optional[UUID]) -> ThreadResolution:
        """
        Resolve the caller's thread.
        
        Registered callers keep using a thread they own. A new thread is
        prepared for registered callers without a reference and for every
        guest request. New threads are not written here; they are inserted
        together with their first exchange.
        
        Raises:
            ThreadOwnershipViolation: the reference is unknown or owned by
                another identity.
        """
        if caller.is_guest:
            if thread_ref is not None:
                logger.debug(f"Ignoring thread reference {thread_ref} from guest caller")
            return self._new_thread(caller)

        if thread_ref is None:
            return self._new_thread(caller)

        thread = ThreadService.get_thread(db, thread_ref)
        if thread is None or thread.user_id != caller.owner_key:
            logger.warning(f"Caller {caller.owner_key} denied access to thread {thread_ref}")
            raise ThreadOwnershipViolation(thread_ref)

        return ThreadResolution(thread=thread, is_new=False)

    @staticmethod
    def _new_thread(caller: CallerIdentity) -> ThreadResolution:
        thread = Thread(
            id=uuid4(),
            user_id=caller.owner_key,
            title=PLACEHOLDER_TITLE,
            title_finalized=False,
        )
        return ThreadResolution(thread=thread, is_new=True)
