"""Scripted backends and seeding helpers shared by the tests."""
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Sequence, Tuple
from uuid import UUID, uuid4
import asyncio

from models import Thread, Turn, USER_ROLE, USER_INPUT_TIER
from services.backends import BackendAdapter, BackendReply, BackendTier, HOSTED_TRANSPORT


class ScriptedAdapter(BackendAdapter):
    """Adapter whose behaviour is fixed up front; records every call."""

    def __init__(
        self,
        reply: str = "",
        fail: Optional[Exception] = None,
        delay: float = 0.0,
        fragments: Optional[Sequence[str]] = None,
        fail_after_fragments: Optional[Exception] = None,
    ):
        self.reply = reply
        self.fail = fail
        self.delay = delay
        self.fragments = list(fragments) if fragments else None
        self.fail_after_fragments = fail_after_fragments
        self.calls = 0
        self.windows = []

    async def invoke(self, window, on_fragment=None):
        self.calls += 1
        self.windows.append(window)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail is not None:
            raise self.fail
        if on_fragment is not None and self.fragments:
            for fragment in self.fragments:
                on_fragment(fragment)
                await asyncio.sleep(0)
            if self.fail_after_fragments is not None:
                raise self.fail_after_fragments
            return BackendReply("".join(self.fragments), True)
        return BackendReply(self.reply, False)


def tier(label: str, adapter: BackendAdapter, timeout: float = 1.0, transport: str = HOSTED_TRANSPORT) -> BackendTier:
    return BackendTier(label=label, adapter=adapter, timeout=timeout, transport=transport)


def seed_thread(
    session_factory,
    owner: str = "1",
    turns: Sequence[Tuple[str, str]] = (),
    title_finalized: bool = False,
    created_at: Optional[datetime] = None,
) -> UUID:
    """Insert a thread with ``(role, text)`` turns one second apart."""
    start = created_at or datetime(2026, 1, 1, tzinfo=timezone.utc)
    with session_factory() as db:
        thread = Thread(
            id=uuid4(),
            user_id=owner,
            title="Done" if title_finalized else "New Chat",
            title_finalized=title_finalized,
            created_at=start,
        )
        db.add(thread)
        db.flush()
        for index, (role, text) in enumerate(turns):
            db.add(Turn(
                thread_id=thread.id,
                role=role,
                content=text,
                persona="casual",
                tier_label=USER_INPUT_TIER if role == USER_ROLE else "test-tier",
                created_at=start + timedelta(seconds=index),
            ))
        db.commit()
        return thread.id


def stored_turns(session_factory, thread_id: UUID) -> List[Tuple[str, str, str]]:
    with session_factory() as db:
        rows = db.query(Turn).filter(Turn.thread_id == thread_id).order_by(Turn.created_at, Turn.id).all()
        return [(row.role, row.content, row.tier_label) for row in rows]
