"""Background title summarization for new threads."""
from typing import List, Optional, Set
from uuid import UUID
import asyncio
import logging
import random
import re

from kombu.exceptions import OperationalError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from celery_app import celery
from config import (
    TITLE_CONCURRENCY, TITLE_MAX_LENGTH, TITLE_MIN_TURNS, TITLE_RATE_LIMIT, TITLE_SWEEP_BATCH,
    TITLE_SWEEP_DELAY, TITLE_SWEEP_JITTER, TITLE_TIMEOUT,
)
from database import SessionLocal
from models.turns import Turn, USER_ROLE
from services.backends import BackendTier, configured_tiers, summary_tier
from services.context import ContextWindow
from services.threads import ThreadService
from services.turns import TurnService

logger = logging.getLogger(__name__)

SUMMARY_INSTRUCTION = (
    "You name chat conversations. Reply with a short title of at most six words that "
    "describes the conversation you are given. Reply with the title only: no quotes, "
    "no explanation, no trailing punctuation."
)
SUMMARY_SOURCE_TURNS = 4

_LABEL_PREFIX = re.compile(r"^(title|label)\s*:\s*", re.IGNORECASE)


def clean_title(raw: str, max_length: int = TITLE_MAX_LENGTH) -> str:
    """First non-empty line of a model reply, stripped of decoration and bounded in length."""
    line = next((candidate.strip() for candidate in raw.splitlines() if candidate.strip()), "")
    line = _LABEL_PREFIX.sub("", line.strip("#*` "))
    line = " ".join(line.strip("\"'“”‘’ ").split()).rstrip(".!;:,")
    if len(line) > max_length:
        line = line[:max_length - 1].rstrip() + "…"
    return line


def _conversation_text(turns: List[Turn]) -> str:
    lines = [f"{'User' if turn.role == USER_ROLE else 'Assistant'}: {turn.content}" for turn in turns]
    return "Conversation:\n" + "\n".join(lines)


class TitleSummarizer:
    """
    Gives untitled threads a short label using the cheapest tier.

    A thread moves ``untitled -> summarizing -> titled``. The summarizing
    state is tracked per process; the final write only succeeds while the
    thread is still untitled, so racing runs cannot flip a title back.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        tier: Optional[BackendTier],
        max_length: int = TITLE_MAX_LENGTH,
        timeout: float = TITLE_TIMEOUT,
        concurrency: int = TITLE_CONCURRENCY,
        sweep_batch: int = TITLE_SWEEP_BATCH,
        sweep_min_turns: int = TITLE_MIN_TURNS,
        sweep_delay: float = TITLE_SWEEP_DELAY,
        sweep_jitter: float = TITLE_SWEEP_JITTER,
    ):
        self._session_factory = session_factory
        self.tier = tier
        self.max_length = max_length
        self.timeout = timeout
        self.sweep_batch = sweep_batch
        self.sweep_min_turns = sweep_min_turns
        self.sweep_delay = sweep_delay
        self.sweep_jitter = sweep_jitter
        self._semaphore = asyncio.Semaphore(max(1, concurrency))
        self._in_flight: Set[UUID] = set()
        self._background: Set[asyncio.Task] = set()

    async def summarize(self, thread_id: UUID) -> Optional[str]:
        """Title one thread. Returns the stored title, or None when nothing changed."""
        if self.tier is None:
            logger.debug("No tier available for titles")
            return None
        if thread_id in self._in_flight:
            logger.debug(f"Thread {thread_id} is already being summarized")
            return None

        self._in_flight.add(thread_id)
        try:
            async with self._semaphore:
                return await self._summarize(thread_id)
        except Exception as e:
            logger.warning(f"Title summarization failed for thread {thread_id}: {e}")
            return None
        finally:
            self._in_flight.discard(thread_id)

    async def _summarize(self, thread_id: UUID) -> Optional[str]:
        with self._session_factory() as db:
            thread = ThreadService.get_thread(db, thread_id)
            if thread is None or thread.title_finalized:
                return None
            turns = TurnService.opening_turns(db, thread_id, SUMMARY_SOURCE_TURNS)
        if not turns:
            return None

        window = ContextWindow(
            persona=None,
            instruction=SUMMARY_INSTRUCTION,
            history=[],
            user_text=_conversation_text(turns),
        )
        reply = await asyncio.wait_for(self.tier.adapter.invoke(window), timeout=self.timeout)
        title = clean_title(reply.text, self.max_length)
        if not title:
            logger.info(f"Tier {self.tier.label} produced no usable title for thread {thread_id}")
            return None

        with self._session_factory() as db:
            finalized = ThreadService.finalize_title(db, thread_id, title)
        if not finalized:
            return None
        logger.info(f"Thread {thread_id} titled {title!r}")
        return title

    def maybe_summarize(self, thread_id: UUID) -> Optional[asyncio.Task]:
        """Schedule ``summarize`` without waiting for it."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug(f"No running loop; thread {thread_id} left for the sweep")
            return None
        task = loop.create_task(self.summarize(thread_id))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def sweep(self) -> int:
        """Title a small batch of threads that are still untitled. Returns how many were titled."""
        try:
            with self._session_factory() as db:
                thread_ids = ThreadService.untitled_threads(db, self.sweep_batch, self.sweep_min_turns)
        except SQLAlchemyError as e:
            logger.warning(f"Title sweep could not list threads: {e}")
            return 0

        titled = 0
        for thread_id in thread_ids:
            await asyncio.sleep(self.sweep_delay + random.uniform(0, self.sweep_jitter))
            if await self.summarize(thread_id):
                titled += 1

        if thread_ids:
            logger.info(f"Title sweep titled {titled} of {len(thread_ids)} threads")
        return titled


def build_summarizer() -> TitleSummarizer:
    return TitleSummarizer(SessionLocal, summary_tier(configured_tiers()))


@celery.task(name="summarize_thread", rate_limit=TITLE_RATE_LIMIT, ignore_result=True)
def summarize_thread(thread_id: str) -> Optional[str]:
    """Celery task to title one thread."""
    return asyncio.run(build_summarizer().summarize(UUID(thread_id)))


@celery.task(name="sweep_untitled_threads", ignore_result=True)
def sweep_untitled_threads() -> int:
    """Celery beat task retrying threads whose first summarization failed."""
    return asyncio.run(build_summarizer().sweep())


_local_summarizer: Optional[TitleSummarizer] = None


def _in_process_summarizer() -> TitleSummarizer:
    global _local_summarizer
    if _local_summarizer is None:
        _local_summarizer = build_summarizer()
    return _local_summarizer


def enqueue_title_summary(thread_id: UUID, fallback: Optional[TitleSummarizer] = None) -> None:
    """
    Request-path trigger: hand the thread to a worker and return immediately.

    Publishing does not retry, so a broker outage cannot stall the event loop.
    When the broker is unreachable the thread is titled in this process
    instead; if that is not possible either, the sweep picks it up later.
    """
    try:
        summarize_thread.apply_async((str(thread_id),), retry=False)
    except OperationalError as e:
        logger.warning(f"Could not queue title summary for thread {thread_id}, titling in process: {e}")
        (fallback or _in_process_summarizer()).maybe_summarize(thread_id)
