"""Chat orchestration: resolve the thread, build context, generate, persist."""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import AsyncIterator, Callable, Optional
from uuid import UUID
import logging

from sqlalchemy.orm import sessionmaker

from dtos.chat_request import ChatRequest
from models.turns import Turn, USER_ROLE, ASSISTANT_ROLE, USER_INPUT_TIER
from services.context import ContextBuilder, ContextWindow
from services.dispatcher import DispatchResult, WaterfallDispatcher
from services.identity import CallerIdentity, ThreadIdentityResolver, ThreadResolution
from services.streaming import StreamAssembler
from services.turns import TurnService

logger = logging.getLogger(__name__)

SummaryTrigger = Callable[[UUID], None]


@dataclass
class ChatPlan:
    thread_id: UUID
    resolution: ThreadResolution
    window: ContextWindow
    received_at: datetime


@dataclass(frozen=True)
class ChatReply:
    text: str
    thread_id: UUID
    tier_label: str
    is_new_thread: bool


class ChatStream:
    """A reply delivered incrementally; ``reply`` is set once the last fragment is out."""

    def __init__(self, service: "ChatService", plan: ChatPlan):
        self._service = service
        self._plan = plan
        self._assembler = StreamAssembler(service.dispatcher)
        self.thread_id = plan.thread_id
        self.is_new_thread = plan.resolution.is_new
        self.reply: Optional[ChatReply] = None

    async def fragments(self) -> AsyncIterator[str]:
        async for fragment in self._assembler.fragments(self._plan.window):
            yield fragment
        self.reply = self._service.complete(self._plan, self._assembler.result)


class ChatService:
    """
    Entry point for one chat request.

    Nothing is written unless generation succeeds; the user turn and the
    reply are then stored together, and new threads are queued for a title.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        dispatcher: WaterfallDispatcher,
        summarize: Optional[SummaryTrigger] = None,
        resolver: Optional[ThreadIdentityResolver] = None,
        builder: Optional[ContextBuilder] = None,
    ):
        self._session_factory = session_factory
        self.dispatcher = dispatcher
        self._summarize = summarize
        self._resolver = resolver or ThreadIdentityResolver()
        self._builder = builder or ContextBuilder()

    def prepare(self, caller: CallerIdentity, request: ChatRequest) -> ChatPlan:
        """Resolve the thread and build its context. Raises ThreadOwnershipViolation."""
        received_at = datetime.now(timezone.utc)
        with self._session_factory() as db:
            resolution = self._resolver.resolve(db, caller, request.thread_id)
            window = self._builder.build(
                db,
                resolution,
                request.persona,
                request.prompt,
                transcript=request.transcript,
                from_transcript=caller.is_guest,
            )
        return ChatPlan(
            thread_id=resolution.thread_id,
            resolution=resolution,
            window=window,
            received_at=received_at,
        )

    async def reply(self, caller: CallerIdentity, request: ChatRequest) -> ChatReply:
        """Generate a buffered reply. Raises GenerationUnavailable or ThreadOwnershipViolation."""
        plan = self.prepare(caller, request)
        result = await self.dispatcher.dispatch(plan.window)
        return self.complete(plan, result)

    def stream_reply(self, caller: CallerIdentity, request: ChatRequest) -> ChatStream:
        """Prepare a streamed reply; generation starts when fragments are consumed."""
        return ChatStream(self, self.prepare(caller, request))

    def complete(self, plan: ChatPlan, result: DispatchResult) -> ChatReply:
        """Persist a successful exchange and trigger titling for new threads."""
        persona = plan.window.persona.value
        user_turn = Turn(
            role=USER_ROLE,
            content=plan.window.user_text,
            persona=persona,
            tier_label=USER_INPUT_TIER,
            created_at=plan.received_at,
        )
        assistant_turn = Turn(
            role=ASSISTANT_ROLE,
            content=result.text,
            persona=persona,
            tier_label=result.tier_label,
            created_at=max(datetime.now(timezone.utc), plan.received_at),
        )
        with self._session_factory() as db:
            TurnService.append_exchange(db, plan.resolution.thread, user_turn, assistant_turn, plan.resolution.is_new)

        if plan.resolution.is_new:
            self._trigger_summary(plan.thread_id)

        return ChatReply(
            text=result.text,
            thread_id=plan.thread_id,
            tier_label=result.tier_label,
            is_new_thread=plan.resolution.is_new,
        )

    def _trigger_summary(self, thread_id: UUID) -> None:
        if self._summarize is None:
            return
        try:
            self._summarize(thread_id)
        except Exception as e:
            logger.warning(f"Could not queue title summary for thread {thread_id}: {e}")
