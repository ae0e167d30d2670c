"""Assembly of the bounded context handed to generation backends."""
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from config import CONTEXT_TURN_LIMIT
from models.turns import USER_ROLE, ASSISTANT_ROLE
from services.identity import ThreadResolution
from services.personas import Persona
from services.turns import TurnService

logger = logging.getLogger(__name__)

SYSTEM_ROLE = "system"

_PROMPT_HEADERS = {
    SYSTEM_ROLE: "### Instruction:",
    USER_ROLE: "### User:",
    ASSISTANT_ROLE: "### Assistant:",
}


@dataclass(frozen=True)
class ContextTurn:
    role: str
    text: str


@dataclass
class ContextWindow:
    """Persona instruction, bounded history and the new user text."""
    persona: Optional[Persona]
    instruction: str
    history: List[ContextTurn]
    user_text: str
    degraded: bool = False

    @property
    def turns(self) -> List[ContextTurn]:
        """History followed by the pending user turn."""
        return self.history + [ContextTurn(USER_ROLE, self.user_text)]

    def as_messages(self) -> List[Dict[str, str]]:
        """Role-tagged serialization with the instruction as the leading system entry."""
        messages = [{"role": SYSTEM_ROLE, "content": self.instruction}]
        messages.extend({"role": turn.role, "content": turn.text} for turn in self.turns)
        return messages

    def as_prompt(self) -> str:
        """Flat instruction-tagged serialization for single-prompt backends."""
        blocks = [f"{_PROMPT_HEADERS[SYSTEM_ROLE]}\n{self.instruction}"]
        blocks.extend(f"{_PROMPT_HEADERS[turn.role]}\n{turn.text}" for turn in self.turns)
        blocks.append(_PROMPT_HEADERS[ASSISTANT_ROLE])
        return "\n\n".join(blocks) + "\n"


def normalize_transcript(entries: Sequence, limit: int) -> List[ContextTurn]:
    """
    Validate a client-supplied transcript.
    
    Entries with blank text are dropped, any role other than ``user``
    becomes ``assistant``, and only the last ``limit`` entries are kept.
    """
    turns = []
    for entry in entries:
        text = (getattr(entry, "text", None) or "").strip()
        if not text:
            continue
        role = (getattr(entry, "role", None) or "").strip().lower()
        turns.append(ContextTurn(USER_ROLE if role == USER_ROLE else ASSISTANT_ROLE, text))
    return turns[-limit:] if limit > 0 else []


class ContextBuilder:
    """Builds a ContextWindow from stored history or a client transcript."""

    def __init__(self, turn_limit: int = CONTEXT_TURN_LIMIT):
        self.turn_limit = turn_limit

    def build(
        self,
        db: Session,
        resolution: ThreadResolution,
        persona: Persona,
        user_text: str,
        transcript: Optional[Sequence] = None,
        from_transcript: bool = False,
    ) -> ContextWindow:
        """
        Assemble the context for one generation call.
        
        When ``from_transcript`` is set the client transcript replaces stored
        history and storage is not read. Otherwise the last ``turn_limit``
        turns of an existing thread are used. A storage failure degrades to an
        empty history instead of failing the request.
        """
        degraded = False
        if from_transcript:
            history = normalize_transcript(transcript or [], self.turn_limit)
        elif resolution.is_new:
            history = []
        else:
            try:
                stored = TurnService.recent_turns(db, resolution.thread_id, self.turn_limit)
                history = [ContextTurn(turn.role, turn.content) for turn in stored]
            except SQLAlchemyError as e:
                db.rollback()
                logger.warning(f"Context retrieval degraded for thread {resolution.thread_id}: {e}")
                history = []
                degraded = True

        return ContextWindow(
            persona=persona,
            instruction=persona.instruction,
            history=history,
            user_text=user_text,
            degraded=degraded,
        )
