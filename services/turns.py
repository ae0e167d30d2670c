"""Turn service: the append-only conversation log."""
from typing import List
from uuid import UUID
from sqlalchemy.orm import Session
from sqlalchemy import desc, func

from models.threads import Thread
from models.turns import Turn


class TurnService:
    """Service class for appending and reading turns."""
    
    @staticmethod
    def append_exchange(db: Session, thread: Thread, user_turn: Turn, assistant_turn: Turn, is_new_thread: bool) -> None:
        """Persist a user turn and its reply, creating the thread first when it is new."""
        if is_new_thread:
            db.add(thread)
            db.flush()
        else:
            db.query(Thread).filter(Thread.id == thread.id).update(
                {Thread.updated_at: func.now()}, synchronize_session=False
            )
        
        user_turn.thread_id = thread.id
        assistant_turn.thread_id = thread.id
        db.add(user_turn)
        db.flush()  # user turn gets the lower id
        db.add(assistant_turn)
        db.commit()
    
    @staticmethod
    def recent_turns(db: Session, thread_id: UUID, limit: int) -> List[Turn]:
        """Return the ``limit`` most recent turns of a thread, oldest first."""
        if limit <= 0:
            return []
        
        newest_first = db.query(Turn).filter(
            Turn.thread_id == thread_id
        ).order_by(
            desc(Turn.created_at), desc(Turn.id)
        ).limit(limit).all()
        
        return list(reversed(newest_first))
    
    @staticmethod
    def list_turns(db: Session, thread_id: UUID) -> List[Turn]:
        """Return every turn of a thread in chronological order."""
        return db.query(Turn).filter(
            Turn.thread_id == thread_id
        ).order_by(
            Turn.created_at, Turn.id
        ).all()
    
    @staticmethod
    def count_turns(db: Session, thread_id: UUID) -> int:
        """Count the turns stored for a thread."""
        return db.query(func.count(Turn.id)).filter(Turn.thread_id == thread_id).scalar() or 0
    
    @staticmethod
    def opening_turns(db: Session, thread_id: UUID, limit: int) -> List[Turn]:
        """Return the first ``limit`` turns of a thread."""
        return db.query(Turn).filter(
            Turn.thread_id == thread_id
        ).order_by(
            Turn.created_at, Turn.id
        ).limit(limit).all()
