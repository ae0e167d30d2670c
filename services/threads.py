"""Thread service for CRUD operations."""
from typing import Optional, List
from uuid import UUID
from sqlalchemy.orm import Session
from sqlalchemy import desc, func

from models.threads import Thread
from models.turns import Turn


class ThreadService:
    """Service class for thread CRUD operations."""
    
    @staticmethod
    def get_thread(db: Session, thread_id: UUID, user_id: Optional[str] = None) -> Optional[Thread]:
        """Retrieve a thread by ID."""
        query = db.query(Thread).filter(Thread.id == thread_id)
        
        if user_id:
            query = query.filter(Thread.user_id == user_id)
            
        return query.first()
    
    @staticmethod
    def get_user_threads(db: Session, user_id: str, skip: int = 0, limit: int = 20) -> List[Thread]:
        """Retrieve all threads for a specific user."""
        return db.query(Thread).filter(
            Thread.user_id == user_id
        ).order_by(
            desc(Thread.updated_at)
        ).offset(skip).limit(limit).all()
    
    @staticmethod
    def delete_thread(db: Session, thread_id: UUID, user_id: str) -> bool:
        """Delete a thread and its turns."""
        thread = db.query(Thread).filter(
            Thread.id == thread_id,
            Thread.user_id == user_id
        ).first()
        
        if not thread:
            return False
            
        db.delete(thread)
        db.commit()
        
        return True
    
    @staticmethod
    def finalize_title(db: Session, thread_id: UUID, title: str) -> bool:
        """
        Set the summarized title unless one was already finalized.
        
        Returns True only for the call that performed the transition.
        """
        updated = db.query(Thread).filter(
            Thread.id == thread_id,
            Thread.title_finalized.is_(False)
        ).update(
            {Thread.title: title, Thread.title_finalized: True},
            synchronize_session=False
        )
        db.commit()
        
        return updated == 1
    
    @staticmethod
    def untitled_threads(db: Session, limit: int, min_turns: int) -> List[UUID]:
        """Oldest threads still waiting for a title that have enough content to summarize."""
        rows = db.query(Thread.id).join(
            Turn, Turn.thread_id == Thread.id
        ).filter(
            Thread.title_finalized.is_(False)
        ).group_by(
            Thread.id, Thread.created_at
        ).having(
            func.count(Turn.id) >= min_turns
        ).order_by(
            Thread.created_at
        ).limit(limit).all()
        
        return [row[0] for row in rows]
