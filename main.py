from fastapi import FastAPI, Depends, HTTPException, Query, Request, status
from fastapi.responses import StreamingResponse
from fastapi.middleware.cors import CORSMiddleware
from fastapi.security import OAuth2PasswordBearer, OAuth2PasswordRequestForm
from contextlib import asynccontextmanager
import os
from typing import AsyncIterator, List, Optional
from uuid import UUID
import logging

from config import LOG_LEVEL
from dtos.chat_request import ChatRequest

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

# Local imports
from database import get_db, get_session_factory, engine
from models import Base, User
from schemas import ThreadResponse, TurnResponse, UserCreate, UserResponse, Token, ChatResponse
from services import ThreadService, TurnService, AuthService
from services.backends import configured_tiers
from services.chat import ChatService
from services.dispatcher import WaterfallDispatcher
from services.errors import GenerationUnavailable, ThreadOwnershipViolation
from services.identity import CallerIdentity, GUEST
from services.titles import enqueue_title_summary
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy import text


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Create tables if they don't exist
    Base.metadata.create_all(bind=engine)

    app.state.dispatcher = WaterfallDispatcher(configured_tiers())
    logger.info(f"Generation tiers: {app.state.dispatcher.labels or 'none'}")

    yield

    engine.dispose()


app = FastAPI(
    title="Persona Chat Backend",
    version="1.0.0",
    lifespan=lifespan
)

# CORS configuration
origins = os.getenv("ALLOWED_ORIGINS", "*").split(",")

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins if origins != ["*"] else ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Thread-Id", "X-Thread-New"],
    max_age=3600
)


@app.get("/health")
async def health_check():
    return {"status": "healthy", "service": "persona-chat-backend"}


@app.get("/health/detailed")
async def detailed_health_check(request: Request, db: Session = Depends(get_db)):
    """Health of the database, the task broker and the configured tiers."""
    health_status = {
        "status": "healthy",
        "service": "persona-chat-backend",
        "checks": {}
    }

    # Check database connection
    try:
        db.execute(text("SELECT 1"))
        health_status["checks"]["database"] = {"status": "healthy"}
    except Exception as e:
        health_status["checks"]["database"] = {"status": "unhealthy", "error": str(e)}
        health_status["status"] = "unhealthy"

    # Check Redis connection (through Celery)
    try:
        from celery_app import celery
        celery_stats = celery.control.inspect(timeout=1.0).stats()
        health_status["checks"]["redis"] = {"status": "healthy" if celery_stats else "degraded"}
    except Exception as e:
        health_status["checks"]["redis"] = {"status": "unhealthy", "error": str(e)}
        health_status["status"] = "degraded"

    # Generation tiers in waterfall order
    labels = get_dispatcher(request).labels
    health_status["checks"]["tiers"] = {
        "status": "configured" if labels else "not_configured",
        "order": labels
    }
    if not labels:
        health_status["status"] = "unhealthy"

    return health_status


# OAuth2 configuration; a missing token means a guest caller
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=False)


def _credentials_exception() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(token: Optional[str] = Depends(oauth2_scheme), db: Session = Depends(get_db)) -> User:
    """Get current user from JWT token."""
    if not token:
        raise _credentials_exception()

    user = AuthService.user_from_token(db, token)
    if user is None:
        raise _credentials_exception()

    return user


async def get_caller(token: Optional[str] = Depends(oauth2_scheme), db: Session = Depends(get_db)) -> CallerIdentity:
    """Resolve the caller: a registered user when a token is sent, a guest otherwise."""
    if not token:
        return GUEST

    user = AuthService.user_from_token(db, token)
    if user is None:
        raise _credentials_exception()

    return CallerIdentity(user_id=user.id)


def get_dispatcher(request: Request) -> WaterfallDispatcher:
    dispatcher = getattr(request.app.state, "dispatcher", None)
    if dispatcher is None:
        dispatcher = request.app.state.dispatcher = WaterfallDispatcher(configured_tiers())
    return dispatcher


def get_chat_service(
    session_factory: sessionmaker = Depends(get_session_factory),
    dispatcher: WaterfallDispatcher = Depends(get_dispatcher)
) -> ChatService:
    return ChatService(session_factory, dispatcher, summarize=enqueue_title_summary)


def _thread_access_denied() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail="Thread access denied"
    )


def _generation_unavailable() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail="All generation backends failed. Please try again."
    )


# Chat endpoints
@app.post("/chat", response_model=ChatResponse)
async def chat(
    req: ChatRequest,
    caller: CallerIdentity = Depends(get_caller),
    chat_service: ChatService = Depends(get_chat_service)
) -> ChatResponse:
    """Generate a reply and return it in one piece."""
    try:
        reply = await chat_service.reply(caller, req)
    except ThreadOwnershipViolation:
        raise _thread_access_denied()
    except GenerationUnavailable as e:
        logger.error(f"Chat request failed: {e}")
        raise _generation_unavailable()

    return ChatResponse(
        reply=reply.text,
        thread_id=reply.thread_id,
        tier=reply.tier_label,
        is_new_thread=reply.is_new_thread
    )


async def _relay(first: str, fragments: AsyncIterator[str]) -> AsyncIterator[str]:
    """
    Forward fragments after the first one.

    A failure after the first fragment is re-raised so the server aborts the
    chunked body instead of terminating it; the client sees a broken transfer
    rather than a short reply that looks complete.
    """
    yield first
    try:
        async for fragment in fragments:
            yield fragment
    except GenerationUnavailable as e:
        logger.error(f"Aborting stream before the reply was complete: {e}")
        raise


@app.post("/chat/stream")
async def chat_stream(
    req: ChatRequest,
    caller: CallerIdentity = Depends(get_caller),
    chat_service: ChatService = Depends(get_chat_service)
):
    """
    Stream a reply as plain text.

    The thread id is sent in the ``X-Thread-Id`` header because the body is
    only the reply text. Generation failing before the first fragment is
    reported as a 503 instead of an empty stream; failing after it aborts
    the body and nothing is stored for the thread.
    """
    try:
        stream = chat_service.stream_reply(caller, req)
    except ThreadOwnershipViolation:
        raise _thread_access_denied()

    fragments = stream.fragments()
    try:
        first = await fragments.__anext__()
    except GenerationUnavailable as e:
        logger.error(f"Chat stream failed: {e}")
        raise _generation_unavailable()

    return StreamingResponse(
        _relay(first, fragments),
        media_type="text/plain; charset=utf-8",
        headers={
            "X-Thread-Id": str(stream.thread_id),
            "X-Thread-New": "true" if stream.is_new_thread else "false"
        }
    )


# Thread endpoints
@app.get("/threads", response_model=List[ThreadResponse])
async def list_threads(
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> List[ThreadResponse]:
    """List all threads for the authenticated user."""
    threads = ThreadService.get_user_threads(
        db=db,
        user_id=str(current_user.id),
        skip=skip,
        limit=limit
    )

    return [ThreadResponse.model_validate(thread) for thread in threads]


@app.get("/threads/{thread_id}", response_model=ThreadResponse)
async def get_thread(
    thread_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> ThreadResponse:
    """Get a specific thread by ID."""
    thread = ThreadService.get_thread(
        db=db,
        thread_id=thread_id,
        user_id=str(current_user.id)
    )

    if not thread:
        raise HTTPException(status_code=404, detail="Thread not found")

    return ThreadResponse.model_validate(thread)


@app.get("/threads/{thread_id}/turns", response_model=List[TurnResponse])
async def get_thread_turns(
    thread_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> List[TurnResponse]:
    """Full history of a thread in chronological order."""
    thread = ThreadService.get_thread(
        db=db,
        thread_id=thread_id,
        user_id=str(current_user.id)
    )

    if not thread:
        raise HTTPException(status_code=404, detail="Thread not found")

    return [TurnResponse.model_validate(turn) for turn in TurnService.list_turns(db, thread_id)]


@app.delete("/threads/{thread_id}")
async def delete_thread(
    thread_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> dict:
    """Delete a thread."""
    deleted = ThreadService.delete_thread(
        db=db,
        thread_id=thread_id,
        user_id=str(current_user.id)
    )

    if not deleted:
        raise HTTPException(status_code=404, detail="Thread not found")

    return {"message": "Thread deleted successfully"}


# Authentication endpoints
@app.post("/auth/signup", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def signup(
    user_data: UserCreate,
    db: Session = Depends(get_db)
) -> UserResponse:
    """Register a new user."""
    if AuthService.get_user_by_email(db, user_data.email):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Email already registered"
        )

    if AuthService.get_user_by_username(db, user_data.username):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Username already taken"
        )

    user = AuthService.create_user(db, user_data)

    return UserResponse.model_validate(user)


@app.post("/auth/login", response_model=Token)
async def login(
    form_data: OAuth2PasswordRequestForm = Depends(),
    db: Session = Depends(get_db)
) -> Token:
    """Login with username/email and password."""
    user = AuthService.authenticate_user(db, form_data.username, form_data.password)

    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect username or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Inactive user"
        )

    return Token(
        access_token=AuthService.create_access_token(user.id),
        refresh_token=AuthService.create_refresh_token(user.id),
        username=user.username
    )


@app.post("/auth/refresh", response_model=Token)
async def refresh_token(
    refresh_token: str,
    db: Session = Depends(get_db)
) -> Token:
    """Refresh access token using refresh token."""
    user = AuthService.user_from_token(db, refresh_token, token_type="refresh")
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid refresh token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return Token(
        access_token=AuthService.create_access_token(user.id),
        refresh_token=AuthService.create_refresh_token(user.id),
        username=user.username
    )


@app.get("/auth/me", response_model=UserResponse)
async def get_current_user_info(
    current_user: User = Depends(get_current_user)
) -> UserResponse:
    """Get current user information."""
    return UserResponse.model_validate(current_user)
