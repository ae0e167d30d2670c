from uuid import uuid4

import pytest

from models import Thread
from services.errors import ThreadOwnershipViolation
from services.identity import GUEST, CallerIdentity, ThreadIdentityResolver
from tests.fakes import seed_thread


def test_registered_caller_keeps_owned_thread(session_factory):
    thread_id = seed_thread(session_factory, owner="7")

    with session_factory() as db:
        resolution = ThreadIdentityResolver().resolve(db, CallerIdentity(user_id=7), thread_id)

    assert not resolution.is_new
    assert resolution.thread_id == thread_id


def test_registered_caller_without_reference_gets_pending_thread(session_factory):
    with session_factory() as db:
        resolution = ThreadIdentityResolver().resolve(db, CallerIdentity(user_id=7), None)
        stored = db.query(Thread).count()

    assert resolution.is_new
    assert resolution.thread.user_id == "7"
    assert resolution.thread.title == "New Chat"
    assert not resolution.thread.title_finalized
    assert stored == 0


def test_guest_always_gets_new_thread(session_factory):
    guest_thread = seed_thread(session_factory, owner="guest")

    with session_factory() as db:
        resolution = ThreadIdentityResolver().resolve(db, GUEST, guest_thread)

    assert resolution.is_new
    assert resolution.thread_id != guest_thread
    assert resolution.thread.user_id == "guest"


def test_foreign_thread_is_rejected(session_factory):
    thread_id = seed_thread(session_factory, owner="8")

    with session_factory() as db:
        with pytest.raises(ThreadOwnershipViolation):
            ThreadIdentityResolver().resolve(db, CallerIdentity(user_id=7), thread_id)


def test_unknown_thread_is_rejected(session_factory):
    with session_factory() as db:
        with pytest.raises(ThreadOwnershipViolation):
            ThreadIdentityResolver().resolve(db, CallerIdentity(user_id=7), uuid4())


def test_owner_keys():
    assert GUEST.is_guest
    assert GUEST.owner_key == "guest"
    assert CallerIdentity(user_id=42).owner_key == "42"
