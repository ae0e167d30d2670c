import pytest

from dtos.chat_request import ChatRequest, TranscriptEntry
from models import Thread, Turn
from services.chat import ChatService
from services.dispatcher import WaterfallDispatcher
from services.errors import AllTiersExhausted, ThreadOwnershipViolation, TierTransportError
from services.identity import GUEST, CallerIdentity
from services.turns import TurnService
from tests.fakes import ScriptedAdapter, seed_thread, stored_turns, tier

pytestmark = pytest.mark.anyio

ALICE = CallerIdentity(user_id=1)


def _service(session_factory, *tiers):
    triggered = []
    service = ChatService(session_factory, WaterfallDispatcher(tiers), summarize=triggered.append)
    return service, triggered


def _counts(session_factory):
    with session_factory() as db:
        return db.query(Thread).count(), db.query(Turn).count()


async def test_total_failure_persists_nothing(session_factory):
    service, triggered = _service(
        session_factory,
        tier("local", ScriptedAdapter(fail=TierTransportError("tunnel down"))),
        tier("hosted", ScriptedAdapter(reply="")),
    )

    with pytest.raises(AllTiersExhausted):
        await service.reply(ALICE, ChatRequest(prompt="hi", persona="casual"))

    assert _counts(session_factory) == (0, 0)
    assert triggered == []


async def test_fallback_reply_is_persisted_and_titled(session_factory):
    slow = ScriptedAdapter(reply="late", delay=0.5)
    hosted = ScriptedAdapter(reply="hello!")
    service, triggered = _service(session_factory, tier("local", slow, timeout=0.05), tier("hosted", hosted))

    reply = await service.reply(ALICE, ChatRequest(prompt="hi"))

    assert reply.text == "hello!"
    assert reply.tier_label == "hosted"
    assert reply.is_new_thread
    assert stored_turns(session_factory, reply.thread_id) == [
        ("user", "hi", "user-input"),
        ("assistant", "hello!", "hosted"),
    ]
    assert triggered == [reply.thread_id]
    with session_factory() as db:
        assert db.get(Thread, reply.thread_id).user_id == "1"


async def test_guest_transcript_skips_storage(session_factory, monkeypatch):
    def fail(*args, **kwargs):
        raise AssertionError("guest context must not be read from storage")

    monkeypatch.setattr(TurnService, "recent_turns", fail)
    adapter = ScriptedAdapter(reply="sure")
    service, triggered = _service(session_factory, tier("hosted", adapter))
    transcript = [
        TranscriptEntry(role="model", text="Aur bhai?"),
        TranscriptEntry(role="user", text="bored"),
        TranscriptEntry(role="model", text="chal movie dekh"),
    ]

    reply = await service.reply(GUEST, ChatRequest(prompt="which one?", transcript=transcript))

    window = adapter.windows[0]
    assert [t.text for t in window.history] == ["Aur bhai?", "bored", "chal movie dekh"]
    assert window.user_text == "which one?"
    assert reply.is_new_thread
    with session_factory() as db:
        assert db.get(Thread, reply.thread_id).user_id == "guest"
    assert len(stored_turns(session_factory, reply.thread_id)) == 2


async def test_foreign_thread_rejected_before_generation(session_factory):
    thread_id = seed_thread(session_factory, owner="2", turns=[("user", "secret")])
    adapter = ScriptedAdapter(reply="nope")
    service, _ = _service(session_factory, tier("hosted", adapter))

    with pytest.raises(ThreadOwnershipViolation):
        await service.reply(ALICE, ChatRequest(prompt="hi", thread_id=thread_id))

    assert adapter.calls == 0
    assert len(stored_turns(session_factory, thread_id)) == 1


async def test_follow_up_uses_stored_history(session_factory):
    adapter = ScriptedAdapter(reply="reply")
    service, triggered = _service(session_factory, tier("hosted", adapter))

    first = await service.reply(ALICE, ChatRequest(prompt="first", persona="roast"))
    second = await service.reply(ALICE, ChatRequest(prompt="second", persona="roast", thread_id=first.thread_id))

    assert second.thread_id == first.thread_id
    assert not second.is_new_thread
    assert [(t.role, t.text) for t in adapter.windows[1].history] == [("user", "first"), ("assistant", "reply")]
    assert triggered == [first.thread_id]
    assert [t[1] for t in stored_turns(session_factory, first.thread_id)] == ["first", "reply", "second", "reply"]


async def test_registered_caller_transcript_is_ignored(session_factory):
    adapter = ScriptedAdapter(reply="ok")
    service, _ = _service(session_factory, tier("hosted", adapter))

    await service.reply(ALICE, ChatRequest(prompt="hi", transcript=[TranscriptEntry(role="user", text="injected")]))

    assert adapter.windows[0].history == []


async def test_title_trigger_failure_does_not_fail_reply(session_factory):
    def broken_trigger(thread_id):
        raise ConnectionError("broker unavailable")

    service = ChatService(
        session_factory,
        WaterfallDispatcher([tier("hosted", ScriptedAdapter(reply="fine"))]),
        summarize=broken_trigger,
    )

    reply = await service.reply(ALICE, ChatRequest(prompt="hi"))

    assert reply.text == "fine"


async def test_streamed_reply_persists_after_last_fragment(session_factory):
    service, triggered = _service(session_factory, tier("hosted", ScriptedAdapter(fragments=["hel", "lo!"])))

    stream = service.stream_reply(ALICE, ChatRequest(prompt="hi"))
    assert _counts(session_factory) == (0, 0)

    fragments = [fragment async for fragment in stream.fragments()]

    assert "".join(fragments) == "hello!"
    assert stream.reply.text == "hello!"
    assert stream.reply.thread_id == stream.thread_id
    assert stored_turns(session_factory, stream.thread_id)[-1] == ("assistant", "hello!", "hosted")
    assert triggered == [stream.thread_id]


async def test_streamed_failure_persists_nothing(session_factory):
    service, triggered = _service(session_factory, tier("hosted", ScriptedAdapter(fail=TierTransportError("down"))))

    stream = service.stream_reply(ALICE, ChatRequest(prompt="hi"))
    with pytest.raises(AllTiersExhausted):
        async for _ in stream.fragments():
            pass

    assert stream.reply is None
    assert _counts(session_factory) == (0, 0)
    assert triggered == []
