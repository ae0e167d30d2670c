import asyncio

import pytest

from services.context import ContextWindow
from services.dispatcher import WaterfallDispatcher
from services.errors import (
    AllTiersExhausted, StreamInterrupted, TierRejected, TierTransportError,
)
from services.personas import Persona
from tests.fakes import ScriptedAdapter, tier

pytestmark = pytest.mark.anyio


def _window(text="hi"):
    return ContextWindow(persona=Persona.CASUAL, instruction=Persona.CASUAL.instruction, history=[], user_text=text)


class _StallingAdapter(ScriptedAdapter):
    """Stalls forever, but a late fragment still fires from outside the cancelled call."""

    async def invoke(self, window, on_fragment=None):
        self.calls += 1
        if on_fragment is not None:
            asyncio.get_running_loop().call_later(0.1, on_fragment, "stale")
        await asyncio.sleep(10)
        return await super().invoke(window, on_fragment)


@pytest.mark.parametrize("winner", [0, 1, 2])
async def test_later_tiers_never_run_after_success(winner):
    adapters = [
        ScriptedAdapter(reply=f"from {i}") if i >= winner else ScriptedAdapter(fail=TierTransportError("down"))
        for i in range(4)
    ]
    dispatcher = WaterfallDispatcher([tier(f"t{i}", a) for i, a in enumerate(adapters)])

    result = await dispatcher.dispatch(_window())

    assert result.text == f"from {winner}"
    assert result.tier_label == f"t{winner}"
    assert [a.calls for a in adapters] == [1] * (winner + 1) + [0] * (3 - winner)


async def test_timeout_moves_to_next_tier_and_discards_late_reply():
    slow = ScriptedAdapter(reply="too late", delay=0.5)
    fast = ScriptedAdapter(reply="hello!")
    dispatcher = WaterfallDispatcher([tier("local", slow, timeout=0.05), tier("hosted", fast)])

    result = await dispatcher.dispatch(_window())
    await asyncio.sleep(0.6)

    assert result.text == "hello!"
    assert result.tier_label == "hosted"
    assert "too late" not in result.text


async def test_late_fragments_from_abandoned_tier_are_dropped():
    stalled = _StallingAdapter()
    backup = ScriptedAdapter(fragments=["hel", "lo"])
    dispatcher = WaterfallDispatcher([tier("local", stalled, timeout=0.05), tier("hosted", backup)])
    forwarded = []

    result = await dispatcher.dispatch(_window(), on_fragment=forwarded.append)
    await asyncio.sleep(0.2)

    assert result.text == "hello"
    assert forwarded == ["hel", "lo"]


async def test_blank_reply_counts_as_failure():
    blank = ScriptedAdapter(reply="   ")
    good = ScriptedAdapter(reply="ok")
    dispatcher = WaterfallDispatcher([tier("blank", blank), tier("good", good)])

    result = await dispatcher.dispatch(_window())

    assert result.tier_label == "good"
    assert blank.calls == 1


async def test_unexpected_adapter_error_falls_through():
    broken = ScriptedAdapter(fail=KeyError("message"))
    good = ScriptedAdapter(reply="ok")
    dispatcher = WaterfallDispatcher([tier("broken", broken), tier("good", good)])

    assert (await dispatcher.dispatch(_window())).tier_label == "good"


async def test_all_tiers_exhausted_reports_each_failure():
    dispatcher = WaterfallDispatcher([
        tier("slow", ScriptedAdapter(reply="x", delay=0.5), timeout=0.01),
        tier("down", ScriptedAdapter(fail=TierTransportError("refused"))),
        tier("rejects", ScriptedAdapter(fail=TierRejected("quota"))),
        tier("empty", ScriptedAdapter(reply="")),
    ])

    with pytest.raises(AllTiersExhausted) as excinfo:
        await dispatcher.dispatch(_window())

    assert [(f.tier_label, f.reason) for f in excinfo.value.failures] == [
        ("slow", "timeout"),
        ("down", "transport-error"),
        ("rejects", "backend-rejected"),
        ("empty", "empty-response"),
    ]


async def test_no_tiers_configured():
    with pytest.raises(AllTiersExhausted):
        await WaterfallDispatcher([]).dispatch(_window())


async def test_failure_after_forwarding_does_not_fall_through():
    partial = ScriptedAdapter(fragments=["half a"], fail_after_fragments=TierTransportError("reset"))
    backup = ScriptedAdapter(reply="never")
    dispatcher = WaterfallDispatcher([tier("partial", partial), tier("backup", backup)])
    forwarded = []

    with pytest.raises(StreamInterrupted):
        await dispatcher.dispatch(_window(), on_fragment=forwarded.append)

    assert forwarded == ["half a"]
    assert backup.calls == 0

