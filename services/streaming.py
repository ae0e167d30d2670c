"""Incremental delivery of a dispatched reply."""
from typing import AsyncIterator, Optional
import asyncio

from services.context import ContextWindow
from services.dispatcher import DispatchResult, WaterfallDispatcher

_DONE = object()


class StreamAssembler:
    """
    Forwards fragments of the winning tier as they are decoded.

    A tier that does not stream is delivered as one terminal fragment. After
    the iterator is exhausted ``result`` holds the complete reply.
    """

    def __init__(self, dispatcher: WaterfallDispatcher):
        self._dispatcher = dispatcher
        self.result: Optional[DispatchResult] = None

    async def fragments(self, window: ContextWindow) -> AsyncIterator[str]:
        queue: asyncio.Queue = asyncio.Queue()
        task = asyncio.create_task(self._dispatcher.dispatch(window, on_fragment=queue.put_nowait))
        task.add_done_callback(lambda _: queue.put_nowait(_DONE))

        try:
            while True:
                item = await queue.get()
                if item is _DONE:
                    break
                yield item

            result = task.result()
            self.result = result
            if not result.was_streamed:
                yield result.text
        finally:
            if not task.done():
                task.cancel()
