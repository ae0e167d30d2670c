"""Generation backend adapters and tier configuration."""
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, Dict, List, Optional
import json
import logging

import httpx
from langchain.chat_models import init_chat_model
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from config import (
    GEMINI_API_KEY, HOSTED_MODEL_PROVIDER, HOSTED_MODELS, HOSTED_TIMEOUT,
    OLLAMA_MODEL, OLLAMA_SERIALIZATION, OLLAMA_TIMEOUT, OLLAMA_URL, TITLE_TIER,
)
from models.turns import ASSISTANT_ROLE, USER_ROLE
from services.context import SYSTEM_ROLE, ContextWindow
from services.errors import TierEmptyResponse, TierRejected, TierTransportError

logger = logging.getLogger(__name__)

FragmentCallback = Callable[[str], None]

LOCAL_TRANSPORT = "local"
HOSTED_TRANSPORT = "hosted"


@dataclass(frozen=True)
class BackendReply:
    text: str
    was_streamed: bool


class NDJSONDecoder:
    """
    Decoder for newline-delimited JSON read line by line.

    Line splitting is left to httpx (``aiter_lines``), which also keeps
    multibyte characters intact across network reads; this class only parses
    and validates each complete line.
    """

    @staticmethod
    def decode(line: str) -> Optional[Dict[str, Any]]:
        """Parse one line. Blank lines give None; anything but a JSON object raises ValueError."""
        text = line.strip()
        if not text:
            return None
        record = json.loads(text)
        if not isinstance(record, dict):
            raise ValueError(f"Expected a JSON object per line, got {type(record).__name__}")
        return record

    async def records(self, lines: AsyncIterator[str]) -> AsyncIterator[Dict[str, Any]]:
        async for line in lines:
            record = self.decode(line)
            if record is not None:
                yield record


class BackendAdapter:
    """Common interface over one generation backend."""

    def invoke(self, window: ContextWindow, on_fragment: Optional[FragmentCallback] = None):
        """
        Generate a reply for ``window``.

        When ``on_fragment`` is given the adapter streams if its backend can,
        calling it with each decoded fragment, and still returns the complete
        text. Raises a TierFailure subclass on any failure, including an empty
        reply.
        """
        raise NotImplementedError


class OllamaAdapter(BackendAdapter):
    """Adapter for an Ollama server reached over HTTP."""

    def __init__(
        self,
        base_url: str,
        model: str,
        serialization: str = "chat",
        http_timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if serialization not in ("chat", "prompt"):
            raise ValueError(f"Unknown serialization: {serialization}")
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.serialization = serialization
        self.http_timeout = http_timeout
        self._transport = transport

    def _request(self, window: ContextWindow, stream: bool):
        if self.serialization == "chat":
            return "/api/chat", {"model": self.model, "messages": window.as_messages(), "stream": stream}
        return "/api/generate", {"model": self.model, "prompt": window.as_prompt(), "stream": stream}

    def _fragment(self, record: Dict[str, Any]) -> str:
        if not isinstance(record, dict):
            raise TierRejected("Ollama sent a non-object payload")
        if record.get("error"):
            raise TierRejected(f"Ollama error: {record['error']}")
        if self.serialization == "chat":
            return (record.get("message") or {}).get("content") or ""
        return record.get("response") or ""

    async def invoke(self, window: ContextWindow, on_fragment: Optional[FragmentCallback] = None) -> BackendReply:
        path, payload = self._request(window, stream=on_fragment is not None)
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url, timeout=self.http_timeout, transport=self._transport
            ) as client:
                if on_fragment is not None:
                    text = await self._stream(client, path, payload, on_fragment)
                    streamed = True
                else:
                    response = await client.post(path, json=payload)
                    if response.status_code >= 400:
                        raise TierRejected(f"Ollama returned HTTP {response.status_code}")
                    text = self._fragment(response.json())
                    streamed = False
        except httpx.HTTPError as e:
            raise TierTransportError(f"Ollama request failed: {e}") from e
        except ValueError as e:
            raise TierRejected(f"Ollama sent an unreadable payload: {e}") from e

        if not text.strip():
            raise TierEmptyResponse("Ollama returned no content")
        return BackendReply(text=text, was_streamed=streamed)

    async def _stream(self, client: httpx.AsyncClient, path: str, payload: Dict[str, Any],
                      on_fragment: FragmentCallback) -> str:
        parts = []

        async with client.stream("POST", path, json=payload) as response:
            if response.status_code >= 400:
                await response.aread()
                raise TierRejected(f"Ollama returned HTTP {response.status_code}")
            async for record in NDJSONDecoder().records(response.aiter_lines()):
                fragment = self._fragment(record)
                if fragment:
                    parts.append(fragment)
                    on_fragment(fragment)

        return "".join(parts)


def _content_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        pieces = []
        for part in content:
            if isinstance(part, str):
                pieces.append(part)
            elif isinstance(part, dict) and part.get("type", "text") == "text":
                pieces.append(part.get("text") or "")
        return "".join(pieces)
    return ""


def _status_code(error: BaseException) -> Optional[int]:
    """HTTP status carried by a provider exception or its cause, if any."""
    while error is not None:
        for attribute in ("status_code", "code"):
            value = getattr(error, attribute, None)
            if isinstance(value, int) and not isinstance(value, bool):
                return value
        response = getattr(error, "response", None)
        value = getattr(response, "status_code", None)
        if isinstance(value, int):
            return value
        error = error.__cause__
    return None


class LangChainChatAdapter(BackendAdapter):
    """Adapter for hosted chat models created through LangChain."""

    def __init__(self, model_name: str, provider: str, api_key: Optional[str] = None, chat_model=None):
        self.model_name = model_name
        self.provider = provider
        self._api_key = api_key
        self._chat_model = chat_model

    def _model(self):
        if self._chat_model is None:
            kwargs = {"api_key": self._api_key} if self._api_key else {}
            self._chat_model = init_chat_model(self.model_name, model_provider=self.provider, **kwargs)
        return self._chat_model

    @staticmethod
    def _messages(window: ContextWindow) -> List[BaseMessage]:
        message_types = {SYSTEM_ROLE: SystemMessage, USER_ROLE: HumanMessage, ASSISTANT_ROLE: AIMessage}
        return [message_types[m["role"]](content=m["content"]) for m in window.as_messages()]

    async def invoke(self, window: ContextWindow, on_fragment: Optional[FragmentCallback] = None) -> BackendReply:
        messages = self._messages(window)
        try:
            model = self._model()
            if on_fragment is not None:
                parts = []
                async for chunk in model.astream(messages):
                    fragment = _content_text(chunk.content)
                    if fragment:
                        parts.append(fragment)
                        on_fragment(fragment)
                text = "".join(parts)
            else:
                response = await model.ainvoke(messages)
                text = _content_text(response.content)
        except Exception as e:
            status = _status_code(e)
            if status is not None and 400 <= status < 500:
                raise TierRejected(f"{self.model_name} rejected the request (HTTP {status}): {e}") from e
            raise TierTransportError(f"{self.model_name} request failed: {e}") from e

        if not text.strip():
            raise TierEmptyResponse(f"{self.model_name} returned no content")
        return BackendReply(text=text, was_streamed=on_fragment is not None)


@dataclass(frozen=True)
class BackendTier:
    """One entry of the waterfall: an adapter, its label and its time budget."""
    label: str
    adapter: BackendAdapter
    timeout: float
    transport: str = HOSTED_TRANSPORT


def configured_tiers() -> List[BackendTier]:
    """Tiers in priority order: the local model first, then hosted models as listed."""
    tiers = []
    if OLLAMA_URL:
        tiers.append(BackendTier(
            label=f"ollama/{OLLAMA_MODEL}",
            adapter=OllamaAdapter(OLLAMA_URL, OLLAMA_MODEL, serialization=OLLAMA_SERIALIZATION),
            timeout=OLLAMA_TIMEOUT,
            transport=LOCAL_TRANSPORT,
        ))
    if GEMINI_API_KEY:
        for model_name in HOSTED_MODELS:
            tiers.append(BackendTier(
                label=f"{HOSTED_MODEL_PROVIDER}/{model_name}",
                adapter=LangChainChatAdapter(model_name, HOSTED_MODEL_PROVIDER, api_key=GEMINI_API_KEY),
                timeout=HOSTED_TIMEOUT,
                transport=HOSTED_TRANSPORT,
            ))
    if not tiers:
        logger.warning("No generation tiers configured; set OLLAMA_URL and/or GEMINI_API_KEY")
    return tiers


def summary_tier(tiers: List[BackendTier], label: Optional[str] = TITLE_TIER) -> Optional[BackendTier]:
    """The tier used for titles: the named one if present, else the first hosted tier."""
    if label:
        for tier in tiers:
            if tier.label == label:
                return tier
        logger.warning(f"Title tier {label} is not configured; falling back")
    for tier in tiers:
        if tier.transport == HOSTED_TRANSPORT:
            return tier
    return tiers[0] if tiers else None
