from .chat_request import ChatRequest, TranscriptEntry

__all__ = ["ChatRequest", "TranscriptEntry"]
