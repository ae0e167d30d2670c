"""Exception taxonomy for the generation core."""
from typing import List, Optional


class TierFailure(Exception):
    """A single tier attempt failed. Always recovered by the dispatcher."""

    reason = "transport-error"

    def __init__(self, message: str = "", tier_label: Optional[str] = None):
        super().__init__(message or self.reason)
        self.tier_label = tier_label


class TierTimeout(TierFailure):
    reason = "timeout"


class TierTransportError(TierFailure):
    reason = "transport-error"


class TierRejected(TierFailure):
    reason = "backend-rejected"


class TierEmptyResponse(TierFailure):
    reason = "empty-response"


class GenerationUnavailable(Exception):
    """No reply could be produced for this request. Nothing is persisted."""


class AllTiersExhausted(GenerationUnavailable):
    """Every configured tier failed."""

    def __init__(self, failures: List[TierFailure]):
        self.failures = failures
        summary = ", ".join(f"{f.tier_label}: {f.reason}" for f in failures) or "no tiers configured"
        super().__init__(f"All generation tiers failed ({summary})")


class StreamInterrupted(GenerationUnavailable):
    """A tier failed after part of its reply had already been forwarded."""

    def __init__(self, failure: TierFailure):
        self.failure = failure
        super().__init__(f"Tier {failure.tier_label} failed mid-stream: {failure.reason}")


class ThreadOwnershipViolation(Exception):
    """The caller referenced a thread it does not own."""

    def __init__(self, thread_ref):
        self.thread_ref = thread_ref
        super().__init__(f"Thread {thread_ref} is not accessible to this caller")
