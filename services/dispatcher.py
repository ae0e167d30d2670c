"""Waterfall over the configured generation tiers."""
from dataclasses import dataclass
from typing import Iterable, List, Optional
import asyncio
import logging

from services.backends import BackendTier, FragmentCallback
from services.context import ContextWindow
from services.errors import (
    AllTiersExhausted, StreamInterrupted, TierEmptyResponse, TierFailure, TierTimeout, TierTransportError,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DispatchResult:
    text: str
    tier_label: str
    was_streamed: bool


class _Attempt:
    """Gates one tier attempt's fragments; nothing passes once the attempt is abandoned."""

    def __init__(self, on_fragment: FragmentCallback):
        self._on_fragment = on_fragment
        self.active = True
        self.forwarded = False

    def emit(self, fragment: str) -> None:
        if not self.active:
            return
        self.forwarded = True
        self._on_fragment(fragment)


class WaterfallDispatcher:
    """
    Tries tiers strictly in configured order, one attempt each.

    Each attempt is bounded by its tier's timeout. The first tier that returns
    non-empty text wins and later tiers are never invoked.
    """

    def __init__(self, tiers: Iterable[BackendTier]):
        self.tiers: List[BackendTier] = list(tiers)

    @property
    def labels(self) -> List[str]:
        return [tier.label for tier in self.tiers]

    async def dispatch(self, window: ContextWindow, on_fragment: Optional[FragmentCallback] = None) -> DispatchResult:
        """
        Produce a reply from the first tier that succeeds.

        Raises:
            AllTiersExhausted: every tier failed.
            StreamInterrupted: a tier failed after forwarding fragments.
        """
        failures: List[TierFailure] = []

        for tier in self.tiers:
            attempt = _Attempt(on_fragment) if on_fragment is not None else None
            try:
                reply = await asyncio.wait_for(
                    tier.adapter.invoke(window, attempt.emit if attempt else None),
                    timeout=tier.timeout,
                )
            except asyncio.TimeoutError:
                failure = TierTimeout(f"No reply within {tier.timeout}s")
            except TierFailure as e:
                failure = e
            except Exception as e:
                logger.exception(f"Unexpected error from tier {tier.label}")
                failure = TierTransportError(str(e))
            else:
                if reply.text.strip():
                    logger.info(f"Tier {tier.label} answered ({len(reply.text)} chars, streamed={reply.was_streamed})")
                    return DispatchResult(text=reply.text, tier_label=tier.label, was_streamed=reply.was_streamed)
                failure = TierEmptyResponse("Blank reply")
            finally:
                if attempt is not None:
                    attempt.active = False

            failure.tier_label = tier.label
            logger.warning(f"Tier {tier.label} failed ({failure.reason}): {failure}")
            if attempt is not None and attempt.forwarded:
                raise StreamInterrupted(failure)
            failures.append(failure)

        logger.error(f"All {len(self.tiers)} generation tiers failed")
        raise AllTiersExhausted(failures)
