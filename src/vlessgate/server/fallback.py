"""Ordered retry over destination candidates."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import Protocol

import structlog

from vlessgate.core.destination import Destination
from vlessgate.core.streams import PayloadTap, ReplayableStream
from vlessgate.observability.metrics import FALLBACKS, RELAY_ATTEMPTS
from vlessgate.server.attempt import AttemptOutcome, AttemptResult

logger = structlog.get_logger()


class Attempt(Protocol):
    async def run(self) -> AttemptOutcome: ...


AttemptFactory = Callable[[Destination, PayloadTap, Callable[[], None]], Attempt]


class FallbackPolicy:
    """Tries candidates in order until one of them answers.

    Each candidate gets its own replay tap of the payload, so the bytes a
    fallback sees are exactly the bytes the first candidate saw. The policy
    moves on only when an attempt ended without a single response byte; a
    caller that went away is never retried. Attempts run one after another,
    so only one of them can be writing to the caller at any time.
    """

    def __init__(self, attempt_factory: AttemptFactory, peer: str = "") -> None:
        self._attempt_factory = attempt_factory
        self._log = logger.bind(peer=peer)

    async def resolve(
        self, candidates: Sequence[Destination], payload: ReplayableStream
    ) -> list[AttemptOutcome]:
        outcomes: list[AttemptOutcome] = []

        for index, destination in enumerate(candidates):
            if index > 0:
                if not payload.replayable:
                    self._log.warning(
                        "Fallback skipped, request no longer replayable",
                        destination=str(destination),
                    )
                    break
                FALLBACKS.inc()
                self._log.info("Proxy connection", destination=str(destination))

            attempt = self._attempt_factory(destination, payload.tap(), payload.release)
            outcome = await attempt.run()
            RELAY_ATTEMPTS.labels(result=outcome.result.value).inc()
            outcomes.append(outcome)

            if outcome.result in (AttemptResult.RESPONDED, AttemptResult.CALLER_CLOSED):
                return outcomes

            if index + 1 < len(candidates):
                self._log.info(
                    "Destination gave no response, trying next",
                    destination=str(destination),
                    result=outcome.result.value,
                    error=outcome.error,
                )

        if outcomes:
            self._log.warning(
                "All destinations failed",
                attempts=[str(o.destination) for o in outcomes],
                error=outcomes[-1].error,
            )
        return outcomes
