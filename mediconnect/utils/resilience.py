"""Ordered fallback chains for external data sources.

Every integration (CMS file load, NPI registry, geocoding, AI calls) is a
``ResilientFetcher``: a list of named strategies tried strictly in order, plus
a static fallback that is returned when all of them fail. Callers always get
a payload back; failures are logged and recorded on the outcome.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Generic, List, Optional, Sequence, Tuple, TypeVar

from mediconnect.models import ProviderSource

logger = logging.getLogger(__name__)

T = TypeVar("T")

TOO_FREQUENT_REASON = "Request too frequent"


class StrategyFailure(Exception):
    """One strategy raised or produced an unusable result."""

    def __init__(self, strategy: str, reason: str, cause: Optional[BaseException] = None):
        self.strategy = strategy
        self.reason = reason
        self.cause = cause
        super().__init__(f"{strategy}: {reason}")


class AllStrategiesExhausted(Exception):
    """Every strategy in a chain failed; converted to the static fallback by ``run``."""

    def __init__(self, chain: str, failures: Sequence[StrategyFailure]):
        self.chain = chain
        self.failures = tuple(failures)
        detail = "; ".join(str(f) for f in failures) or "no strategies configured"
        super().__init__(f"All strategies failed for {chain}: {detail}")


@dataclass(frozen=True)
class Strategy(Generic[T]):
    name: str
    fetch: Callable[..., Optional[T]]
    provenance: ProviderSource = ProviderSource.EXTERNAL_API


@dataclass(frozen=True)
class FetchOutcome(Generic[T]):
    payload: T
    strategy: str
    provenance: ProviderSource
    failures: Tuple[StrategyFailure, ...] = field(default_factory=tuple)
    reason: Optional[str] = None

    @property
    def used_fallback(self) -> bool:
        return self.provenance == ProviderSource.STATIC_FALLBACK


def is_usable(result: Any) -> bool:
    """Default validity check: not None and, for sized results, not empty."""
    if result is None:
        return False
    if isinstance(result, str):
        return bool(result.strip())
    try:
        return len(result) > 0
    except TypeError:
        return True


class ResilientFetcher(Generic[T]):
    """Try strategies in priority order; first usable result wins.

    Args:
        name: Chain name used in log messages.
        strategies: Strategies in priority order.
        fallback: Builds the static payload when every strategy fails. Receives
            the same arguments as the strategies.
        is_valid: Predicate deciding whether a strategy result is usable.
        min_interval_seconds: When set, a call arriving sooner than this after
            the previous attempted call skips the strategies and returns the
            fallback directly.
        clock: Monotonic clock, injectable for tests.
    """

    FALLBACK_STRATEGY = "static_fallback"

    def __init__(
        self,
        name: str,
        strategies: Sequence[Strategy[T]],
        fallback: Callable[..., T],
        *,
        is_valid: Callable[[Any], bool] = is_usable,
        min_interval_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.strategies: List[Strategy[T]] = list(strategies)
        self._fallback = fallback
        self._is_valid = is_valid
        self.min_interval_seconds = min_interval_seconds
        self._clock = clock
        self._last_attempt: Optional[float] = None

    def _too_frequent(self) -> bool:
        if not self.min_interval_seconds:
            return False
        now = self._clock()
        if self._last_attempt is not None and now - self._last_attempt < self.min_interval_seconds:
            return True
        self._last_attempt = now
        return False

    def _attempt_all(self, *args, **kwargs) -> FetchOutcome[T]:
        failures: List[StrategyFailure] = []
        for strategy in self.strategies:
            try:
                result = strategy.fetch(*args, **kwargs)
            except Exception as e:
                failure = StrategyFailure(strategy.name, f"{type(e).__name__}: {e}", e)
                logger.warning(f"[{self.name}] strategy '{strategy.name}' failed: {failure.reason}")
                failures.append(failure)
                continue

            if not self._is_valid(result):
                failure = StrategyFailure(strategy.name, "empty or invalid result")
                logger.warning(f"[{self.name}] strategy '{strategy.name}' returned an empty or invalid result")
                failures.append(failure)
                continue

            logger.info(f"[{self.name}] strategy '{strategy.name}' succeeded")
            return FetchOutcome(
                payload=result,
                strategy=strategy.name,
                provenance=strategy.provenance,
                failures=tuple(failures),
            )

        raise AllStrategiesExhausted(self.name, failures)

    def _static(self, reason: str, failures: Sequence[StrategyFailure], *args, **kwargs) -> FetchOutcome[T]:
        return FetchOutcome(
            payload=self._fallback(*args, **kwargs),
            strategy=self.FALLBACK_STRATEGY,
            provenance=ProviderSource.STATIC_FALLBACK,
            failures=tuple(failures),
            reason=reason,
        )

    def run(self, *args, **kwargs) -> FetchOutcome[T]:
        """Run the chain. Never raises for strategy errors; see class docstring."""
        if self._too_frequent():
            logger.info(f"[{self.name}] call within {self.min_interval_seconds}s of the previous one; using fallback")
            return self._static(TOO_FREQUENT_REASON, (), *args, **kwargs)

        try:
            return self._attempt_all(*args, **kwargs)
        except AllStrategiesExhausted as exhausted:
            logger.error(str(exhausted))
            return self._static(str(exhausted), exhausted.failures, *args, **kwargs)
