"""
Progress estimation for pipeline stages.

Collaborator calls do not report real progress, so a ticker task moves the
stage forward on a cadence derived from its estimated duration:

    interval = estimated_ms / (100 / increment)

i.e. at a constant increment the ticker would reach 100% right at the
estimate. Progress is capped below 100 until the stage really completes.
"""

import asyncio
import logging
import random
from abc import ABC, abstractmethod
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)

# Receives the new stage progress; returns False to stop the ticker
TickCallback = Callable[[float], Awaitable[bool]]


class ProgressEstimator(ABC):
    """
    Base class for ticker strategies.

    Example:
        estimator = RandomIncrementEstimator()
        ticker = estimator.start_ticker("extract", 20000, 0.0, on_tick)
        ...
        await estimator.stop_ticker(ticker, "extract", 20000, actual_ms)
    """

    def __init__(self, cap: float = 95.0):
        self.cap = cap
        # Tickers inside on_tick, and those asked to stop once it returns
        self._delivering: set[asyncio.Task] = set()
        self._stopping: set[asyncio.Task] = set()

    @abstractmethod
    def next_increment(self) -> float:
        """Percentage points added by the next tick."""

    def interval_for(self, estimated_ms: int, increment: float) -> float:
        """Seconds to wait before applying `increment`."""
        if increment <= 0:
            return 1.0
        return estimated_ms / (100 / increment) / 1000

    def start_ticker(
        self,
        stage_id: str,
        estimated_ms: int,
        start_progress: float,
        on_tick: TickCallback,
    ) -> asyncio.Task:
        """
        Start a ticker task for a processing stage.

        The ticker stops by itself when the cap is reached or when
        `on_tick` returns False (stage no longer processing). A tick that is
        being delivered is never interrupted by `stop_ticker`.

        Args:
            stage_id: Stage identifier (for logging)
            estimated_ms: Stage duration estimate
            start_progress: Progress to continue from (non-zero on resume)
            on_tick: Async callback receiving the new progress

        Returns:
            asyncio.Task that can be cancelled to stop the ticker
        """

        async def ticker_loop():
            current = asyncio.current_task()
            progress = start_progress
            try:
                while progress < self.cap:
                    increment = self.next_increment()
                    await asyncio.sleep(self.interval_for(estimated_ms, increment))
                    progress = min(progress + increment, self.cap)

                    self._delivering.add(current)
                    try:
                        keep_going = await on_tick(progress)
                    except Exception as e:
                        logger.warning(f"Ticker callback error: {e}")
                        keep_going = True
                    finally:
                        self._delivering.discard(current)

                    if not keep_going or current in self._stopping:
                        return
            finally:
                self._stopping.discard(current)

        task = asyncio.create_task(ticker_loop(), name=f"ticker-{stage_id}")
        logger.debug(
            f"Started ticker for {stage_id}, estimated: {estimated_ms / 1000:.1f}s, "
            f"from {start_progress:.0f}%"
        )
        return task

    async def stop_ticker(
        self,
        ticker: asyncio.Task | None,
        stage_id: str,
        estimated_ms: int = 0,
        actual_ms: int = 0,
    ) -> None:
        """
        Stop a ticker and log estimate accuracy.

        A sleeping ticker is cancelled. A ticker that is delivering a tick
        (possibly the caller itself) finishes that delivery and then exits.

        Args:
            ticker: Task to cancel (may be None)
            stage_id: Stage identifier
            estimated_ms: Original estimate (for logging)
            actual_ms: Actual duration, 0 if the stage did not complete
        """
        if ticker is not None and not ticker.done():
            if ticker in self._delivering:
                self._stopping.add(ticker)
            else:
                ticker.cancel()
                try:
                    await ticker
                except asyncio.CancelledError:
                    pass

        # Log accuracy for future calibration
        if estimated_ms > 0 and actual_ms > 0:
            ratio = actual_ms / estimated_ms
            logger.info(
                f"PERF | {stage_id} | "
                f"estimated={estimated_ms / 1000:.1f}s | "
                f"actual={actual_ms / 1000:.1f}s | "
                f"ratio={ratio:.2f}"
            )


class RandomIncrementEstimator(ProgressEstimator):
    """Random increments between `min_increment` and `max_increment` (default)."""

    def __init__(
        self,
        min_increment: float = 5.0,
        max_increment: float = 20.0,
        cap: float = 95.0,
        rng: random.Random | None = None,
    ):
        super().__init__(cap)
        if not 0 < min_increment <= max_increment:
            raise ValueError(
                f"Invalid increment range: {min_increment}..{max_increment}"
            )
        self.min_increment = min_increment
        self.max_increment = max_increment
        self.rng = rng or random.Random()

    @classmethod
    def from_config(cls, config: dict) -> "RandomIncrementEstimator":
        """Build from the `ticker` section of performance.yaml."""
        ticker = config.get("ticker", {})
        return cls(
            min_increment=ticker.get("min_increment", 5.0),
            max_increment=ticker.get("max_increment", 20.0),
            cap=ticker.get("cap", 95.0),
        )

    def next_increment(self) -> float:
        return self.rng.uniform(self.min_increment, self.max_increment)


class FixedIncrementEstimator(ProgressEstimator):
    """
    Deterministic ticker.

    With `interval_seconds` set, ticks fire on that fixed interval regardless
    of the stage estimate (used by tests to run stages in milliseconds).
    """

    def __init__(
        self,
        increment: float = 10.0,
        interval_seconds: float | None = None,
        cap: float = 95.0,
    ):
        super().__init__(cap)
        if increment <= 0:
            raise ValueError(f"Increment must be positive, got {increment}")
        self.increment = increment
        self.interval_seconds = interval_seconds

    def next_increment(self) -> float:
        return self.increment

    def interval_for(self, estimated_ms: int, increment: float) -> float:
        if self.interval_seconds is not None:
            return self.interval_seconds
        return super().interval_for(estimated_ms, increment)
