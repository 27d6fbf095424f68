"""
Upkeep keeper - polls the lottery and triggers draws when they are due
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Callable, Dict, Optional

from vrf_lottery.blockchain.coordinator import CoordinatorError, LocalVRFCoordinator
from vrf_lottery.lottery.core import LotteryCore
from vrf_lottery.lottery.errors import DrawNotStale, LotteryError, UpkeepNotNeeded
from vrf_lottery.lottery.models import Drawing
from vrf_lottery.utils.logger import get_logger

logger = get_logger(__name__)


class UpkeepKeeper:
    """Automation actor for a single lottery.

    Every `check_interval` seconds it asks the lottery whether upkeep is
    needed and performs it. With `auto_fulfill` it also plays the oracle's
    part against a local coordinator, delivering pending requests once they
    are `fulfill_delay` seconds old.
    """

    def __init__(
        self,
        lottery: LotteryCore,
        *,
        check_interval: float = 5.0,
        coordinator: Optional[LocalVRFCoordinator] = None,
        auto_fulfill: bool = False,
        fulfill_delay: float = 0.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.lottery = lottery
        self.check_interval = check_interval
        self.coordinator = coordinator
        self.auto_fulfill = auto_fulfill and coordinator is not None
        self.fulfill_delay = fulfill_delay
        self._clock = clock
        self.running = False
        self._task: Optional[asyncio.Task] = None
        self.upkeeps_performed = 0
        self.fulfillments = 0
        self.last_error: Optional[str] = None

    async def start(self) -> None:
        """Start the keeper loop in the background."""
        if self.running:
            logger.warning("Keeper already running")
            return
        self.running = True
        logger.info(
            "Starting upkeep keeper (interval %ss, auto_fulfill=%s)", self.check_interval, self.auto_fulfill
        )
        self._task = asyncio.create_task(self._keeper_loop())

    async def stop(self) -> None:
        """Stop the keeper loop."""
        self.running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Upkeep keeper stopped")

    async def _keeper_loop(self) -> None:
        while self.running:
            try:
                await self.run_once()
                await asyncio.sleep(self.check_interval)
            except asyncio.CancelledError:
                break
            except Exception as e:
                self.last_error = str(e)
                logger.error(f"Error in keeper loop: {e}")
                await asyncio.sleep(self.check_interval * 2)

    async def run_once(self, now: Optional[int] = None) -> Dict[str, Any]:
        """One keeper tick; returns what was done."""
        now = int(self._clock()) if now is None else now
        outcome: Dict[str, Any] = {"performed": None, "retried": None, "fulfilled": None}

        upkeep_needed, status = self.lottery.check_upkeep(now)
        if upkeep_needed:
            try:
                outcome["performed"] = self.lottery.perform_upkeep(now)
                self.upkeeps_performed += 1
            except UpkeepNotNeeded as e:
                # another caller triggered between check and perform
                logger.debug(f"Upkeep no longer needed: {e}")
        else:
            logger.debug("No upkeep needed: %s", status.to_dict())

        phase = self.lottery.phase
        if isinstance(phase, Drawing):
            timeout = self.lottery.config.request_timeout
            if timeout > 0 and now - phase.requested_at >= timeout:
                try:
                    outcome["retried"] = self.lottery.retry_draw(now)
                except DrawNotStale as e:
                    logger.debug(f"Retry skipped: {e}")

        if self.auto_fulfill:
            outcome["fulfilled"] = await self._fulfill_pending(now)

        return outcome

    async def _fulfill_pending(self, now: int) -> Optional[int]:
        phase = self.lottery.phase
        if self.coordinator is None or not isinstance(phase, Drawing):
            return None
        if now - phase.requested_at < self.fulfill_delay:
            return None

        try:
            self.coordinator.fulfill_random_words(phase.request_id, _Consumer(self.lottery, now))
        except (CoordinatorError, LotteryError) as e:
            self.last_error = str(e)
            logger.error(f"Fulfillment of request {phase.request_id} failed: {e}")
            return None
        self.fulfillments += 1
        return phase.request_id

    def get_status(self) -> Dict[str, Any]:
        return {
            "status": "running" if self.running else "stopped",
            "checkInterval": self.check_interval,
            "autoFulfill": self.auto_fulfill,
            "upkeepsPerformed": self.upkeeps_performed,
            "fulfillments": self.fulfillments,
            "lastError": self.last_error,
        }


class _Consumer:
    """Pins the fulfillment time to the keeper tick that delivered it."""

    def __init__(self, lottery: LotteryCore, now: int) -> None:
        self._lottery = lottery
        self._now = now

    def fulfill_random_words(self, caller, request_id, random_words):
        return self._lottery.fulfill_random_words(caller, request_id, random_words, now=self._now)
