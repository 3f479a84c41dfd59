import asyncio
import logging
import random
from typing import Awaitable, Callable, Optional, Protocol

from kitchen_print.backends.base import DispatchBackend, DispatchError
from kitchen_print.models import PrinterConfig, PrintJob

logger = logging.getLogger(__name__)

SUCCESS_RATE = 0.9
SIMULATED_ERROR = "Simulated printer communication error"


class SuccessStrategy(Protocol):
    def should_succeed(self) -> bool:
        ...


class RandomSuccess:
    """Succeeds with a fixed probability."""

    def __init__(self, rng: Optional[random.Random] = None, rate: float = SUCCESS_RATE):
        self._rng = rng or random.Random()
        self.rate = rate

    def should_succeed(self) -> bool:
        return self._rng.random() < self.rate


class AlwaysSucceed:
    def should_succeed(self) -> bool:
        return True


class AlwaysFail:
    def should_succeed(self) -> bool:
        return False


class SimulatedBackend(DispatchBackend):
    """
    Stand-in for kitchen printers when no hardware is attached.

    Waits a random 1-4 seconds, like a real printer would, then reports
    success nine times out of ten.

    Config options:
        min_delay_sec / max_delay_sec: Delay range (default 1.0 / 4.0)
    """

    name = "simulated"

    def __init__(
        self,
        tracker,
        config: Optional[dict] = None,
        strategy: Optional[SuccessStrategy] = None,
        rng: Optional[random.Random] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        super().__init__(tracker, config)
        self.min_delay_sec = float(self.config.get("min_delay_sec", 1.0))
        self.max_delay_sec = float(self.config.get("max_delay_sec", 4.0))
        self._rng = rng or random.Random()
        self.strategy = strategy or RandomSuccess(self._rng)
        self._sleep = sleep

    async def output(self, job: PrintJob, printer: Optional[PrinterConfig], title: str) -> None:
        delay = self._rng.uniform(self.min_delay_sec, self.max_delay_sec)
        await self._sleep(delay)

        if not self.strategy.should_succeed():
            raise DispatchError(SIMULATED_ERROR, "SIMULATED_FAILURE")

        logger.info(
            f"[SIMULATED] Printed job {job.id} '{title}' "
            f"({len(job.items)} item(s), {delay:.1f}s)"
        )
