import asyncio

from .errors import DriverError
from .logger import get_logger
from .models import Lifecycle, HealthState, PollOutcome


async def poll_until(probe, predicate, timeout, interval, cancel=None, describe=None,
                     logger=None, max_attempts=None):
    """Sample `probe` until `predicate(sample)` holds or `timeout` seconds pass.

    The loop suspends on asyncio.sleep between samples and never interrupts a
    probe that is already running. A DriverError from the probe counts as a
    miss. If `cancel` (an asyncio.Event) is set, polling stops at the next
    sample boundary. `max_attempts` additionally caps the number of samples.
    """
    if timeout <= 0 or interval <= 0:
        raise ValueError("timeout and interval must be > 0")
    if max_attempts is not None and max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")
    logger = logger or get_logger("poller")
    describe = describe or "condition"

    loop = asyncio.get_running_loop()
    started = loop.time()
    attempt = 0

    while True:
        if cancel is not None and cancel.is_set():
            logger.warning(f"Stopped waiting for {describe}: cancelled")
            return PollOutcome.CANCELLED

        attempt += 1
        try:
            sample = await probe()
        except DriverError as e:
            logger.warning(f"Sample {attempt} for {describe} failed: {e}")
        else:
            if predicate(sample):
                return PollOutcome.SATISFIED

        elapsed = loop.time() - started
        if elapsed >= timeout or (max_attempts is not None and attempt >= max_attempts):
            logger.warning(f"Gave up waiting for {describe} after {elapsed:.1f}s ({attempt} samples)")
            return PollOutcome.TIMED_OUT

        logger.info(f"Still waiting for {describe}... ({elapsed:.0f}/{timeout:.0f} seconds)")
        await asyncio.sleep(min(interval, timeout - elapsed))


class HealthPoller:
    """Waits for every instance of a unit to be RUNNING and, optionally, HEALTHY"""

    def __init__(self, driver, confirm_health=True):
        self.driver = driver
        self.confirm_health = confirm_health
        self.logger = get_logger("poller")

    async def _sample(self, unit):
        statuses = await self.driver.get_instance_statuses(unit.name)
        unit.instance_statuses = dict(statuses)

        if len(statuses) < unit.size:
            self.logger.info(f"{unit.name}: {len(statuses)}/{unit.size} instances reported")
            return False

        not_running = sorted(i for i, s in statuses.items() if s != Lifecycle.RUNNING)
        if not_running:
            self.logger.info(f"{unit.name}: {len(not_running)} instances not RUNNING yet: {', '.join(not_running)}")
            return False

        if not self.confirm_health:
            self.logger.info(f"{unit.name}: all {len(statuses)} instances are RUNNING")
            return True

        health = await self.driver.get_health_statuses(unit.name)
        unit.health_statuses = dict(health)
        not_healthy = sorted(i for i in statuses if health.get(i) != HealthState.HEALTHY)
        if not_healthy:
            # Running but not serving yet; keep sampling
            self.logger.info(f"{unit.name}: instances RUNNING but not HEALTHY yet: {', '.join(not_healthy)}")
            return False

        self.logger.info(f"{unit.name}: all {len(statuses)} instances are RUNNING and HEALTHY")
        return True

    async def await_healthy(self, unit, timeout, interval, cancel=None):
        self.logger.info(f"Waiting for {unit.name} to become healthy (max {timeout:.0f}s)")

        async def probe():
            return await self._sample(unit)

        return await poll_until(
            probe, bool, timeout, interval,
            cancel=cancel, describe=f"{unit.name} health", logger=self.logger,
        )
