import asyncio

from .errors import DriverError
from .logger import get_logger
from .models import MigrationResult, PollOutcome
from .poller import poll_until


class TrafficMigrator:
    def __init__(self, driver, config):
        self.driver = driver
        self.config = config
        self.logger = get_logger("migrator")

    async def _apply_autoscaling(self, unit):
        cfg = self.config
        try:
            await self.driver.set_autoscaling(
                unit.name, cfg.autoscaling_min, cfg.autoscaling_max, cfg.target_utilization
            )
            self.logger.info(
                f"Autoscaling for {unit.name}: {cfg.autoscaling_min}-{cfg.autoscaling_max} replicas "
                f"at {cfg.target_utilization:.0%} utilization"
            )
        except DriverError as e:
            self.logger.warning(f"Could not configure autoscaling for {unit.name}: {e}")

    async def _still_attached(self, unit, backend):
        try:
            return unit in await self.driver.list_backend_members(backend)
        except DriverError as e:
            self.logger.warning(f"Could not read members of {backend}: {e}")
            return True

    async def detach(self, unit, backend):
        """Detach one unit and wait until the backend no longer lists it.

        Returns None once the unit is gone, otherwise the reason it isn't.
        A failed call whose unit is already absent from the backend counts
        as detached.
        """
        try:
            await self.driver.detach_backend(unit, backend)
        except DriverError as e:
            if await self._still_attached(unit, backend):
                return str(e)
            self.logger.info(f"{unit} is not attached to {backend} despite: {e}")
            return None

        async def members():
            return await self.driver.list_backend_members(backend)

        outcome = await poll_until(
            members, lambda current: unit not in current,
            # attempts bound the wait; the timeout only covers slow membership reads
            timeout=2 * self.config.detach_confirm_attempts * self.config.detach_backoff_s,
            interval=self.config.detach_backoff_s,
            max_attempts=self.config.detach_confirm_attempts,
            describe=f"removal of {unit} from {backend}", logger=self.logger,
        )
        if outcome != PollOutcome.SATISFIED:
            return f"still attached after {self.config.detach_confirm_attempts} checks"
        return None

    async def migrate(self, new_unit, stale_units, backend):
        """Move traffic onto `new_unit` and drain `stale_units` from the backend.

        Only a failure to attach the new unit fails the migration; problems
        detaching old units are recorded and skipped.
        """
        result = MigrationResult(success=False)

        self.logger.info(f"Attaching {new_unit.name} to backend service {backend}")
        try:
            await self.driver.attach_backend(new_unit.name, backend)
        except DriverError as e:
            self.logger.error(f"Backend {backend} rejected {new_unit.name}: {e}")
            result.error = str(e)
            return result
        new_unit.attached = True
        result.attached = True

        if self.config.autoscaling:
            await self._apply_autoscaling(new_unit)

        if self.config.warmup_s > 0:
            self.logger.info(f"Waiting {self.config.warmup_s:.0f}s for {new_unit.name} to warm up and serve traffic")
            await asyncio.sleep(self.config.warmup_s)

        # The unit we just attached is never a detach candidate
        candidates = [u for u in stale_units if u != new_unit.name]
        if not candidates:
            self.logger.info(f"No old units attached to {backend}")

        for stale in candidates:
            self.logger.info(f"Detaching old unit {stale} from backend {backend}")
            reason = await self.detach(stale, backend)
            if reason:
                self.logger.warning(f"Detaching {stale} failed, continuing: {reason}")
                result.detach_failures[stale] = reason
            else:
                self.logger.info(f"{stale} removed from {backend}")
                result.detached.append(stale)

        result.success = True
        return result
