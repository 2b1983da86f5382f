import asyncio

from .collector import GarbageCollector
from .errors import DriverError, ProvisioningError
from .logger import get_logger
from .migrator import TrafficMigrator
from .models import (
    DeploymentUnit, PollOutcome, RolloutResult, RolloutState, validate_generation
)
from .poller import HealthPoller
from .provisioning import build_template_spec
from .rollback import RollbackManager


class RolloutEngine:
    """Blue/green rollout of one generation onto a load-balanced backend.

    States: PROVISIONING -> AWAITING_HEALTH -> MIGRATING | ROLLING_BACK
    -> CLEANING | FAILED -> DONE. Runs must be serialized per backend by
    the caller; nothing here locks the backend's member list.
    """

    def __init__(self, driver, config):
        self.driver = driver
        self.config = config
        self.poller = HealthPoller(driver, confirm_health=config.confirm_health)
        self.migrator = TrafficMigrator(driver, config)
        self.rollback_manager = RollbackManager(driver)
        self.collector = GarbageCollector(driver, config)
        self.logger = get_logger("engine")
        self._cancel = None
        self._running = False

    def cancel(self):
        """Ask the current run to stop at the next step boundary.

        Honored while provisioning or waiting for health (the new unit is
        rolled back); ignored once traffic migration has started.
        """
        if self._cancel is not None and not self._cancel.is_set():
            self.logger.warning("Cancellation requested")
            self._cancel.set()

    @property
    def cancelled(self):
        return self._cancel is not None and self._cancel.is_set()

    def _transition(self, result, state, **details):
        result.state = state
        event = {"event": "state", "state": state.value}
        event.update(details)
        result.history.append(event)
        self.logger.info(f"[{result.generation}] -> {state.value}")

    async def _provision(self, generation, result):
        """Create the template and the unit; returns (template, unit)"""
        spec = build_template_spec(self.config, generation)
        unit_name = self.config.unit_name(generation)

        self.logger.info(f"Creating instance template {spec.name}")
        try:
            template = await self.driver.create_template(spec)
        except DriverError as e:
            raise ProvisioningError(f"template creation failed: {e}") from e
        result.history.append({"event": "template_created", "template": template})

        if self.cancelled:
            return template, None

        self.logger.info(f"Creating unit {unit_name} ({self.config.unit_size} instances)")
        try:
            name = await self.driver.create_unit(
                template, unit_name, self.config.unit_size, self.config.named_ports
            )
        except DriverError as e:
            raise ProvisioningError(f"unit creation failed: {e}") from e
        result.history.append({"event": "unit_created", "unit": name})

        unit = DeploymentUnit(name=name, generation=generation, template=template,
                              size=self.config.unit_size)
        return template, unit

    async def _stale_members(self, unit):
        members = await self.driver.list_backend_members(self.config.backend_service)
        return sorted(m for m in members if m != unit.name)

    async def _release(self, result, unit):
        """Take the new unit back out of the backend if a failed attach went through anyway"""
        backend = self.config.backend_service
        try:
            members = await self.driver.list_backend_members(backend)
        except DriverError as e:
            self.logger.warning(f"Could not check whether {unit.name} reached {backend}: {e}")
            return
        if unit.name not in members:
            return

        unit.attached = True
        self.logger.warning(f"{unit.name} is attached to {backend} despite the failed attach; detaching it")
        reason = await self.migrator.detach(unit.name, backend)
        if reason:
            self.logger.error(f"Could not detach {unit.name} from {backend}: {reason}")
        else:
            unit.attached = False
        result.history.append({"event": "released", "unit": unit.name, "error": reason})

    async def _roll_back(self, result, unit, template, reason):
        self._transition(result, RolloutState.ROLLING_BACK, reason=reason)
        result.failure_reason = reason
        await self.rollback_manager.rollback(unit.name if unit else None, template)
        result.rolled_back = True
        self._transition(result, RolloutState.FAILED)
        self.logger.error(f"ROLLOUT FAILED [{result.generation}]: {reason}")
        return result

    def _fail(self, result, reason):
        result.failure_reason = reason
        self._transition(result, RolloutState.FAILED, reason=reason)
        self.logger.error(f"ROLLOUT FAILED [{result.generation}]: {reason}")
        return result

    async def run(self, generation):
        """Roll out `generation` and return a RolloutResult; never raises for platform failures"""
        if self._running:
            error_msg = "rollout already in progress"
            self.logger.error(error_msg)
            raise RuntimeError(error_msg)

        self._running = True
        self._cancel = asyncio.Event()
        try:
            return await self._run(generation)
        finally:
            self._running = False
            self.logger.debug("Rollout lock released")

    async def _run(self, generation):
        cfg = self.config
        result = RolloutResult(generation=generation)
        self._transition(result, RolloutState.PROVISIONING)

        try:
            validate_generation(generation, cfg.template_prefix, cfg.unit_prefix)
        except ValueError as e:
            return self._fail(result, str(e))

        if self.cancelled:
            return self._fail(result, "cancelled before provisioning")

        try:
            template, unit = await self._provision(generation, result)
        except ProvisioningError as e:
            return self._fail(result, str(e))

        if self.cancelled:
            return await self._roll_back(result, unit, template, "cancelled during provisioning")

        self._transition(result, RolloutState.AWAITING_HEALTH)
        outcome = await self.poller.await_healthy(
            unit, cfg.health_timeout_s, cfg.health_interval_s, cancel=self._cancel
        )
        if outcome == PollOutcome.CANCELLED:
            return await self._roll_back(result, unit, template, "cancelled while waiting for health")
        if outcome == PollOutcome.TIMED_OUT:
            return await self._roll_back(
                result, unit, template,
                f"{unit.name} did not become healthy within {cfg.health_timeout_s:.0f}s",
            )

        self._transition(result, RolloutState.MIGRATING)
        try:
            result.stale_units = await self._stale_members(unit)
        except DriverError as e:
            return await self._roll_back(result, unit, template, f"could not read backend members: {e}")

        migration = await self.migrator.migrate(unit, result.stale_units, cfg.backend_service)
        result.migration = migration
        if not migration.success:
            await self._release(result, unit)
            return await self._roll_back(result, unit, template, f"attach failed: {migration.error}")
        result.history.append({
            "event": "migrated",
            "detached": list(migration.detached),
            "detach_failures": dict(migration.detach_failures),
        })

        self._transition(result, RolloutState.CLEANING)
        result.collection = await self.collector.collect(generation)

        result.success = True
        self._transition(result, RolloutState.DONE)
        self.logger.info(f"SUCCESS: {unit.name} is serving {cfg.backend_service} with zero downtime")
        return result
