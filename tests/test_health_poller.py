import asyncio
import time
import pytest
from rollout_engine.errors import DriverError
from rollout_engine.failure import FailureInjector
from rollout_engine.memory import InMemoryDriver
from rollout_engine.models import DeploymentUnit, Lifecycle, HealthState, PollOutcome
from rollout_engine.poller import poll_until, HealthPoller


class ScriptedDriver:
    """Returns pre-recorded lifecycle/health samples, repeating the last one"""

    def __init__(self, lifecycle, health=None):
        self.lifecycle = list(lifecycle)
        self.health = list(health or [])
        self.health_reads = 0

    async def get_instance_statuses(self, unit):
        return self.lifecycle.pop(0) if len(self.lifecycle) > 1 else self.lifecycle[0]

    async def get_health_statuses(self, unit):
        self.health_reads += 1
        return self.health.pop(0) if len(self.health) > 1 else self.health[0]


def make_unit(size=2):
    return DeploymentUnit(name="green-mig-abc123", generation="abc123", template="it-abc123", size=size)


RUNNING = {"vm-0": Lifecycle.RUNNING, "vm-1": Lifecycle.RUNNING}
HEALTHY = {"vm-0": HealthState.HEALTHY, "vm-1": HealthState.HEALTHY}


class TestPollUntil:
    """The shared polling primitive."""

    @pytest.mark.asyncio
    async def test_satisfied_on_first_sample(self):
        calls = []

        async def probe():
            calls.append(1)
            return 42

        outcome = await poll_until(probe, lambda v: v == 42, timeout=1, interval=0.01)
        assert outcome == PollOutcome.SATISFIED
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_times_out_when_predicate_never_holds(self):
        async def probe():
            return False

        start = time.time()
        outcome = await poll_until(probe, bool, timeout=0.05, interval=0.01)
        duration = time.time() - start

        assert outcome == PollOutcome.TIMED_OUT
        assert duration >= 0.04
        assert duration < 1.0

    @pytest.mark.asyncio
    async def test_driver_errors_count_as_misses(self):
        samples = iter([DriverError("get", "x", "boom"), DriverError("get", "x", "boom"), True])

        async def probe():
            value = next(samples)
            if isinstance(value, Exception):
                raise value
            return value

        outcome = await poll_until(probe, bool, timeout=1, interval=0.01)
        assert outcome == PollOutcome.SATISFIED

    @pytest.mark.asyncio
    async def test_other_errors_propagate(self):
        async def probe():
            raise KeyError("bug")

        with pytest.raises(KeyError):
            await poll_until(probe, bool, timeout=1, interval=0.01)

    @pytest.mark.asyncio
    async def test_cancel_stops_before_next_sample(self):
        cancel = asyncio.Event()
        calls = []

        async def probe():
            calls.append(1)
            cancel.set()
            return False

        outcome = await poll_until(probe, bool, timeout=5, interval=0.01, cancel=cancel)
        assert outcome == PollOutcome.CANCELLED
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_max_attempts_caps_samples(self):
        calls = []

        async def probe():
            calls.append(1)
            return False

        outcome = await poll_until(probe, bool, timeout=5, interval=0.01, max_attempts=3)
        assert outcome == PollOutcome.TIMED_OUT
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_rejects_non_positive_timing(self):
        async def probe():
            return True

        with pytest.raises(ValueError):
            await poll_until(probe, bool, timeout=0, interval=1)
        with pytest.raises(ValueError):
            await poll_until(probe, bool, timeout=1, interval=0)
        with pytest.raises(ValueError):
            await poll_until(probe, bool, timeout=1, interval=1, max_attempts=0)


class TestHealthPoller:
    """Lifecycle and load-balancer health gating."""

    @pytest.mark.asyncio
    async def test_waits_for_running_then_healthy(self):
        provisioning = {"vm-0": Lifecycle.PROVISIONING, "vm-1": Lifecycle.RUNNING}
        unhealthy = {"vm-0": HealthState.UNHEALTHY, "vm-1": HealthState.HEALTHY}
        driver = ScriptedDriver([provisioning, RUNNING], [unhealthy, HEALTHY])
        unit = make_unit()

        outcome = await HealthPoller(driver).await_healthy(unit, timeout=1, interval=0.01)

        assert outcome == PollOutcome.SATISFIED
        # Health is only read once everything is RUNNING
        assert driver.health_reads == 2
        assert unit.instance_statuses == RUNNING
        assert unit.health_statuses == HEALTHY

    @pytest.mark.asyncio
    async def test_running_but_unhealthy_is_not_success(self):
        driver = InMemoryDriver(FailureInjector(unhealthy_units={"green-mig-abc123"}))
        driver.templates["it-abc123"] = None
        await driver.create_unit("it-abc123", "green-mig-abc123", 2, {})
        unit = make_unit()

        outcome = await HealthPoller(driver).await_healthy(unit, timeout=0.05, interval=0.01)

        assert outcome == PollOutcome.TIMED_OUT
        assert set(unit.instance_statuses.values()) == {Lifecycle.RUNNING}
        assert set(unit.health_statuses.values()) == {HealthState.UNHEALTHY}

    @pytest.mark.asyncio
    async def test_running_is_enough_without_health_confirmation(self):
        driver = ScriptedDriver([RUNNING], [{}])
        unit = make_unit()

        outcome = await HealthPoller(driver, confirm_health=False).await_healthy(unit, timeout=1, interval=0.01)

        assert outcome == PollOutcome.SATISFIED
        assert driver.health_reads == 0

    @pytest.mark.asyncio
    async def test_missing_instances_are_not_success(self):
        driver = ScriptedDriver([{"vm-0": Lifecycle.RUNNING}], [{"vm-0": HealthState.HEALTHY}])
        unit = make_unit(size=2)

        outcome = await HealthPoller(driver).await_healthy(unit, timeout=0.05, interval=0.01)

        assert outcome == PollOutcome.TIMED_OUT
        assert driver.health_reads == 0

    @pytest.mark.asyncio
    async def test_instance_without_health_report_is_not_healthy(self):
        driver = ScriptedDriver([RUNNING], [{"vm-0": HealthState.HEALTHY}])
        unit = make_unit()

        outcome = await HealthPoller(driver).await_healthy(unit, timeout=0.05, interval=0.01)

        assert outcome == PollOutcome.TIMED_OUT

    @pytest.mark.asyncio
    async def test_timeout_is_a_result_not_an_exception(self):
        driver = ScriptedDriver([{"vm-0": Lifecycle.PROVISIONING, "vm-1": Lifecycle.STAGING}])
        unit = make_unit()

        outcome = await HealthPoller(driver).await_healthy(unit, timeout=0.03, interval=0.01)

        assert outcome == PollOutcome.TIMED_OUT
