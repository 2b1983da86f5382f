import asyncio
import pytest
from rollout_engine.engine import RolloutEngine
from rollout_engine.failure import FailureInjector
from rollout_engine.memory import InMemoryDriver
from rollout_engine.models import RolloutState

BACKEND = "demo-backend"


async def wait_for_call(driver, operation, timeout=2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not any(op == operation for op, _ in driver.calls):
        assert loop.time() < deadline, f"{operation} never happened"
        await asyncio.sleep(0.005)


class TestCancellation:
    """Aborting a rollout between steps."""

    @pytest.mark.asyncio
    async def test_cancel_while_waiting_for_health_rolls_back(self, make_config):
        driver = InMemoryDriver(FailureInjector(stuck_units={"green-mig-abc123"}))
        driver.seed_generation("it-xyz000", "green-mig-xyz000", BACKEND)
        engine = RolloutEngine(driver, make_config(health_timeout_s=10))

        task = asyncio.create_task(engine.run("abc123"))
        await wait_for_call(driver, "create_unit")
        await asyncio.sleep(0.03)
        engine.cancel()
        res = await asyncio.wait_for(task, timeout=2)

        assert res.success is False
        assert res.rolled_back is True
        assert "cancelled" in res.failure_reason
        assert "green-mig-abc123" not in driver.units
        assert "it-abc123" not in driver.templates
        assert driver.backends[BACKEND] == ["green-mig-xyz000"]

    @pytest.mark.asyncio
    async def test_cancel_during_template_creation_skips_unit(self, config):
        driver = InMemoryDriver(FailureInjector(delay=0.05))
        driver.seed_generation("it-xyz000", "green-mig-xyz000", BACKEND)
        engine = RolloutEngine(driver, config)

        task = asyncio.create_task(engine.run("abc123"))
        await asyncio.sleep(0.01)
        engine.cancel()
        res = await task

        assert res.success is False
        assert res.rolled_back is True
        assert ("create_unit", "green-mig-abc123") not in driver.calls
        assert "it-abc123" not in driver.templates

    @pytest.mark.asyncio
    async def test_cancel_ignored_once_migration_started(self, seeded_driver, make_config):
        engine = RolloutEngine(seeded_driver, make_config(warmup_s=0.1))

        task = asyncio.create_task(engine.run("abc123"))
        await wait_for_call(seeded_driver, "attach_backend")
        engine.cancel()
        res = await task

        assert res.success is True
        assert res.state == RolloutState.DONE
        assert seeded_driver.backends[BACKEND] == ["green-mig-abc123"]

    @pytest.mark.asyncio
    async def test_cancel_without_a_run_is_a_no_op(self, seeded_driver, config):
        engine = RolloutEngine(seeded_driver, config)
        engine.cancel()

        res = await engine.run("abc123")

        assert res.success is True


class TestRunGuard:
    """One rollout at a time per engine."""

    @pytest.mark.asyncio
    async def test_second_run_while_running_raises(self, make_config):
        driver = InMemoryDriver(FailureInjector(stuck_units={"green-mig-abc123"}))
        driver.seed_generation("it-xyz000", "green-mig-xyz000", BACKEND)
        engine = RolloutEngine(driver, make_config(health_timeout_s=10))

        task = asyncio.create_task(engine.run("abc123"))
        await wait_for_call(driver, "create_unit")

        with pytest.raises(RuntimeError, match="rollout already in progress"):
            await engine.run("def456")

        engine.cancel()
        res = await asyncio.wait_for(task, timeout=2)
        assert res.success is False

    @pytest.mark.asyncio
    async def test_engine_reusable_after_failure(self, config):
        injector = FailureInjector(fail_calls={("create_template", "it-abc123"): 1})
        driver = InMemoryDriver(injector)
        driver.seed_generation("it-xyz000", "green-mig-xyz000", BACKEND)
        engine = RolloutEngine(driver, config)

        first = await engine.run("abc123")
        second = await engine.run("abc124")

        assert first.success is False
        assert second.success is True
