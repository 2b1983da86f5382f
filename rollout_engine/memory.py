import asyncio
from dataclasses import dataclass, field, asdict

from .driver import ResourceDriver
from .errors import DriverError
from .failure import FailureInjector
from .logger import get_logger
from .models import Lifecycle, HealthState


@dataclass
class SimulatedUnit:
    name: str
    template: str
    size: int
    named_ports: dict = field(default_factory=dict)
    lifecycle_reads: int = 0
    health_reads: int = 0
    autoscaling: dict = None

    def instances(self):
        return [f"{self.name}-{i}" for i in range(self.size)]


class InMemoryDriver(ResourceDriver):
    """A simulated platform that keeps templates, groups and backends in memory.

    Instances of a new unit report PROVISIONING for `boot_samples` lifecycle
    reads, then RUNNING. Once running, health reads report UNHEALTHY for
    `health_samples` reads, then HEALTHY.
    """

    def __init__(self, injector=None, boot_samples=1, health_samples=1):
        self.injector = injector if injector else FailureInjector()
        self.boot_samples = boot_samples
        self.health_samples = health_samples
        self.templates = {}
        self.units = {}
        self.backends = {}
        self.calls = []
        self.logger = get_logger("driver.memory")

    async def _call(self, operation, target):
        delay = self.injector.delay_seconds()
        if delay > 0:
            await asyncio.sleep(delay)
        if self.injector.should_fail(operation, target):
            self.logger.debug(f"Injected failure: {operation} {target}")
            raise DriverError(operation, target, "simulated failure")

    def _record(self, operation, target):
        self.calls.append((operation, target))

    def _lose_reply(self, operation, target):
        if self.injector.loses_reply(operation, target):
            raise DriverError(operation, target, "timed out after the change was applied")

    def seed_generation(self, template, unit, backend, size=2):
        """Pre-populate a live, healthy generation attached to a backend"""
        self.templates[template] = None
        sim = SimulatedUnit(unit, template, size,
                            lifecycle_reads=self.boot_samples + 1,
                            health_reads=self.health_samples)
        self.units[unit] = sim
        self.backends.setdefault(backend, []).append(unit)
        return sim

    async def create_template(self, spec):
        await self._call("create_template", spec.name)
        if spec.name in self.templates:
            raise DriverError("create_template", spec.name, "already exists")
        self.templates[spec.name] = spec
        self._record("create_template", spec.name)
        return spec.name

    async def create_unit(self, template, name, size, named_ports):
        await self._call("create_unit", name)
        if template not in self.templates:
            raise DriverError("create_unit", name, f"template {template} not found")
        if name in self.units:
            raise DriverError("create_unit", name, "already exists")
        self.units[name] = SimulatedUnit(name, template, size, dict(named_ports))
        self._record("create_unit", name)
        return name

    async def delete_unit(self, name):
        await self._call("delete_unit", name)
        if name not in self.units:
            raise DriverError("delete_unit", name, "not found")
        for backend, members in self.backends.items():
            if name in members:
                raise DriverError("delete_unit", name, f"still in use by backend {backend}")
        del self.units[name]
        self._record("delete_unit", name)

    async def delete_template(self, name):
        await self._call("delete_template", name)
        if name not in self.templates:
            raise DriverError("delete_template", name, "not found")
        for unit in self.units.values():
            if unit.template == name:
                raise DriverError("delete_template", name, f"still in use by {unit.name}")
        del self.templates[name]
        self._record("delete_template", name)

    def _unit(self, operation, name):
        if name not in self.units:
            raise DriverError(operation, name, "not found")
        return self.units[name]

    async def get_instance_statuses(self, unit):
        await self._call("get_instance_statuses", unit)
        sim = self._unit("get_instance_statuses", unit)
        sim.lifecycle_reads += 1
        if self.injector.is_stuck(unit) or sim.lifecycle_reads <= self.boot_samples:
            state = Lifecycle.PROVISIONING
        else:
            state = Lifecycle.RUNNING
        return {instance: state for instance in sim.instances()}

    async def get_health_statuses(self, unit):
        await self._call("get_health_statuses", unit)
        sim = self._unit("get_health_statuses", unit)
        if sim.lifecycle_reads <= self.boot_samples or self.injector.is_stuck(unit):
            return {instance: HealthState.UNKNOWN for instance in sim.instances()}
        sim.health_reads += 1
        if self.injector.is_unhealthy(unit) or sim.health_reads <= self.health_samples:
            state = HealthState.UNHEALTHY
        else:
            state = HealthState.HEALTHY
        return {instance: state for instance in sim.instances()}

    async def attach_backend(self, unit, backend):
        await self._call("attach_backend", unit)
        self._unit("attach_backend", unit)
        members = self.backends.setdefault(backend, [])
        if unit in members:
            raise DriverError("attach_backend", unit, f"already attached to {backend}")
        members.append(unit)
        self._record("attach_backend", unit)
        self._lose_reply("attach_backend", unit)

    async def detach_backend(self, unit, backend):
        await self._call("detach_backend", unit)
        members = self.backends.get(backend, [])
        if unit not in members:
            raise DriverError("detach_backend", unit, f"not attached to {backend}")
        self._record("detach_backend", unit)
        if not self.injector.is_sticky(unit):
            members.remove(unit)
        self._lose_reply("detach_backend", unit)

    async def list_backend_members(self, backend):
        await self._call("list_backend_members", backend)
        if backend not in self.backends:
            raise DriverError("list_backend_members", backend, "backend not found")
        return set(self.backends[backend])

    async def set_autoscaling(self, unit, min_replicas, max_replicas, target_utilization):
        await self._call("set_autoscaling", unit)
        sim = self._unit("set_autoscaling", unit)
        sim.autoscaling = {"min": min_replicas, "max": max_replicas,
                           "target_utilization": target_utilization}
        self._record("set_autoscaling", unit)

    async def list_units(self, prefix):
        await self._call("list_units", prefix)
        return sorted(name for name in self.units if name.startswith(prefix))

    async def list_templates(self, prefix):
        await self._call("list_templates", prefix)
        return sorted(name for name in self.templates if name.startswith(prefix))

    def to_dict(self):
        """Snapshot of the simulated platform, for the CLI state file"""
        return {
            "templates": sorted(self.templates),
            "units": [asdict(u) for u in self.units.values()],
            "backends": {name: list(members) for name, members in self.backends.items()},
        }

    @classmethod
    def from_dict(cls, data, **kwargs):
        driver = cls(**kwargs)
        for name in data.get("templates", []):
            driver.templates[name] = None
        for u in data.get("units", []):
            unit = SimulatedUnit(**u)
            driver.units[unit.name] = unit
        for name, members in data.get("backends", {}).items():
            driver.backends[name] = list(members)
        return driver
