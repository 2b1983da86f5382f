"""Boundary between the rollout engine and the cloud platform.

Every method is a coroutine and raises DriverError when the platform
rejects or fails the call. Units, templates and backends are referred to
by name.
"""
from abc import ABC, abstractmethod


class ResourceDriver(ABC):

    @abstractmethod
    async def create_template(self, spec):
        """Create an instance template from a TemplateSpec and return its name"""

    @abstractmethod
    async def create_unit(self, template, name, size, named_ports):
        """Create a managed instance group from a template and return its name.

        named_ports is a sequence of (name, port) pairs.
        """

    @abstractmethod
    async def delete_unit(self, name):
        pass

    @abstractmethod
    async def delete_template(self, name):
        pass

    @abstractmethod
    async def get_instance_statuses(self, unit):
        """Return {instance: Lifecycle} for every instance in the unit"""

    @abstractmethod
    async def get_health_statuses(self, unit):
        """Return {instance: HealthState} as reported by the health check"""

    @abstractmethod
    async def attach_backend(self, unit, backend):
        pass

    @abstractmethod
    async def detach_backend(self, unit, backend):
        pass

    @abstractmethod
    async def list_backend_members(self, backend):
        """Return the set of unit names currently serving traffic for the backend"""

    @abstractmethod
    async def set_autoscaling(self, unit, min_replicas, max_replicas, target_utilization):
        pass

    @abstractmethod
    async def list_units(self, prefix):
        pass

    @abstractmethod
    async def list_templates(self, prefix):
        pass
