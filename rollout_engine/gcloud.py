import asyncio
import json
import os
import tempfile

from .driver import ResourceDriver
from .errors import DriverError
from .logger import get_logger
from .models import Lifecycle, HealthState


def basename(url):
    return url.rstrip("/").rsplit("/", 1)[-1]


class GcloudDriver(ResourceDriver):
    """Drives Compute Engine managed instance groups through the gcloud CLI"""

    def __init__(self, project, zone, health_check="", initial_delay_s=300.0,
                 gcloud="gcloud", command_timeout_s=600.0):
        if not project or not zone:
            raise ValueError("the gcloud driver needs both a project and a zone")
        self.project = project
        self.zone = zone
        self.health_check = health_check
        self.initial_delay_s = initial_delay_s
        self.gcloud = gcloud
        self.command_timeout_s = command_timeout_s
        self.logger = get_logger("driver.gcloud")

    @classmethod
    def from_config(cls, config, **kwargs):
        """Driver for a RolloutConfig; rejects settings the platform would only fail on mid-rollout"""
        if config.confirm_health and not config.health_check:
            raise ValueError(
                "confirm_health needs a health_check: instance health is only reported "
                "for groups created with one"
            )
        return cls(config.project, config.zone, health_check=config.health_check,
                   initial_delay_s=config.health_check_initial_delay_s, **kwargs)

    async def _run(self, operation, target, *args):
        """Run one `gcloud compute` command and return its parsed JSON output"""
        cmd = [self.gcloud, "compute", *args, "--quiet", "--format=json", f"--project={self.project}"]
        self.logger.debug(f"$ {' '.join(cmd)}")

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise DriverError(operation, target, f"could not start {self.gcloud}: {e}") from e

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self.command_timeout_s)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise DriverError(operation, target, f"timed out after {self.command_timeout_s:.0f}s")

        if process.returncode != 0:
            message = stderr.decode(errors="replace").strip() or f"exit code {process.returncode}"
            raise DriverError(operation, target, message)

        output = stdout.decode(errors="replace").strip()
        if not output:
            return None
        try:
            return json.loads(output)
        except json.JSONDecodeError as e:
            raise DriverError(operation, target, f"unparseable output: {e}") from e

    async def create_template(self, spec):
        metadata = ",".join(f"{k}={v}" for k, v in sorted(spec.metadata.items()))
        fd, script_path = tempfile.mkstemp(prefix="startup-", suffix=".sh")
        try:
            with os.fdopen(fd, "w") as f:
                f.write(spec.startup_script)
            args = [
                "instance-templates", "create", spec.name,
                f"--metadata-from-file=startup-script={script_path}",
                f"--machine-type={spec.machine_type}",
                f"--image-family={spec.image_family}",
                f"--image-project={spec.image_project}",
            ]
            if metadata:
                args.append(f"--metadata={metadata}")
            if spec.service_account:
                args.append(f"--service-account={spec.service_account}")
            if spec.scopes:
                args.append(f"--scopes={','.join(spec.scopes)}")
            await self._run("create_template", spec.name, *args)
        finally:
            os.unlink(script_path)
        return spec.name

    async def create_unit(self, template, name, size, named_ports):
        args = [
            "instance-groups", "managed", "create", name,
            f"--base-instance-name={name}",
            f"--size={size}",
            f"--template={template}",
            f"--zone={self.zone}",
        ]
        if self.health_check:
            # instanceHealth in list-instances is only reported for groups with a health check
            args += [f"--health-check={self.health_check}", f"--initial-delay={self.initial_delay_s:.0f}s"]
        await self._run("create_unit", name, *args)
        if named_ports:
            ports = ",".join(f"{port_name}:{port}" for port_name, port in dict(named_ports).items())
            self.logger.info(f"Setting named ports {ports} on {name}")
            await self._run(
                "create_unit", name,
                "instance-groups", "set-named-ports", name,
                f"--named-ports={ports}",
                f"--zone={self.zone}",
            )
        return name

    async def delete_unit(self, name):
        await self._run("delete_unit", name,
                        "instance-groups", "managed", "delete", name, f"--zone={self.zone}")

    async def delete_template(self, name):
        await self._run("delete_template", name, "instance-templates", "delete", name)

    async def _list_instances(self, operation, unit):
        items = await self._run(operation, unit,
                                "instance-groups", "managed", "list-instances", unit,
                                f"--zone={self.zone}")
        return items or []

    async def get_instance_statuses(self, unit):
        statuses = {}
        for item in await self._list_instances("get_instance_statuses", unit):
            instance = basename(item.get("instance") or item.get("name", ""))
            statuses[instance] = Lifecycle.parse(item.get("instanceStatus", "UNKNOWN"))
        return statuses

    async def get_health_statuses(self, unit):
        statuses = {}
        for item in await self._list_instances("get_health_statuses", unit):
            instance = basename(item.get("instance") or item.get("name", ""))
            checks = item.get("instanceHealth") or []
            if not checks:
                statuses[instance] = HealthState.UNKNOWN
                continue
            states = [HealthState.parse(c.get("detailedHealthState", "UNKNOWN")) for c in checks]
            # Every configured health check has to pass
            if all(s == HealthState.HEALTHY for s in states):
                statuses[instance] = HealthState.HEALTHY
            else:
                statuses[instance] = next(s for s in states if s != HealthState.HEALTHY)
        return statuses

    async def attach_backend(self, unit, backend):
        await self._run("attach_backend", unit,
                        "backend-services", "add-backend", backend,
                        f"--instance-group={unit}",
                        f"--instance-group-zone={self.zone}",
                        "--global")

    async def detach_backend(self, unit, backend):
        await self._run("detach_backend", unit,
                        "backend-services", "remove-backend", backend,
                        f"--instance-group={unit}",
                        f"--instance-group-zone={self.zone}",
                        "--global")

    async def list_backend_members(self, backend):
        described = await self._run("list_backend_members", backend,
                                    "backend-services", "describe", backend, "--global")
        backends = (described or {}).get("backends") or []
        return {basename(b["group"]) for b in backends if b.get("group")}

    async def set_autoscaling(self, unit, min_replicas, max_replicas, target_utilization):
        await self._run("set_autoscaling", unit,
                        "instance-groups", "managed", "set-autoscaling", unit,
                        f"--min-num-replicas={min_replicas}",
                        f"--max-num-replicas={max_replicas}",
                        f"--target-cpu-utilization={target_utilization}",
                        f"--zone={self.zone}")

    async def _list_names(self, operation, prefix, *args):
        items = await self._run(operation, prefix, *args, "list", f"--filter=name ~ ^{prefix}")
        return sorted(item["name"] for item in (items or []) if item.get("name", "").startswith(prefix))

    async def list_units(self, prefix):
        return await self._list_names("list_units", prefix, "instance-groups", "managed")

    async def list_templates(self, prefix):
        return await self._list_names("list_templates", prefix, "instance-templates")
