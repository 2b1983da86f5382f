import re
from dataclasses import dataclass, field
from enum import Enum

# Cloud resource names: lowercase, digits and hyphens, at most 63 chars
MAX_NAME_LENGTH = 63
_GENERATION_RE = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$")


class Lifecycle(str, Enum):
    PROVISIONING = "PROVISIONING"
    STAGING = "STAGING"
    RUNNING = "RUNNING"
    STOPPING = "STOPPING"
    STOPPED = "STOPPED"
    SUSPENDED = "SUSPENDED"
    REPAIRING = "REPAIRING"
    TERMINATED = "TERMINATED"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def parse(cls, value):
        try:
            return cls(str(value).upper())
        except ValueError:
            return cls.UNKNOWN


class HealthState(str, Enum):
    HEALTHY = "HEALTHY"
    UNHEALTHY = "UNHEALTHY"
    DRAINING = "DRAINING"
    TIMEOUT = "TIMEOUT"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def parse(cls, value):
        try:
            return cls(str(value).upper())
        except ValueError:
            return cls.UNKNOWN


class RolloutState(str, Enum):
    PROVISIONING = "provisioning"
    AWAITING_HEALTH = "awaiting_health"
    MIGRATING = "migrating"
    ROLLING_BACK = "rolling_back"
    CLEANING = "cleaning"
    FAILED = "failed"
    DONE = "done"


class PollOutcome(str, Enum):
    SATISFIED = "satisfied"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


def validate_generation(generation, *prefixes):
    """Check that a generation id can be embedded in resource names"""
    if not generation or not _GENERATION_RE.match(generation):
        raise ValueError(
            f"invalid generation {generation!r}: use lowercase letters, digits and hyphens"
        )
    for prefix in prefixes:
        if len(prefix) + len(generation) > MAX_NAME_LENGTH:
            raise ValueError(
                f"generation {generation!r} is too long for prefix {prefix!r} "
                f"(max {MAX_NAME_LENGTH} characters per name)"
            )
    return generation


def generation_of(name, prefix):
    """Return the generation encoded in a resource name, or None if the prefix doesn't match"""
    if not name.startswith(prefix) or len(name) == len(prefix):
        return None
    return name[len(prefix):]


@dataclass(frozen=True)
class RolloutConfig:
    """Everything a rollout needs to know about its target environment"""
    project: str = ""
    zone: str = ""
    backend_service: str = ""
    image_registry: str = ""
    service_account: str = ""
    machine_type: str = "e2-micro"
    image_family: str = "debian-11"
    image_project: str = "debian-cloud"
    unit_size: int = 2
    named_ports: tuple = (("http", 8080),)  # (name, port) pairs
    container_port: int = 8080
    container_name: str = "simple-web-app"
    template_prefix: str = "it-"
    unit_prefix: str = "green-mig-"
    health_timeout_s: float = 300.0
    health_interval_s: float = 15.0
    confirm_health: bool = True  # Require HEALTHY from the health check on top of RUNNING
    health_check: str = ""  # Autohealing health check attached to each new unit
    health_check_initial_delay_s: float = 300.0
    warmup_s: float = 30.0  # Pause between attaching the new unit and detaching old ones
    detach_confirm_attempts: int = 10
    detach_backoff_s: float = 5.0
    autoscaling: bool = False
    autoscaling_min: int = 2
    autoscaling_max: int = 5
    target_utilization: float = 0.6

    def __post_init__(self):
        if not self.backend_service:
            raise ValueError("backend_service is required")
        if not self.image_registry:
            raise ValueError("image_registry is required")
        # {"http": 8080} and [["http", 8080]] from JSON both become (name, port) pairs
        ports = self.named_ports.items() if isinstance(self.named_ports, dict) else self.named_ports
        object.__setattr__(self, "named_ports", tuple((str(name), int(port)) for name, port in ports))
        if self.health_check_initial_delay_s < 0:
            raise ValueError("health_check_initial_delay_s must be >= 0")
        if not self.template_prefix or not self.unit_prefix:
            raise ValueError("template_prefix and unit_prefix must not be empty")
        if self.template_prefix == self.unit_prefix:
            raise ValueError("template_prefix and unit_prefix must differ")
        if self.unit_size < 1:
            raise ValueError("unit_size must be >= 1")
        if self.health_timeout_s <= 0 or self.health_interval_s <= 0:
            raise ValueError("health_timeout_s and health_interval_s must be > 0")
        if self.warmup_s < 0:
            raise ValueError("warmup_s must be >= 0")
        if self.detach_confirm_attempts < 1 or self.detach_backoff_s <= 0:
            raise ValueError("detach_confirm_attempts must be >= 1 and detach_backoff_s > 0")
        if self.autoscaling:
            if self.autoscaling_min < 1 or self.autoscaling_min > self.autoscaling_max:
                raise ValueError("autoscaling_min must be >= 1 and <= autoscaling_max")
            if not 0 < self.target_utilization <= 1:
                raise ValueError("target_utilization must be in (0, 1]")

    def template_name(self, generation):
        return f"{self.template_prefix}{generation}"

    def unit_name(self, generation):
        return f"{self.unit_prefix}{generation}"

    def image_url(self, generation):
        return f"{self.image_registry}:{generation}"


@dataclass(frozen=True)
class TemplateSpec:
    """Immutable provisioning blueprint for one generation"""
    name: str
    image: str
    machine_type: str
    image_family: str
    image_project: str
    service_account: str = ""
    scopes: tuple = ("https://www.googleapis.com/auth/cloud-platform",)
    metadata: dict = field(default_factory=dict)
    startup_script: str = ""


@dataclass
class DeploymentUnit:
    name: str
    generation: str
    template: str
    size: int
    instance_statuses: dict = field(default_factory=dict)  # instance -> Lifecycle
    health_statuses: dict = field(default_factory=dict)  # instance -> HealthState
    attached: bool = False


@dataclass
class MigrationResult:
    success: bool
    attached: bool = False
    detached: list = field(default_factory=list)  # Stale units confirmed gone from the backend
    detach_failures: dict = field(default_factory=dict)  # unit -> reason
    error: str = None


@dataclass
class CollectionReport:
    deleted_units: list = field(default_factory=list)
    deleted_templates: list = field(default_factory=list)
    failures: dict = field(default_factory=dict)  # resource name -> reason


@dataclass
class RolloutResult:
    """Outcome of one rollout invocation"""
    generation: str
    success: bool = False
    state: RolloutState = RolloutState.PROVISIONING
    failure_reason: str = None
    rolled_back: bool = False
    stale_units: list = field(default_factory=list)
    migration: MigrationResult = None
    collection: CollectionReport = None
    history: list = field(default_factory=list)

    @property
    def exit_code(self):
        return 0 if self.state == RolloutState.DONE else 1
