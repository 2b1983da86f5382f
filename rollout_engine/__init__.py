from .models import (
    Lifecycle, HealthState, RolloutState, PollOutcome, RolloutConfig, TemplateSpec,
    DeploymentUnit, MigrationResult, CollectionReport, RolloutResult
)
from .errors import DriverError, ProvisioningError
from .driver import ResourceDriver
from .engine import RolloutEngine
from .failure import FailureInjector
from .memory import InMemoryDriver
from .gcloud import GcloudDriver

__all__ = [
    "Lifecycle", "HealthState", "RolloutState", "PollOutcome",
    "RolloutConfig", "TemplateSpec", "DeploymentUnit",
    "MigrationResult", "CollectionReport", "RolloutResult",
    "DriverError", "ProvisioningError", "ResourceDriver",
    "RolloutEngine", "FailureInjector", "InMemoryDriver", "GcloudDriver"
]
