import pytest
from rollout_engine.models import RolloutConfig
from rollout_engine.memory import InMemoryDriver

BACKEND = "demo-backend"


def fast_config(**overrides):
    """Production-shaped settings with millisecond timings"""
    values = dict(
        project="demo-project",
        zone="asia-south1-a",
        backend_service=BACKEND,
        image_registry="asia-south1-docker.pkg.dev/demo-project/artifact-repo/simple-web-app",
        health_timeout_s=0.3,
        health_interval_s=0.01,
        warmup_s=0.0,
        detach_confirm_attempts=3,
        detach_backoff_s=0.01,
    )
    values.update(overrides)
    return RolloutConfig(**values)


@pytest.fixture
def make_config():
    return fast_config


@pytest.fixture
def config():
    return fast_config()


@pytest.fixture
def seeded_driver():
    """Simulated platform with generation xyz000 serving the backend"""
    driver = InMemoryDriver()
    driver.seed_generation("it-xyz000", "green-mig-xyz000", BACKEND)
    return driver
