import argparse
import asyncio
import json
import signal
import sys
from dataclasses import fields

from .engine import RolloutEngine
from .gcloud import GcloudDriver
from .logger import setup_logging, get_logger, LOG_LEVELS
from .memory import InMemoryDriver
from .models import RolloutConfig

DEFAULT_STATE = ".rollout-state.json"


def load_config(path=None, **overrides):
    """Build a RolloutConfig from an optional JSON file plus explicit overrides"""
    logger = get_logger("cli")
    data = {}
    if path:
        try:
            with open(path) as f:
                data = json.load(f)
        except Exception as e:
            logger.error(f"Error loading config: {e}")
            raise
        if not isinstance(data, dict):
            raise ValueError(f"{path}: expected a JSON object")

    known = {f.name for f in fields(RolloutConfig)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ValueError(f"unknown config keys: {', '.join(unknown)}")

    data.update({k: v for k, v in overrides.items() if v is not None})
    return RolloutConfig(**data)


def load_state(path, backend):
    """Load the simulated platform, starting empty if the file doesn't exist yet"""
    try:
        with open(path) as f:
            driver = InMemoryDriver.from_dict(json.load(f))
    except FileNotFoundError:
        driver = InMemoryDriver()
    driver.backends.setdefault(backend, [])
    return driver


def save_state(path, driver):
    with open(path, "w") as f:
        json.dump(driver.to_dict(), f, indent=2)


def build_parser():
    parser = argparse.ArgumentParser(
        prog="rollout-engine",
        description="Blue/green rollout of a container image onto a managed instance group",
    )
    parser.add_argument("generation", help="Build or commit reference to roll out")
    parser.add_argument("--log-level", default="INFO", type=str.upper, choices=LOG_LEVELS)
    parser.add_argument("--config", help="JSON file with rollout settings")
    parser.add_argument("--driver", choices=["gcloud", "memory"], default="gcloud")
    parser.add_argument("--state", default=DEFAULT_STATE,
                        help="Simulated platform state file (memory driver only)")

    overrides = parser.add_argument_group("settings", "override values from --config")
    overrides.add_argument("--project")
    overrides.add_argument("--zone")
    overrides.add_argument("--backend", dest="backend_service")
    overrides.add_argument("--image-registry")
    overrides.add_argument("--service-account")
    overrides.add_argument("--size", dest="unit_size", type=int)
    overrides.add_argument("--health-timeout", dest="health_timeout_s", type=float)
    overrides.add_argument("--health-interval", dest="health_interval_s", type=float)
    overrides.add_argument("--warmup", dest="warmup_s", type=float)
    overrides.add_argument("--health-check", help="Health check attached to the new unit")
    overrides.add_argument("--no-confirm-health", dest="confirm_health",
                           action="store_const", const=False,
                           help="Accept RUNNING instances without a passing health check")
    overrides.add_argument("--autoscaling", action="store_const", const=True,
                           help="Configure autoscaling on the new unit")
    return parser


OVERRIDES = (
    "project", "zone", "backend_service", "image_registry", "service_account",
    "unit_size", "health_timeout_s", "health_interval_s", "warmup_s",
    "health_check", "confirm_health", "autoscaling",
)


async def run_rollout(engine, generation):
    loop = asyncio.get_running_loop()
    installed = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, engine.cancel)
            installed.append(sig)
        except (NotImplementedError, RuntimeError):
            pass
    try:
        return await engine.run(generation)
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)


def main(argv=None):
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level)
    logger = get_logger("cli")

    try:
        config = load_config(args.config, **{name: getattr(args, name) for name in OVERRIDES})
    except Exception as e:
        print(f"Error: {e}")
        sys.exit(1)

    if args.driver == "memory":
        try:
            driver = load_state(args.state, config.backend_service)
        except Exception as e:
            print(f"Error: {e}")
            sys.exit(1)
    else:
        try:
            driver = GcloudDriver.from_config(config)
        except ValueError as e:
            print(f"Error: {e}")
            sys.exit(1)

    engine = RolloutEngine(driver, config)
    result = asyncio.run(run_rollout(engine, args.generation))

    if args.driver == "memory":
        save_state(args.state, driver)

    if result.success:
        logger.info(f"Rollout of {args.generation} completed")
    else:
        logger.error(f"Rollout of {args.generation} failed: {result.failure_reason}")
    sys.exit(result.exit_code)


if __name__ == "__main__":
    main()
