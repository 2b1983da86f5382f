import logging
import sys

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")
LOG_FORMAT = '%(asctime)s [%(levelname)s] %(name)s: %(message)s'


def setup_logging(level="INFO", stream=None):
    """Send rollout progress lines to stderr (or the given stream)"""
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO),
                        format=LOG_FORMAT,
                        stream=stream or sys.stderr,
                        force=True)
    logging.getLogger("asyncio").setLevel(logging.WARNING)


def get_logger(name="rollout"):
    return logging.getLogger(f"rollout_engine.{name}")
