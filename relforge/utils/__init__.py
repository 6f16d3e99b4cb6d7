from .env import substitute_env_vars
from .log import configure_logging
from .sync import run_sync

__all__ = ["configure_logging", "run_sync", "substitute_env_vars"]
