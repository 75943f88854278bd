"""Configuration loading and validation."""

from microserve.config.loader import ENV_PREFIX, load_config
from microserve.config.schema import ServerConfig

__all__ = [
    "ENV_PREFIX",
    "ServerConfig",
    "load_config",
]
