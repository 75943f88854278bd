"""Configuration loading from the process environment.

Recognised variables:
    MICROSERVE_ENV: "development" enables development mode.
    MICROSERVE_HOST: Bind address.
    MICROSERVE_PORT: Bind port.
"""

import logging
import os
from collections.abc import Mapping
from typing import Any

from pydantic import ValidationError

from microserve.config.schema import ServerConfig
from microserve.core.errors import ConfigError

logger = logging.getLogger(__name__)

ENV_PREFIX = "MICROSERVE_"


def load_config(
    environ: Mapping[str, str] | None = None,
    **overrides: Any,
) -> ServerConfig:
    """Build a ServerConfig from environment variables plus explicit overrides.

    Overrides whose value is None are ignored, so CLI flags that were not
    given fall through to the environment.

    Args:
        environ: Variables to read. Defaults to os.environ.
        **overrides: Field values that win over the environment.

    Returns:
        Validated ServerConfig.

    Raises:
        ConfigError: If a value fails validation.
    """
    env = os.environ if environ is None else environ
    data: dict[str, Any] = {}

    mode = env.get(f"{ENV_PREFIX}ENV")
    if mode is not None:
        data["development"] = mode.strip().lower() == "development"

    host = env.get(f"{ENV_PREFIX}HOST")
    if host:
        data["host"] = host

    port = env.get(f"{ENV_PREFIX}PORT")
    if port:
        data["port"] = port

    data.update({key: value for key, value in overrides.items() if value is not None})

    try:
        config = ServerConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Configuration validation failed:\n{e}") from e

    logger.debug("Loaded config: %s", config.model_dump())
    return config
