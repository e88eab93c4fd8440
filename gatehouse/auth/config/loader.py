"""Loading ``gatehouse.yaml`` into a validated GatehouseConfig."""

import logging
import os
import re
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from ..exceptions import ConfigurationError
from .schema import GatehouseConfig

logger = logging.getLogger(__name__)

CONFIG_PATH_ENV = "GATEHOUSE_CONFIG"


class AuthConfigLoader:
    """Reads the ``auth`` section of a YAML file.

    String values may reference the environment:

    - ``${NAME}`` must be set
    - ``${NAME:-fallback}`` uses ``fallback`` when unset
    - ``${NAME:?hint}`` must be set, and ``hint`` is shown when it is not

    Every unset reference is reported in a single error.
    """

    ENV_REFERENCE = re.compile(
        r"\$\{(?P<name>[A-Za-z_][A-Za-z0-9_]*)(?::(?P<op>[-?])(?P<arg>[^}]*))?\}"
    )
    DEFAULT_CONFIG_NAME = "gatehouse.yaml"
    SECTION = "auth"

    @classmethod
    def load_auth_config(cls, config_path: Path | str | None = None) -> GatehouseConfig:
        """Load configuration from ``config_path``.

        Without a path, ``$GATEHOUSE_CONFIG`` is used, then ``./gatehouse.yaml``.

        Raises:
            ConfigurationError: If the file is missing, unparsable or invalid
        """
        path = cls.validate_config_exists(Path(config_path) if config_path else None)

        try:
            document = yaml.safe_load(path.read_text())
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e

        if not document:
            raise ConfigurationError(f"Configuration file is empty: {path}")
        if not isinstance(document, Mapping) or not document.get(cls.SECTION):
            raise ConfigurationError(f"No '{cls.SECTION}' section found in {path}")

        config = cls.parse_auth_config(document[cls.SECTION])
        logger.info(f"Loaded auth configuration from {path}")
        return config

    @classmethod
    def parse_auth_config(cls, section: Mapping[str, Any]) -> GatehouseConfig:
        """Validate an already-parsed ``auth`` mapping."""
        missing: list[str] = []
        expanded = cls._expand(section, missing)
        if missing:
            raise ConfigurationError(
                "Unset environment variables in auth configuration: " + "; ".join(missing),
                details={"missing": missing},
            )

        try:
            return GatehouseConfig.model_validate(expanded)
        except ValidationError as e:
            problems = [
                f"{'.'.join(str(part) for part in error['loc']) or 'auth'}: {error['msg']}"
                for error in e.errors()
            ]
            raise ConfigurationError(
                "Invalid auth configuration: " + "; ".join(problems),
                details={"errors": problems},
            ) from e

    @classmethod
    def substitute_env(cls, value: Any) -> Any:
        """Expand environment references anywhere inside ``value``.

        Raises:
            ConfigurationError: If a required variable is unset
        """
        missing: list[str] = []
        expanded = cls._expand(value, missing)
        if missing:
            raise ConfigurationError("Unset environment variables: " + "; ".join(missing))
        return expanded

    @classmethod
    def _expand(cls, value: Any, missing: list[str]) -> Any:
        if isinstance(value, Mapping):
            return {key: cls._expand(item, missing) for key, item in value.items()}
        if isinstance(value, list):
            return [cls._expand(item, missing) for item in value]
        if not isinstance(value, str):
            return value

        def lookup(match: re.Match) -> str:
            name, op, arg = match.group("name", "op", "arg")
            found = os.environ.get(name)
            if found is not None:
                return found
            if op == "-":
                return arg
            missing.append(f"{name} ({arg})" if op == "?" and arg else name)
            return ""

        return cls.ENV_REFERENCE.sub(lookup, value)

    @classmethod
    def get_default_config_path(cls) -> Path:
        override = os.environ.get(CONFIG_PATH_ENV)
        if override:
            return Path(override)
        return Path.cwd() / cls.DEFAULT_CONFIG_NAME

    @classmethod
    def validate_config_exists(cls, config_path: Path | None = None) -> Path:
        """Return the configuration path once it is known to be a file.

        Raises:
            ConfigurationError: If the path is missing or is not a file
        """
        path = config_path or cls.get_default_config_path()
        if not path.exists():
            raise ConfigurationError(f"Configuration file not found: {path}")
        if not path.is_file():
            raise ConfigurationError(f"Configuration path is not a file: {path}")
        return path
