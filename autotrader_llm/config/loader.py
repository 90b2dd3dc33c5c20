"""
Configuration loader for YAML/JSON files.

String values may reference the environment as ${VAR} or ${VAR:-default};
unset variables without a default expand to an empty string so missing
secrets are caught by Config.validate_credentials rather than passed on
literally.
"""

import json
import logging
import os
import re
from pathlib import Path
from typing import Any, Mapping, Optional, Union

import yaml

from .config_schema import Config

logger = logging.getLogger(__name__)

_ENV_REF_RE = re.compile(r'\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-([^}]*))?\}')


def expand_env_vars(value: Any, environ: Optional[Mapping[str, str]] = None) -> Any:
    """Recursively expand ${VAR} references in strings, lists and dicts"""
    environ = os.environ if environ is None else environ

    if isinstance(value, dict):
        return {k: expand_env_vars(v, environ) for k, v in value.items()}
    if isinstance(value, list):
        return [expand_env_vars(item, environ) for item in value]
    if isinstance(value, str):
        return _ENV_REF_RE.sub(lambda m: environ.get(m.group(1)) or (m.group(2) or ""), value)
    return value


def _read(config_path: Path) -> Any:
    with open(config_path, 'r') as f:
        if config_path.suffix in ('.yaml', '.yml'):
            return yaml.safe_load(f)
        if config_path.suffix == '.json':
            return json.load(f)
    raise ValueError(f"Unsupported config format: {config_path.suffix}")


def load_config(config_path: Union[str, Path]) -> Config:
    """
    Load configuration from a YAML or JSON file.

    An empty file yields the defaults.

    Raises:
        FileNotFoundError: If the config file doesn't exist
        ValueError: If the format is unsupported, the file is malformed or validation fails
    """
    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    try:
        raw = _read(config_path)
    except (yaml.YAMLError, json.JSONDecodeError) as e:
        raise ValueError(f"Malformed config file {config_path}: {e}") from e

    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ValueError(f"Config file {config_path} must contain a mapping at the top level")

    try:
        config = Config(**expand_env_vars(raw))
    except Exception as e:
        raise ValueError(f"Config validation failed: {e}") from e

    logger.debug(f"Loaded config from {config_path}")
    return config


def save_config(config: Config, config_path: Union[str, Path]):
    """Write configuration as YAML or JSON, chosen by file suffix"""
    config_path = Path(config_path)
    data = config.model_dump()

    if config_path.suffix in ('.yaml', '.yml'):
        text = yaml.safe_dump(data, default_flow_style=False, sort_keys=False)
    elif config_path.suffix == '.json':
        text = json.dumps(data, indent=2)
    else:
        raise ValueError(f"Unsupported config format: {config_path.suffix}")

    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(text)
