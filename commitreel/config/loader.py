import logging
import os
import re
from pathlib import Path
from typing import Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel

from commitreel.config.schema import CommitReelConfig

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "commitreel.yml"
GLOBAL_DIR = Path("~/.commitreel").expanduser()


def expand_env_vars(config: object) -> object:
    """Recursively replace ${VAR} patterns with environment variable values.

    Unset variables are left as written.
    """
    if isinstance(config, dict):
        return {k: expand_env_vars(v) for k, v in config.items()}
    if isinstance(config, list):
        return [expand_env_vars(item) for item in config]
    if isinstance(config, str):

        def replace_env_var(match: re.Match[str]) -> str:
            return os.getenv(match.group(1), match.group(0))

        return re.sub(r"\$\{([^}]+)\}", replace_env_var, config)
    return config


def _warn_unknown_keys(model: BaseModel, path: str, config_path: Path) -> None:
    """Recursively warn about unknown keys in a model and its nested models."""
    if model.model_extra:
        logger.warning("Unknown keys in %s at %s: %s", path, config_path, list(model.model_extra.keys()))
    for field_name, field_value in model.__dict__.items():
        if isinstance(field_value, BaseModel):
            _warn_unknown_keys(field_value, f"{path}.{field_name}", config_path)


def load_config(path: Path) -> CommitReelConfig:
    """Load and validate configuration from a YAML file.

    A missing or unreadable file yields the defaults. Invalid values raise
    pydantic's ValidationError.
    """
    if not path.exists():
        return CommitReelConfig()

    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning("Failed to read config file %s: %s", path, e)
        return CommitReelConfig()

    if not isinstance(raw, dict):
        logger.warning("Ignoring config file %s: top level must be a mapping", path)
        return CommitReelConfig()

    model = CommitReelConfig.model_validate(expand_env_vars(raw))
    _warn_unknown_keys(model, "root", path)
    return model


def load_env_files(cwd: Path, global_dir: Optional[Path] = None) -> list[Path]:
    """Load `<cwd>/.env`, then `~/.commitreel/.env`.

    Variables already in the environment are never overridden, so the project
    file takes precedence over the global one.

    Returns:
        The files that were loaded
    """
    loaded: list[Path] = []
    for env_path in (cwd / ".env", (global_dir or GLOBAL_DIR) / ".env"):
        if env_path.is_file() and load_dotenv(env_path, override=False):
            logger.info("loaded .env from %s", env_path)
            loaded.append(env_path)
    return loaded


def load_workspace_config(cwd: Path) -> CommitReelConfig:
    """Environment files plus `<cwd>/commitreel.yml`."""
    load_env_files(cwd)
    return load_config(cwd / CONFIG_FILENAME)
