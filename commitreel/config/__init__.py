"""Configuration loading for commitreel.

Settings come from `<workspace>/commitreel.yml` (validated by pydantic), with
`.env` files loaded first so `${VAR}` references can resolve.
"""

from commitreel.config.loader import CONFIG_FILENAME, load_config, load_env_files, load_workspace_config
from commitreel.config.schema import CommitReelConfig, WebConfig

__all__ = [
    "CONFIG_FILENAME",
    "CommitReelConfig",
    "WebConfig",
    "load_config",
    "load_env_files",
    "load_workspace_config",
]
