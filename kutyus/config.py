# kutyus/config.py
"""
Config file and environment handling for the `ku` command line.

Lookup order for each setting: KUTYUS_* environment variable, then the TOML
config file, then the built-in default.
"""
import logging
import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Union

from kutyus.core.errors import ConfigError

logger = logging.getLogger(__name__)

ENV_PREFIX = "KUTYUS_"
DEFAULT_STORAGE = "~/.kutyus/storage"

DEFAULT_CONFIG_FILE = """\
# This is the default kutyus config file.

# Directory holding your feed database and keys
# storage = "~/.kutyus/storage"

# One of DEBUG, INFO, WARNING, ERROR
# log_level = "WARNING"
"""


def expand_path(path: Union[str, Path]) -> Path:
    return Path(os.path.expanduser(str(path)))


@dataclass
class KutyusConfig:
    storage: Path = field(default_factory=lambda: expand_path(DEFAULT_STORAGE))
    log_level: str = "WARNING"
    source: Optional[Path] = None   # config file the values came from, if any

    @property
    def db_path(self) -> Path:
        return self.storage / "feeds.db"

    @property
    def key_path(self) -> Path:
        return self.storage / "keys" / "my.key"


def default_config_path() -> Path:
    """$KUTYUS_CONFIG, else $XDG_CONFIG_HOME/kutyus/config.toml, else ~/.config/kutyus/config.toml"""
    env_path = os.environ.get(f"{ENV_PREFIX}CONFIG")
    if env_path:
        return expand_path(env_path)
    config_home = os.environ.get("XDG_CONFIG_HOME")
    base = Path(config_home) if config_home else Path.home() / ".config"
    return base / "kutyus" / "config.toml"


def _read_toml(path: Path) -> dict:
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid config file {path}: {e}") from e
    except OSError as e:
        raise ConfigError(f"Cannot read config file {path}: {e}") from e


def load_config(path: Optional[Union[str, Path]] = None) -> KutyusConfig:
    """
    Build the effective config. An explicitly given file must exist; the
    default file is optional.
    """
    config = KutyusConfig()

    if path is not None:
        config_path = expand_path(path)
        if not config_path.exists():
            raise ConfigError(f"Config file not found: {config_path}")
    else:
        config_path = default_config_path()

    if config_path.exists():
        data = _read_toml(config_path)
        if "storage" in data:
            config.storage = expand_path(data["storage"])
        if "log_level" in data:
            config.log_level = str(data["log_level"]).upper()
        config.source = config_path
        logger.debug("Loaded config from %s", config_path)

    if os.environ.get(f"{ENV_PREFIX}STORAGE"):
        config.storage = expand_path(os.environ[f"{ENV_PREFIX}STORAGE"])
    if os.environ.get(f"{ENV_PREFIX}LOG_LEVEL"):
        config.log_level = os.environ[f"{ENV_PREFIX}LOG_LEVEL"].upper()

    return config


def init_config(path: Optional[Union[str, Path]] = None, force: bool = False) -> Path:
    """Write the commented default config file. Refuses to overwrite unless `force`."""
    config_path = expand_path(path) if path is not None else default_config_path()
    if config_path.exists() and not force:
        raise ConfigError(f"Already initialized at {config_path}! Use --force to overwrite it")

    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(DEFAULT_CONFIG_FILE, encoding="utf-8")
    logger.info("Created default config at %s", config_path)
    return config_path
