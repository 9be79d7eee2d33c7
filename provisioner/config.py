import logging
import os
from dataclasses import asdict, dataclass, fields
from typing import Mapping, Optional

import yaml

from provisioner.exceptions import ConfigError

DEFAULT_BASE_PATH = "/opt/cluster-provisioner"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

# Environment variable -> Settings field
ENV_VARS = {
    "BASE_PATH": "base_path",
    "SCRIPTS_DIR": "scripts_dir",
    "DATABASE_URL": "database_url",
    "SSH_DIAL_TIMEOUT": "dial_timeout",
    "SSH_COMMAND_TIMEOUT": "command_timeout",
    "LOG_LEVEL": "log_level",
}


@dataclass
class Settings:
    base_path: str = DEFAULT_BASE_PATH
    scripts_dir: str = ""
    database_url: str = ""
    dial_timeout: float = 30.0
    command_timeout: float = 300.0
    log_level: str = "INFO"

    def __post_init__(self):
        if not self.scripts_dir:
            self.scripts_dir = os.path.join(self.base_path, "scripts")
        if not self.database_url:
            self.database_url = "sqlite:///" + os.path.join(self.base_path, "data", "provisioner.db")
        for name in ("dial_timeout", "command_timeout"):
            try:
                value = float(getattr(self, name))
            except (TypeError, ValueError) as exc:
                raise ConfigError(f"{name} must be a number, got {getattr(self, name)!r}") from exc
            if value <= 0:
                raise ConfigError(f"{name} must be positive, got {value}")
            setattr(self, name, value)
        self.log_level = str(self.log_level).upper()
        if not isinstance(logging.getLevelName(self.log_level), int):
            raise ConfigError(f"unknown log level {self.log_level!r}")

    def to_dict(self):
        return asdict(self)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """
        Build settings from the environment. A YAML file named by CONFIG_PATH
        is read first; environment variables override its values.
        """
        environ = os.environ if environ is None else environ
        values = {}

        config_path = environ.get("CONFIG_PATH")
        if config_path:
            values.update(load_yaml(config_path))

        for var, name in ENV_VARS.items():
            if environ.get(var):
                values[name] = environ[var]
        database_path = environ.get("DATABASE_PATH")
        if database_path and not environ.get("DATABASE_URL"):
            values["database_url"] = f"sqlite:///{database_path}"

        return cls(**values)


def load_yaml(path: str) -> dict:
    try:
        with open(path, "r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh) or {}
    except OSError as exc:
        raise ConfigError(f"cannot read config file {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"invalid YAML in {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"config file {path} must contain a mapping")

    known = {f.name for f in fields(Settings)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigError(f"unknown settings in {path}: {', '.join(unknown)}")
    return data


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=level, format=LOG_FORMAT)
