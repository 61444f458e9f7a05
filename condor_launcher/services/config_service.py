# services/config_service.py
"""
Pure configuration loader - reads the launcher YAML file and provides typed access.
No business logic, just data loading.
"""

from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator


class AmqpConfig(BaseModel):
    uri: str


class IrodsConfig(BaseModel):
    """Storage backend credentials, copied verbatim into every job's irods-config."""

    model_config = ConfigDict(populate_by_name=True)

    host    : str
    port    : str = "1247"
    user    : str
    password: str = Field(alias="pass")
    base    : str
    resc    : str = ""
    zone    : str

    @field_validator("port", mode="before")
    @classmethod
    def coerce_port(cls, v):
        return str(v)


class CondorConfig(BaseModel):
    condor_config  : str
    path_env_var   : str
    log_path       : str
    request_disk   : str = "0"
    filter_files   : str = ""
    command_timeout: Optional[float] = None

    @field_validator("request_disk", mode="before")
    @classmethod
    def coerce_request_disk(cls, v):
        if v is None:
            return "0"
        return str(v)


class PorklockConfig(BaseModel):
    image: str
    tag  : str = "latest"


class LauncherConfig(BaseModel):
    """Root configuration model"""

    model_config = ConfigDict(extra="ignore", frozen=True)

    amqp    : AmqpConfig
    irods   : IrodsConfig
    condor  : CondorConfig
    porklock: PorklockConfig


class ConfigService:
    """Loads and provides access to static configuration"""

    def __init__(self, config_path: Path):
        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found at: {config_path}")

        with open(config_path, "r") as f:
            data = yaml.safe_load(f) or {}

        self._config = LauncherConfig(**data)

    @property
    def config(self) -> LauncherConfig:
        return self._config

    @property
    def amqp_uri(self) -> str:
        return self._config.amqp.uri


def load_config(config_path: str) -> LauncherConfig:
    return ConfigService(Path(config_path)).config
