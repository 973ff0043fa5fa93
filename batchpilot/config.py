"""
Configuration management for batchpilot.

Settings live in $BATCHPILOT_HOME/config.yaml (default ~/.config/batchpilot).
Account keys may instead come from the environment:
- BATCHPILOT_BATCH_ACCOUNT_KEY
- BATCHPILOT_STORAGE_ACCOUNT_KEY

The loaded BatchpilotConfig is passed explicitly to the orchestrator.
Nothing is kept in module state.
"""

import os
from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path
from typing import Any, Optional

import yaml

from batchpilot.errors import ConfigError
from batchpilot.schemas import PoolSpec

ENV_HOME = "BATCHPILOT_HOME"
ENV_SECRETS = {
    "batch_account_key": "BATCHPILOT_BATCH_ACCOUNT_KEY",
    "storage_account_key": "BATCHPILOT_STORAGE_ACCOUNT_KEY",
}
CONFIG_FILE = "config.yaml"


def get_batchpilot_home() -> Path:
    """Return the batchpilot configuration directory."""
    home = os.environ.get(ENV_HOME)
    if home:
        return Path(home).expanduser()
    return Path("~/.config/batchpilot").expanduser()


@dataclass(frozen=True)
class BatchpilotConfig:
    """
    Settings for one batchpilot run.

    Timeouts and intervals are in seconds.
    """
    # Batch account
    batch_account_name: str = ""
    batch_account_url: str = ""
    batch_account_key: str = ""

    # Storage account used to stage resource files
    storage_account_name: str = ""
    storage_account_key: str = ""
    storage_container: str = "batchpilot-storage"

    # Pool
    pool_id: str = "batchpilot-pool"
    pool_vm_size: str = "Standard_A1_v2"
    pool_vm_count: int = 1
    os_publisher: str = "OpenLogic"
    os_offer: str = "CentOS"

    # Job and tasks
    job_id_prefix: str = "batchpilot-job"
    task_count: int = 5
    task_command: str = "cat {resource_path}"
    resource_file: Optional[str] = None
    resource_remote_path: Optional[str] = None

    # Waiting
    pool_steady_timeout: float = 300
    vm_ready_timeout: float = 1200
    completion_timeout: float = 300
    poll_interval: float = 10
    wait_for_idle_node: bool = True

    # Teardown. Keeping the pool makes the next run much faster.
    cleanup_job: bool = True
    cleanup_pool: bool = True
    cleanup_storage_container: bool = False

    # Logging
    log_level: str = "INFO"
    log_format: str = "pretty"
    log_file: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BatchpilotConfig":
        """
        Build a config from a mapping, rejecting unknown keys.

        Raises:
            ConfigError: If a key is unknown
        """
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigError(f"Unknown config keys: {', '.join(unknown)}")
        return cls(**{k: v for k, v in data.items() if v is not None or k in _OPTIONAL})

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    def with_overrides(self, **overrides: Any) -> "BatchpilotConfig":
        """Return a copy with the non-None overrides applied."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})

    def pool_spec(self) -> PoolSpec:
        return PoolSpec(
            pool_id=self.pool_id,
            vm_size=self.pool_vm_size,
            vm_count=self.pool_vm_count,
            os_publisher=self.os_publisher,
            os_offer=self.os_offer,
        )

    def resolved_resource_remote_path(self) -> Optional[str]:
        """Node path of the resource file, defaulting to resources/<file name>."""
        if not self.resource_file:
            return None
        if self.resource_remote_path:
            return self.resource_remote_path
        return f"resources/{Path(self.resource_file).name}"

    def validate(self) -> None:
        """
        Validate settings.

        Raises:
            ConfigError: On the first invalid setting
        """
        if not self.pool_id:
            raise ConfigError("pool_id is required")
        if not self.job_id_prefix:
            raise ConfigError("job_id_prefix is required")
        if self.pool_vm_count < 1:
            raise ConfigError(f"pool_vm_count must be at least 1, got {self.pool_vm_count}")
        if self.task_count < 0:
            raise ConfigError(f"task_count must not be negative, got {self.task_count}")
        if self.poll_interval <= 0:
            raise ConfigError(f"poll_interval must be positive, got {self.poll_interval}")
        for name in ("pool_steady_timeout", "vm_ready_timeout", "completion_timeout"):
            if getattr(self, name) < 0:
                raise ConfigError(f"{name} must not be negative, got {getattr(self, name)}")
        if self.log_format not in ("pretty", "structured", "plain"):
            raise ConfigError(f"log_format must be pretty, structured or plain, got {self.log_format}")

    def require_batch_account(self) -> None:
        """
        Raises:
            ConfigError: If the batch account settings are incomplete
        """
        missing = [
            name for name in ("batch_account_name", "batch_account_url", "batch_account_key")
            if not getattr(self, name)
        ]
        if missing:
            raise ConfigError(f"Missing batch account settings: {', '.join(missing)}")


_OPTIONAL = {"resource_file", "resource_remote_path", "log_file"}


def load_config(config_path: Optional[Path] = None) -> BatchpilotConfig:
    """
    Load batchpilot configuration from YAML.

    Args:
        config_path: Path to config file. Defaults to $BATCHPILOT_HOME/config.yaml

    Returns:
        Validated BatchpilotConfig, with account keys taken from the
        environment when set there

    Raises:
        FileNotFoundError: If the config file does not exist
        ConfigError: If the file is not valid YAML or a setting is invalid
    """
    if config_path is None:
        config_path = get_batchpilot_home() / CONFIG_FILE

    if not config_path.exists():
        raise FileNotFoundError(f"batchpilot config.yaml not found at {config_path}")

    try:
        with open(config_path, "r") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML syntax in {config_path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"{config_path} must contain a mapping")

    for key, env_var in ENV_SECRETS.items():
        if os.environ.get(env_var):
            data[key] = os.environ[env_var]

    try:
        config = BatchpilotConfig.from_dict(data)
    except TypeError as e:
        raise ConfigError(f"Invalid config in {config_path}: {e}") from e
    config.validate()
    return config
