"""Configuration for Studio Transfer.

This module defines the configuration dataclasses for project credentials and
transfer tuning, plus a small YAML registry of named projects so the CLI can
refer to a source or destination by name.
"""

import os
import re
from dataclasses import dataclass, field, asdict, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv

from ..errors import ConfigError

# Load environment variables
load_dotenv()

DEFAULT_DIR = Path.home() / ".studio_transfer"

# Project names: alphanumeric + hyphens/underscores
PROJECT_NAME_PATTERN = re.compile(r'^[A-Za-z0-9][A-Za-z0-9_-]*$')


def normalize_endpoint(endpoint: str) -> str:
    """Normalize a backend endpoint URL.

    Adds a scheme when missing, strips trailing slashes and makes sure the
    API base path (/v1) is present.

    Examples:
        >>> normalize_endpoint("cloud.appwrite.io/")
        'https://cloud.appwrite.io/v1'
        >>> normalize_endpoint("http://localhost/v1//")
        'http://localhost/v1'
    """
    if not endpoint:
        return ""
    clean = endpoint.strip().rstrip("/")
    if not clean.startswith("http"):
        clean = f"https://{clean}"
    if not clean.endswith("/v1") and "/v1/" not in clean:
        clean = f"{clean}/v1"
    return clean


@dataclass
class ProjectCredentials:
    """Credentials for one backend project.

    Attributes:
        endpoint: API endpoint (normalized on creation)
        project_id: Project identifier
        api_key: Server API key with admin scopes
        name: Optional display name (registry key)
    """

    endpoint: str
    project_id: str
    api_key: str
    name: Optional[str] = None

    def __post_init__(self) -> None:
        """Validate and normalize fields."""
        if not self.endpoint or not self.project_id or not self.api_key:
            raise ConfigError(
                "Project configuration is missing or incomplete "
                "(endpoint, project_id and api_key are required)."
            )
        self.endpoint = normalize_endpoint(self.endpoint)
        self.project_id = self.project_id.strip()
        self.api_key = self.api_key.strip()

    @property
    def label(self) -> str:
        """Name used in log lines."""
        return self.name or self.project_id

    @classmethod
    def from_env(cls, prefix: str) -> "ProjectCredentials":
        """Build credentials from STUDIO_<PREFIX>_ENDPOINT/_PROJECT/_KEY.

        Args:
            prefix: 'SOURCE' or 'DEST'

        Raises:
            ConfigError: If any of the variables is missing
        """
        prefix = prefix.upper()
        return cls(
            endpoint=os.getenv(f"STUDIO_{prefix}_ENDPOINT", ""),
            project_id=os.getenv(f"STUDIO_{prefix}_PROJECT", ""),
            api_key=os.getenv(f"STUDIO_{prefix}_KEY", ""),
            name=prefix.lower(),
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProjectCredentials":
        """Create credentials from a dictionary (registry entry)."""
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})

    def to_dict(self, include_key: bool = False) -> Dict[str, Any]:
        """Convert to dictionary for serialization.

        The API key is excluded unless explicitly requested.
        """
        result = {
            "name": self.name,
            "endpoint": self.endpoint,
            "project_id": self.project_id,
        }
        if include_key:
            result["api_key"] = self.api_key
        return result


@dataclass
class TransferConfig:
    """Tuning knobs for scans, streams and worker dispatch.

    Attributes:
        scan_limit: Page size for planner list calls
        document_page_size: Documents fetched per page during migration
        file_page_size: Files fetched per page during migration
        transfer_page_size: Items per page for worker-dispatched transfers
        attribute_delay: Seconds to pause after each attribute creation
        worker_runtime: Runtime used for ephemeral worker functions
        worker_timeout: Execution timeout (seconds) of worker functions
        worker_poll_interval: Seconds between worker build status polls
        worker_poll_retries: Max build polls during migrations
        transfer_poll_retries: Max build polls for consolidation/transfer flows
        request_timeout: HTTP timeout in seconds
        checkpoint_file: JSON file backing the checkpoint store
        log_level: Logging level name
    """

    scan_limit: int = 100
    document_page_size: int = 100
    file_page_size: int = 50
    transfer_page_size: int = 50
    attribute_delay: float = 0.2
    worker_runtime: str = "node-18.0"
    worker_timeout: int = 15
    worker_poll_interval: float = 2.0
    worker_poll_retries: int = 20
    transfer_poll_retries: int = 30
    request_timeout: float = 60.0
    checkpoint_file: str = str(DEFAULT_DIR / "checkpoints.json")
    log_level: str = "INFO"
    extra_options: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        for name in ("scan_limit", "document_page_size", "file_page_size", "transfer_page_size"):
            value = getattr(self, name)
            if not 1 <= value <= 100:
                raise ConfigError(f"{name} must be 1-100, got {value}")

        if self.worker_poll_retries < 1 or self.transfer_poll_retries < 1:
            raise ConfigError("worker poll retries must be at least 1")

        if self.worker_poll_interval < 0 or self.attribute_delay < 0:
            raise ConfigError("intervals and delays must not be negative")

        self.log_level = self.log_level.upper()
        if self.log_level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ConfigError(f"Invalid log_level: {self.log_level}")

        self.checkpoint_file = str(Path(self.checkpoint_file).expanduser())

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TransferConfig":
        """Create TransferConfig from dictionary, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        extra = {k: v for k, v in data.items() if k not in known}
        config = cls(**{k: v for k, v in data.items() if k in known})
        config.extra_options.update(extra)
        return config

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return asdict(self)


# Environment overrides: variable name -> (field, converter)
_ENV_OVERRIDES = {
    "STUDIO_CHECKPOINT_FILE": ("checkpoint_file", str),
    "STUDIO_LOG_LEVEL": ("log_level", str),
    "STUDIO_REQUEST_TIMEOUT": ("request_timeout", float),
    "STUDIO_WORKER_RUNTIME": ("worker_runtime", str),
    "STUDIO_WORKER_POLL_INTERVAL": ("worker_poll_interval", float),
    "STUDIO_ATTRIBUTE_DELAY": ("attribute_delay", float),
}


def load_config(config_path: Optional[str] = None) -> TransferConfig:
    """
    Load configuration from a YAML file and environment overrides.

    Args:
        config_path: Optional path to a YAML configuration file

    Returns:
        TransferConfig instance
    """
    data: Dict[str, Any] = {}
    if config_path:
        path = Path(config_path).expanduser()
        if not path.exists():
            raise ConfigError(f"Config file not found: {path}")
        with open(path, 'r') as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ConfigError(f"Config file must contain a mapping: {path}")

    for env_name, (key, convert) in _ENV_OVERRIDES.items():
        value = os.getenv(env_name)
        if value:
            try:
                data[key] = convert(value)
            except ValueError as e:
                raise ConfigError(f"Invalid value for {env_name}: {value}") from e

    return TransferConfig.from_dict(data)


class ProjectRegistry:
    """
    Named project credentials stored in YAML.

    Registry location priority:
    1. STUDIO_TRANSFER_PROJECTS environment variable
    2. ~/.studio_transfer/projects.yaml (default)
    """

    DEFAULT_REGISTRY = DEFAULT_DIR / "projects.yaml"
    ENV_VAR = "STUDIO_TRANSFER_PROJECTS"

    def __init__(self, registry_path: Optional[str] = None):
        if registry_path:
            self.registry_path = Path(registry_path).expanduser().resolve()
        else:
            env_path = os.environ.get(self.ENV_VAR)
            self.registry_path = (
                Path(env_path).expanduser().resolve() if env_path else self.DEFAULT_REGISTRY
            )
        self.data = self._load()

    def _load(self) -> Dict[str, Any]:
        """Load registry from YAML file."""
        if self.registry_path.exists():
            with open(self.registry_path, 'r') as f:
                return yaml.safe_load(f) or {"version": 1, "projects": {}}
        return {"version": 1, "projects": {}}

    def _save(self) -> None:
        """Save registry to YAML file."""
        self.registry_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.registry_path, 'w') as f:
            yaml.dump(self.data, f, default_flow_style=False, sort_keys=False)

    def add(self, credentials: ProjectCredentials, overwrite: bool = False) -> None:
        """Register a project under credentials.name."""
        name = credentials.name
        if not name or not PROJECT_NAME_PATTERN.match(name):
            raise ConfigError(f"Invalid project name '{name}'")
        projects = self.data.setdefault("projects", {})
        if name in projects and not overwrite:
            raise ConfigError(f"Project '{name}' is already registered.")
        projects[name] = credentials.to_dict(include_key=True)
        self._save()

    def get(self, name: str) -> ProjectCredentials:
        """Return credentials of a registered project."""
        entry = self.data.get("projects", {}).get(name)
        if entry is None:
            raise ConfigError(f"Unknown project '{name}'. Registered: {self.names()}")
        entry = dict(entry)
        entry["name"] = name
        return ProjectCredentials.from_dict(entry)

    def remove(self, name: str) -> bool:
        """Remove a project. Returns False if it was not registered."""
        projects = self.data.get("projects", {})
        if name not in projects:
            return False
        del projects[name]
        self._save()
        return True

    def names(self) -> List[str]:
        return sorted(self.data.get("projects", {}).keys())


def resolve_project(name: Optional[str], env_prefix: str,
                    registry: Optional[ProjectRegistry] = None) -> ProjectCredentials:
    """Resolve credentials by registry name, falling back to environment variables."""
    if name:
        return (registry or ProjectRegistry()).get(name)
    return ProjectCredentials.from_env(env_prefix)
