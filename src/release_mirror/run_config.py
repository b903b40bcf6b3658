#!/usr/bin/env python3
"""
Run Configuration Management

Builds the configuration for a mirror run from an optional JSON config file
and environment variables. Credentials are only ever read from the environment.
"""

import json
import os
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Literal, NotRequired, TypedDict, cast, get_args

from .constants import (
    DEFAULT_CONCURRENCY,
    DEFAULT_DATA_FILE,
    DEFAULT_DISK_SPACE_THRESHOLD,
    DEFAULT_DOWNLOAD_TIMEOUT,
    DEFAULT_FAILURE_POLICY,
    DEFAULT_OWNER,
    DEFAULT_PROJECTS,
    DEFAULT_REQUEST_TIMEOUT,
    DEFAULT_STORAGE_TYPE,
    PUBLIC_URL_TEMPLATES,
)
from .errors import ConfigurationError
from .models import EnumerationMode

STORAGE_TYPES = Literal["qingstor", "s3", "local"]
FAILURE_POLICIES = Literal["abort", "project", "asset"]


class StorageConfigDict(TypedDict, total=False):
    """Inner config dict for storage configuration."""

    bucket_name: str
    bucket_location: str
    endpoint_url: str  # For S3-compatible services
    base_path: str  # For local storage
    access_key: str  # Only in memory, not saved
    secret_key: str  # Only in memory, not saved


class StorageConfig(TypedDict):
    """Complete storage configuration."""

    type: STORAGE_TYPES
    config: StorageConfigDict
    public_url_template: NotRequired[str]


# Environment variable -> config key. QINGSTOR_* and GITHUB_TOKEN match the deployment's existing secrets.
ENV_VARIABLES = {
    "GITHUB_TOKEN": "github_token",
    "QINGSTOR_ACCESS_KEY": "access_key",
    "QINGSTOR_SECRET_KEY": "secret_key",
    "QINGSTOR_BUCKET_NAME": "bucket_name",
    "QINGSTOR_BUCKET_LOCATION": "bucket_location",
    "MIRROR_OWNER": "owner",
    "MIRROR_PROJECTS": "projects",
    "MIRROR_MODE": "mode",
    "MIRROR_DATA_FILE": "data_file",
    "MIRROR_STORAGE_TYPE": "storage_type",
    "MIRROR_ENDPOINT_URL": "endpoint_url",
    "MIRROR_BASE_PATH": "base_path",
    "MIRROR_PUBLIC_URL_TEMPLATE": "public_url_template",
    "MIRROR_CONCURRENCY": "concurrency",
    "MIRROR_FAILURE_POLICY": "failure_policy",
    "MIRROR_PERSIST_EACH_RELEASE": "persist_each_release",
    "MIRROR_TRUST_INDEX": "trust_index",
    "MIRROR_STAGING_DIR": "staging_dir",
    "MIRROR_DISK_SPACE_THRESHOLD": "disk_space_threshold",
    "MIRROR_REQUEST_TIMEOUT": "request_timeout",
    "MIRROR_DOWNLOAD_TIMEOUT": "download_timeout",
}

# Keys that may never come from a config file
SECRET_KEYS = {"github_token", "access_key", "secret_key"}


@dataclass
class RunConfig:
    """Configuration for one mirror run."""

    projects: tuple[str, ...] = DEFAULT_PROJECTS
    owner: str = DEFAULT_OWNER
    mode: EnumerationMode = EnumerationMode.ALL
    data_file: Path = Path(DEFAULT_DATA_FILE)
    storage_config: StorageConfig = field(
        default_factory=lambda: cast(StorageConfig, {"type": DEFAULT_STORAGE_TYPE, "config": {}})
    )
    github_token: str | None = None
    concurrency: int = DEFAULT_CONCURRENCY
    failure_policy: FAILURE_POLICIES = cast(FAILURE_POLICIES, DEFAULT_FAILURE_POLICY)
    persist_each_release: bool = True
    trust_index: bool = False
    dry_run: bool = False
    staging_dir: Path | None = None
    disk_space_threshold: float = DEFAULT_DISK_SPACE_THRESHOLD
    request_timeout: int = DEFAULT_REQUEST_TIMEOUT
    download_timeout: int = DEFAULT_DOWNLOAD_TIMEOUT

    @property
    def storage_type(self) -> STORAGE_TYPES:
        """Get the storage type."""
        return self.storage_config["type"]

    @property
    def bucket_name(self) -> str | None:
        """Get the bucket name from storage config."""
        return self.storage_config["config"].get("bucket_name")

    @property
    def bucket_location(self) -> str | None:
        """Get the configured bucket location, if any."""
        return self.storage_config["config"].get("bucket_location")

    @property
    def public_url_template(self) -> str:
        """Get the template used to build public asset URLs."""
        default = PUBLIC_URL_TEMPLATES.get(self.storage_type, PUBLIC_URL_TEMPLATES["qingstor"])
        return self.storage_config.get("public_url_template", default)

    def validate(self) -> None:
        """Check settings that would otherwise fail halfway through a run."""
        if not self.projects:
            raise ConfigurationError("No projects configured")
        if not self.owner:
            raise ConfigurationError("Repository owner must not be empty")
        if self.concurrency < 1:
            raise ConfigurationError(f"Concurrency must be at least 1, got {self.concurrency}")
        if self.failure_policy not in get_args(FAILURE_POLICIES):
            raise ConfigurationError(f"Unknown failure policy: {self.failure_policy}")
        if not 0.0 < self.disk_space_threshold <= 1.0:
            raise ConfigurationError(f"Disk space threshold must be in (0, 1], got {self.disk_space_threshold}")
        if self.storage_type not in get_args(STORAGE_TYPES):
            raise ConfigurationError(f"Unknown storage type: {self.storage_type}")
        if not self.bucket_name:
            raise ConfigurationError("Bucket name is required (set QINGSTOR_BUCKET_NAME)")
        if self.storage_type == "local" and not self.storage_config["config"].get("base_path"):
            raise ConfigurationError("Local storage requires base_path (set MIRROR_BASE_PATH)")

    def with_overrides(self, **overrides: Any) -> "RunConfig":
        """Return a copy with non-None overrides applied (used for CLI flags)."""
        return replace(self, **{key: value for key, value in overrides.items() if value is not None})


def _parse_bool(key: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ("1", "true", "yes", "on"):
        return True
    if text in ("0", "false", "no", "off", ""):
        return False
    raise ConfigurationError(f"Invalid boolean for {key}: {value!r}")


def _parse_number(key: str, value: Any, kind: type) -> Any:
    try:
        return kind(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid value for {key}: {value!r}") from e


def _parse_projects(value: Any) -> tuple[str, ...]:
    if isinstance(value, str):
        items = value.split(",")
    elif isinstance(value, list | tuple):
        items = [str(item) for item in value]
    else:
        raise ConfigurationError(f"Invalid projects list: {value!r}")
    return tuple(item.strip() for item in items if item.strip())


def _parse_mode(value: Any) -> EnumerationMode:
    try:
        return EnumerationMode(str(value).lower())
    except ValueError as e:
        choices = ", ".join(mode.value for mode in EnumerationMode)
        raise ConfigurationError(f"Invalid mode {value!r} (expected one of: {choices})") from e


def build_run_config(values: Mapping[str, Any]) -> RunConfig:
    """Build a RunConfig from a flat mapping of config keys."""
    storage_dict: dict[str, str] = {}
    for key in ("bucket_name", "bucket_location", "endpoint_url", "base_path", "access_key", "secret_key"):
        if values.get(key):
            storage_dict[key] = str(values[key])

    storage_config: StorageConfig = {
        "type": cast(STORAGE_TYPES, values.get("storage_type", DEFAULT_STORAGE_TYPE)),
        "config": cast(StorageConfigDict, storage_dict),
    }
    if values.get("public_url_template"):
        storage_config["public_url_template"] = str(values["public_url_template"])

    kwargs: dict[str, Any] = {"storage_config": storage_config}
    if "projects" in values:
        kwargs["projects"] = _parse_projects(values["projects"])
    if values.get("owner"):
        kwargs["owner"] = str(values["owner"])
    if "mode" in values:
        kwargs["mode"] = _parse_mode(values["mode"])
    if values.get("data_file"):
        kwargs["data_file"] = Path(values["data_file"])
    if values.get("github_token"):
        kwargs["github_token"] = str(values["github_token"])
    if "concurrency" in values:
        kwargs["concurrency"] = _parse_number("concurrency", values["concurrency"], int)
    if values.get("failure_policy"):
        kwargs["failure_policy"] = str(values["failure_policy"])
    for key in ("persist_each_release", "trust_index", "dry_run"):
        if key in values:
            kwargs[key] = _parse_bool(key, values[key])
    if values.get("staging_dir"):
        kwargs["staging_dir"] = Path(values["staging_dir"])
    if "disk_space_threshold" in values:
        kwargs["disk_space_threshold"] = _parse_number("disk_space_threshold", values["disk_space_threshold"], float)
    for key in ("request_timeout", "download_timeout"):
        if key in values:
            kwargs[key] = _parse_number(key, values[key], int)

    return RunConfig(**kwargs)


def read_config_file(config_path: str | Path) -> dict[str, Any]:
    """Read a JSON config file, rejecting embedded secrets."""
    try:
        with open(config_path) as f:
            config_dict = json.load(f)
    except FileNotFoundError as e:
        raise ConfigurationError(f"Config file not found: {config_path}") from e
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Invalid JSON in config file {config_path}: {e}") from e

    if not isinstance(config_dict, dict):
        raise ConfigurationError(f"Config file {config_path} must contain a JSON object")

    secrets = SECRET_KEYS & config_dict.keys()
    if secrets:
        raise ConfigurationError(
            f"Config file {config_path} must not contain secrets ({', '.join(sorted(secrets))}); use the environment"
        )
    return config_dict


def load_run_config(config_path: str | Path | None = None, environ: Mapping[str, str] | None = None) -> RunConfig:
    """
    Load run configuration.

    Values from the config file (if given) are overridden by environment variables.

    Args:
        config_path: Optional JSON config file
        environ: Environment mapping (defaults to os.environ)

    Returns:
        RunConfig for this run
    """
    environ = os.environ if environ is None else environ

    values: dict[str, Any] = {}
    if config_path is not None:
        values.update(read_config_file(config_path))

    for env_name, key in ENV_VARIABLES.items():
        value = environ.get(env_name)
        if value:
            values[key] = value

    return build_run_config(values)
