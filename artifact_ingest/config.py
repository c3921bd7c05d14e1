"""
Configuration management using YAML files and dataclasses.

This module defines all configuration dataclasses and provides loading
from YAML files with defaults. Configuration sections:
- SubmissionsConfig: Where submission JSON files live and the public base URL
- FetchConfig: HTTP fetching settings
- StorageConfig: Content store backend and dedup strategy
- PublishConfig: Metadata publishing backend
- LoggingConfig: Logging behavior
- AppConfig: Root configuration container

Secrets are never stored in the YAML file; each section names the
environment variable that holds them.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
import os
from typing import Any
from urllib.parse import urlsplit

import yaml

from .errors import UserConfigError

_PREFIX_SEPARATORS = ("/", "-", "_", ":")


@dataclass
class SubmissionsConfig:
    """Configuration for the submission repository.

    Attributes:
        path: Directory holding one ``<slug>.json`` file per artifact
        base_url: Public https base URL for canonical file URLs
    """

    path: str = "artifacts"
    base_url: str = "https://example.org/"


@dataclass
class FetchConfig:
    """Configuration for downloading source files.

    Attributes:
        timeout_seconds: HTTP request timeout
        retries: Extra attempts for transport errors and 5xx responses
        concurrency: Size of the worker pool for fetches and uploads
        trust_env: Whether to respect system proxy settings
        user_agent: HTTP User-Agent header string
        temp_dir: Directory for temporary downloads (system default if unset)
    """

    timeout_seconds: float = 60.0
    retries: int = 0
    concurrency: int = 4
    trust_env: bool = True
    user_agent: str = "artifact-ingest/0.1"
    temp_dir: str | None = None


@dataclass
class StorageConfig:
    """Configuration for the content-addressed store.

    Attributes:
        backend: "s3" or "local"
        prefix: Namespace prefix prepended to every store key
        dedup_strategy: "list", "exists" or "probe"
        bucket: S3 bucket name
        region: S3 region
        endpoint_url: Optional S3-compatible endpoint
        access_key_id_env: Env var holding the S3 access key id
        secret_access_key_env: Env var holding the S3 secret key
        local_dir: Root directory for the local backend
        public_base_url: Public URL objects are served from (probe strategy)
    """

    backend: str = "s3"
    prefix: str = "artifacts/"
    dedup_strategy: str = "list"
    bucket: str | None = None
    region: str = "auto"
    endpoint_url: str | None = None
    access_key_id_env: str = "S3_ACCESS_KEY_ID"
    secret_access_key_env: str = "S3_SECRET_ACCESS_KEY"
    local_dir: str = "store"
    public_base_url: str | None = None


@dataclass
class PublishConfig:
    """Configuration for metadata publishing.

    Attributes:
        backend: "kv" for Cloudflare Workers KV, or "file" for a JSON listing
        account_id: Cloudflare account id
        namespace_id: KV namespace id
        api_token_env: Env var holding the Cloudflare API token
        api_base_url: Cloudflare API base URL
        output_path: Listing file for the file backend
    """

    backend: str = "file"
    account_id: str | None = None
    namespace_id: str | None = None
    api_token_env: str = "CLOUDFLARE_API_TOKEN"
    api_base_url: str = "https://api.cloudflare.com/client/v4"
    output_path: str = "out/artifacts.json"


@dataclass
class LoggingConfig:
    """Configuration for logging behavior.

    Attributes:
        level: Logging level ("DEBUG", "INFO", "WARNING", "ERROR")
        console: Whether to log to console
        file: Whether to log to file
        format: Log file format ("jsonl" or "plain")
        filename: Name of the log file
        dir: Directory for the log file
    """

    level: str = "INFO"
    console: bool = True
    file: bool = False
    format: str = "jsonl"
    filename: str = "run.jsonl"
    dir: str = "out"


@dataclass
class AppConfig:
    """Root configuration container aggregating all config sections."""

    submissions: SubmissionsConfig = field(default_factory=SubmissionsConfig)
    fetch: FetchConfig = field(default_factory=FetchConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    publish: PublishConfig = field(default_factory=PublishConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


_SECTIONS: dict[str, type] = {
    "submissions": SubmissionsConfig,
    "fetch": FetchConfig,
    "storage": StorageConfig,
    "publish": PublishConfig,
    "logging": LoggingConfig,
}


def load_config(path: str | None) -> AppConfig:
    """Load configuration from a YAML file with defaults."""
    if not path:
        return AppConfig()

    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}

    if not isinstance(raw, dict):
        raise UserConfigError(f"{path}: top level must be a mapping")
    return _merge_config(AppConfig(), raw)


def _merge_config(base: AppConfig, raw: dict[str, Any]) -> AppConfig:
    """Merge raw YAML config into base AppConfig."""
    data = asdict(base)
    for key, value in raw.items():
        if key not in data:
            continue
        if not isinstance(value, dict):
            raise UserConfigError(f"config section '{key}' must be a mapping")
        allowed = {f.name for f in fields(_SECTIONS[key])}
        unknown = sorted(set(value) - allowed)
        if unknown:
            raise UserConfigError(f"unknown keys in config section '{key}': {', '.join(unknown)}")
        data[key].update(value)
    return _fromdict(data)


def _fromdict(data: dict[str, Any]) -> AppConfig:
    """Reconstruct AppConfig from nested dictionary."""
    return AppConfig(**{name: cls(**data[name]) for name, cls in _SECTIONS.items()})


def validate_config(cfg: AppConfig, mode: str) -> None:
    """Check settings the selected mode depends on.

    Raises:
        UserConfigError: Listing every problem found
    """
    problems: list[str] = []
    base = urlsplit(cfg.submissions.base_url)
    if base.scheme != "https" or not base.netloc:
        problems.append("submissions.base_url must be an https URL")
    if cfg.fetch.concurrency < 1:
        problems.append("fetch.concurrency must be at least 1")
    if cfg.fetch.retries < 0:
        problems.append("fetch.retries must not be negative")

    if mode == "upload":
        storage = cfg.storage
        if not storage.prefix or not storage.prefix.endswith(_PREFIX_SEPARATORS):
            problems.append(
                "storage.prefix must be non-empty and end with one of "
                + " ".join(_PREFIX_SEPARATORS)
            )
        if storage.backend not in ("s3", "local"):
            problems.append(f"storage.backend must be 's3' or 'local', got '{storage.backend}'")
        if storage.backend == "s3" and not storage.bucket:
            problems.append("storage.bucket is required for the s3 backend")
        if storage.dedup_strategy not in ("list", "exists", "probe"):
            problems.append("storage.dedup_strategy must be 'list', 'exists' or 'probe'")
        if storage.dedup_strategy == "probe" and not storage.public_base_url:
            problems.append("storage.public_base_url is required for the probe strategy")

    publish = cfg.publish
    if publish.backend not in ("kv", "file"):
        problems.append(f"publish.backend must be 'kv' or 'file', got '{publish.backend}'")
    if publish.backend == "kv" and not (publish.account_id and publish.namespace_id):
        problems.append("publish.account_id and publish.namespace_id are required for kv")

    if problems:
        raise UserConfigError("Invalid configuration:\n" + "\n".join(f"  - {p}" for p in problems))


def get_secret(env_name: str, *, required: bool = True) -> str | None:
    """Read a secret from the environment."""
    value = os.getenv(env_name)
    if required and not value:
        raise UserConfigError(f"The environment variable {env_name} is not set")
    return value or None
