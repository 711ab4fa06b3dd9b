"""Bootstrap configuration: frozen dataclasses loaded from an optional YAML file.

String values may reference the environment as ``${NAME}``. Integer fields
accept such a reference too, since the expanded text is converted after
interpolation.
"""

from __future__ import annotations

import dataclasses
import ipaddress
import os
import re
import typing
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .exceptions import ConfigError

_ENV_PATTERN = re.compile(r"\$\{([^}]+)\}")


def _interpolate_env(value: str, where: str) -> str:
    def _replace(match: re.Match) -> str:
        env_val = os.environ.get(match.group(1))
        if env_val is None:
            raise ConfigError(f"{where}: environment variable '{match.group(1)}' is not set")
        return env_val

    return _ENV_PATTERN.sub(_replace, value)


@dataclass(frozen=True)
class PathsConfig:
    """Output locations. Any path left empty is placed under kubernetes_dir."""

    kubernetes_dir: str = "/etc/kubernetes"
    manifests_dir: str = ""
    pki_dir: str = ""
    kubeconfig_path: str = ""  # same path for master and node

    def __post_init__(self) -> None:
        root = Path(self.kubernetes_dir)
        for name, default in (("manifests_dir", "manifests"), ("pki_dir", "pki"), ("kubeconfig_path", "kubelet.conf")):
            if not getattr(self, name):
                object.__setattr__(self, name, str(root / default))


@dataclass(frozen=True)
class MasterConfig:
    cluster_name: str = "kubernetes"
    service_cluster_ip_range: str = "10.16.0.0/12"
    kubernetes_version: str = "v1.4.0"
    image_registry: str = "gcr.io/google_containers"
    image_name: str = "hyperkube"
    etcd_image: str = "gcr.io/google_containers/etcd:2.2.1"
    secure_port: int = 443
    insecure_port: int = 8080
    cloud_provider: str = ""  # empty = no --cloud-provider flag
    dns_domain: str = "cluster.local"


@dataclass(frozen=True)
class PKIConfig:
    key_size: int = 2048
    validity_days: int = 365


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"
    format: str = "text"  # "json" or "text"


@dataclass(frozen=True)
class AppConfig:
    paths: PathsConfig = field(default_factory=PathsConfig)
    master: MasterConfig = field(default_factory=MasterConfig)
    pki: PKIConfig = field(default_factory=PKIConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _build_section(cls: type, data: dict[str, Any], prefix: str = "") -> Any:
    """Build dataclass ``cls`` from a YAML mapping. Unknown keys are ignored."""
    hints = typing.get_type_hints(cls)
    kwargs: dict[str, Any] = {}
    for f in dataclasses.fields(cls):
        if f.name not in data:
            continue
        where = f"{prefix}{f.name}"
        value = data[f.name]
        ft = hints[f.name]
        if dataclasses.is_dataclass(ft):
            if not isinstance(value, dict):
                raise ConfigError(f"Section '{where}' must be a YAML mapping")
            value = _build_section(ft, value, prefix=f"{where}.")
        elif isinstance(value, str):
            value = _interpolate_env(value, where)
            if ft is int:
                try:
                    value = int(value)
                except ValueError:
                    raise ConfigError(f"{where} must be an integer, got {value!r}") from None
        kwargs[f.name] = value
    return cls(**kwargs)


def load_config(path: str | Path | None = None) -> AppConfig:
    """Load and validate configuration from a YAML file.

    With no path the built-in defaults are returned (still validated).
    """
    if path is None:
        config = AppConfig()
    else:
        path = Path(path)
        if not path.is_file():
            raise ConfigError(f"Configuration file not found: {path}")
        with open(path) as f:
            try:
                raw = yaml.safe_load(f)
            except yaml.YAMLError as exc:
                raise ConfigError(f"Invalid YAML in {path}: {exc}") from exc
        if not isinstance(raw, dict):
            raise ConfigError("Configuration file must be a YAML mapping")
        config = _build_section(AppConfig, raw)

    _validate(config)
    return config


def _validate(config: AppConfig) -> None:
    """Validate configuration values."""
    for name in ("secure_port", "insecure_port"):
        port = getattr(config.master, name)
        if not isinstance(port, int) or not 1 <= port <= 65535:
            raise ConfigError(f"master.{name} must be an integer between 1 and 65535")

    try:
        ipaddress.ip_network(config.master.service_cluster_ip_range)
    except ValueError as exc:
        raise ConfigError(f"master.service_cluster_ip_range is not a valid CIDR: {exc}") from exc

    if not config.master.kubernetes_version:
        raise ConfigError("master.kubernetes_version is required")

    if not isinstance(config.pki.key_size, int) or config.pki.key_size < 2048:
        raise ConfigError("pki.key_size must be an integer >= 2048")

    if not isinstance(config.pki.validity_days, int) or config.pki.validity_days < 1:
        raise ConfigError("pki.validity_days must be an integer >= 1")

    if not config.paths.kubernetes_dir:
        raise ConfigError("paths.kubernetes_dir is required")

    if config.logging.format not in ("json", "text"):
        raise ConfigError("logging.format must be 'json' or 'text'")
