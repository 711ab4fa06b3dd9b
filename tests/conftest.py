"""Shared fixtures: a throwaway CA and a config rooted in tmp_path."""

from __future__ import annotations

import logging

import pytest
import yaml
from cryptography.hazmat.primitives import serialization

from kubeadm_bootstrap.config import AppConfig, PathsConfig
from kubeadm_bootstrap.pki import generate_ca


@pytest.fixture(autouse=True)
def _restore_root_logger():
    """configure_logging() swaps root handlers; put pytest's back afterwards."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
    logging.captureWarnings(False)


@pytest.fixture(scope="session")
def ca_pair():
    """(key, certificate) generated once per test session."""
    return generate_ca(key_size=2048, validity_days=1, common_name="test-ca")


@pytest.fixture
def ca_cert(ca_pair):
    return ca_pair[1]


@pytest.fixture
def ca_der_file(tmp_path, ca_cert):
    path = tmp_path / "ca.der"
    path.write_bytes(ca_cert.public_bytes(serialization.Encoding.DER))
    return path


@pytest.fixture
def paths(tmp_path) -> PathsConfig:
    root = tmp_path / "etc-kubernetes"
    return PathsConfig(
        kubernetes_dir=str(root),
        manifests_dir=str(root / "manifests"),
        pki_dir=str(root / "pki"),
        kubeconfig_path=str(root / "kubelet.conf"),
    )


@pytest.fixture
def app_config(paths) -> AppConfig:
    return AppConfig(paths=paths)


@pytest.fixture
def config_file(tmp_path, paths):
    """YAML config file pointing every path into tmp_path."""
    path = tmp_path / "config.yaml"
    path.write_text(yaml.dump({
        "paths": {
            "kubernetes_dir": paths.kubernetes_dir,
            "manifests_dir": paths.manifests_dir,
            "pki_dir": paths.pki_dir,
            "kubeconfig_path": paths.kubeconfig_path,
        },
        "logging": {"level": "WARNING", "format": "text"},
    }))
    return path
