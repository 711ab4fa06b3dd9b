"""Static pod manifests for the control-plane components."""

from __future__ import annotations

import logging
import os
import tempfile
from collections.abc import Sequence
from pathlib import Path
from typing import Any

import yaml

from .config import MasterConfig, PathsConfig
from .pki import APISERVER_CERT, APISERVER_KEY, CA_CERT_PEM, SERVICE_ACCOUNT_KEY

logger = logging.getLogger(__name__)

COMPONENTS = ("etcd", "kube-apiserver", "kube-controller-manager", "kube-scheduler")


def _image(master: MasterConfig) -> str:
    return f"{master.image_registry}/{master.image_name}:{master.kubernetes_version}"


def _host_path_volume(name: str, path: str) -> tuple[dict, dict]:
    volume = {"name": name, "hostPath": {"path": path}}
    mount = {"name": name, "mountPath": path, "readOnly": True}
    return volume, mount


def _pod(name: str, image: str, command: list[str], volumes: Sequence[tuple[dict, dict]] = ()) -> dict[str, Any]:
    container: dict[str, Any] = {
        "name": name,
        "image": image,
        "command": command,
    }
    if volumes:
        container["volumeMounts"] = [m for _, m in volumes]
    spec: dict[str, Any] = {"hostNetwork": True, "containers": [container]}
    if volumes:
        spec["volumes"] = [v for v, _ in volumes]
    return {
        "apiVersion": "v1",
        "kind": "Pod",
        "metadata": {
            "name": name,
            "namespace": "kube-system",
            "labels": {"component": name, "tier": "control-plane"},
        },
        "spec": spec,
    }


def build_manifests(
    master: MasterConfig,
    paths: PathsConfig,
    listen_ip: str | None = None,
) -> dict[str, dict[str, Any]]:
    """Return {component name: pod definition} for every control-plane component."""
    image = _image(master)
    pki = paths.pki_dir
    pki_volume = _host_path_volume("pki", pki)
    bind_address = listen_ip or "0.0.0.0"
    insecure_url = f"http://127.0.0.1:{master.insecure_port}"

    apiserver = [
        "/hyperkube", "apiserver",
        "--etcd-servers=http://127.0.0.1:2379",
        f"--service-cluster-ip-range={master.service_cluster_ip_range}",
        f"--bind-address={bind_address}",
        f"--secure-port={master.secure_port}",
        f"--insecure-port={master.insecure_port}",
        f"--client-ca-file={pki}/{CA_CERT_PEM}",
        f"--tls-cert-file={pki}/{APISERVER_CERT}",
        f"--tls-private-key-file={pki}/{APISERVER_KEY}",
        f"--service-account-key-file={pki}/{SERVICE_ACCOUNT_KEY}",
        "--allow-privileged=true",
    ]
    if listen_ip:
        apiserver.append(f"--advertise-address={listen_ip}")

    controller_manager = [
        "/hyperkube", "controller-manager",
        f"--master={insecure_url}",
        f"--cluster-name={master.cluster_name}",
        f"--root-ca-file={pki}/{CA_CERT_PEM}",
        f"--service-account-private-key-file={pki}/{SERVICE_ACCOUNT_KEY}",
        "--leader-elect",
    ]
    if master.cloud_provider:
        for command in (apiserver, controller_manager):
            command.append(f"--cloud-provider={master.cloud_provider}")

    return {
        "etcd": _pod("etcd", master.etcd_image, [
            "/usr/local/bin/etcd",
            "--listen-client-urls=http://127.0.0.1:2379",
            "--advertise-client-urls=http://127.0.0.1:2379",
            "--data-dir=/var/etcd/data",
        ]),
        "kube-apiserver": _pod("kube-apiserver", image, apiserver, [pki_volume]),
        "kube-controller-manager": _pod("kube-controller-manager", image, controller_manager, [pki_volume]),
        "kube-scheduler": _pod("kube-scheduler", image, [
            "/hyperkube", "scheduler",
            f"--master={insecure_url}",
            "--leader-elect",
        ]),
    }


def write_static_pod_manifests(
    master: MasterConfig,
    paths: PathsConfig,
    listen_ip: str | None = None,
) -> list[Path]:
    """Write one <component>.yaml per control-plane pod into the manifests directory.

    Each file is replaced atomically so the kubelet never reads a half-written
    manifest. Existing manifests are overwritten.
    """
    manifests_dir = Path(paths.manifests_dir)
    os.makedirs(manifests_dir, exist_ok=True)

    written: list[Path] = []
    for name, pod in build_manifests(master, paths, listen_ip).items():
        target = manifests_dir / f"{name}.yaml"
        fd, tmp = tempfile.mkstemp(dir=manifests_dir, prefix=f".{name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as f:
                yaml.safe_dump(pod, f, default_flow_style=False, sort_keys=False)
            os.replace(tmp, target)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise
        logger.debug("Wrote static pod manifest %s", target, extra={"step": "manifests", "path": str(target)})
        written.append(target)

    logger.info("Wrote %d static pod manifests to %s", len(written), manifests_dir, extra={"step": "manifests"})
    return written
