"""kubeconfig rendering and the create-if-absent write."""

from __future__ import annotations

import base64
import functools
import logging
import os
from collections.abc import Sequence
from pathlib import Path
from typing import Any

import yaml
from cryptography import x509
from cryptography.hazmat.primitives import serialization

logger = logging.getLogger(__name__)


def build_kubeconfig(
    endpoints: Sequence[str],
    ca_cert: x509.Certificate,
    cluster_name: str = "kubernetes",
) -> dict[str, Any]:
    """Build a kubeconfig with one cluster/context per endpoint, in input order.

    The first endpoint is the current context.
    """
    if not endpoints:
        raise ValueError("At least one API server endpoint is required")

    ca_data = base64.b64encode(ca_cert.public_bytes(serialization.Encoding.PEM)).decode("ascii")
    clusters = []
    contexts = []
    for index, server in enumerate(endpoints):
        name = cluster_name if index == 0 else f"{cluster_name}-{index}"
        clusters.append({
            "name": name,
            "cluster": {"server": server, "certificate-authority-data": ca_data},
        })
        contexts.append({
            "name": name,
            "context": {"cluster": name, "user": "kubelet"},
        })

    return {
        "apiVersion": "v1",
        "kind": "Config",
        "clusters": clusters,
        "contexts": contexts,
        "current-context": contexts[0]["name"],
        "users": [{"name": "kubelet", "user": {}}],
        "preferences": {},
    }


def write_kubeconfig_if_absent(
    path: str | Path,
    endpoints: Sequence[str],
    ca_cert: x509.Certificate,
    cluster_name: str = "kubernetes",
) -> bool:
    """Write the kubeconfig unless something already exists at ``path``.

    Returns True when the file was written and False when it was already
    present, in which case its contents are left untouched. The file is opened
    with exclusive-create, so two concurrent runs cannot both write it.
    """
    path = Path(path)
    content = yaml.safe_dump(build_kubeconfig(endpoints, ca_cert, cluster_name), default_flow_style=False)

    os.makedirs(path.parent, exist_ok=True)
    try:
        f = open(path, "x", opener=functools.partial(os.open, mode=0o600))
    except FileExistsError:
        logger.info("kubeconfig already exists at %s, leaving it unchanged", path, extra={"path": str(path)})
        return False

    try:
        with f:
            f.write(content)
    except BaseException:
        # A half-written file would be mistaken for a finished one on re-run
        path.unlink(missing_ok=True)
        raise

    logger.info(
        "Wrote kubeconfig %s",
        path,
        extra={"path": str(path), "endpoint_count": len(endpoints)},
    )
    return True
