"""Data models shared by every discovery variant."""

from __future__ import annotations

import enum
from collections.abc import Iterable
from dataclasses import dataclass

from cryptography import x509

API_VERSION = "v1alpha1"


class Role(str, enum.Enum):
    MASTER = "master"
    NODE = "node"


@dataclass(frozen=True)
class DiscoveryBase:
    """Fields common to all discovery variants."""

    role: Role
    api_version: str = API_VERSION


@dataclass(frozen=True)
class DiscoveryResult:
    """Endpoints and trust material resolved by Discovery.discover().

    ``ca_cert_bytes`` keeps the encoded form read from disk so that it can be
    embedded verbatim (re-encoded as PEM) in the kubeconfig.
    """

    endpoints: tuple[str, ...]
    ca_cert: x509.Certificate
    ca_cert_bytes: bytes


def split_urls(value: str) -> list[str]:
    """Split a comma-separated URL list, preserving order.

    Surrounding whitespace is stripped and empty entries are dropped. Entries
    are not otherwise validated; a malformed URL is passed through as given.
    """
    return [part.strip() for part in value.split(",") if part.strip()]


def join_urls(urls: Iterable[str]) -> str:
    return ",".join(urls)
