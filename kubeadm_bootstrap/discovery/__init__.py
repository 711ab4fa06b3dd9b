"""Discovery package: the capability Protocol and the closed set of variants."""

from __future__ import annotations

from typing import Protocol, Union, runtime_checkable

from .gossip import GossipDiscovery, gossip
from .models import API_VERSION, DiscoveryBase, DiscoveryResult, Role, join_urls, split_urls
from .out_of_band import OutOfBandDiscovery, out_of_band


@runtime_checkable
class DiscoveryCapability(Protocol):
    """Protocol that every discovery variant must satisfy."""

    def start(self) -> None:
        """Begin any long-running discovery process (at most once per instance)."""
        ...

    def discover(self) -> DiscoveryResult:
        """Resolve the API server endpoints and the CA certificate to trust."""
        ...


# Adding a variant means extending this union and every isinstance dispatch over it.
Discovery = Union[OutOfBandDiscovery, GossipDiscovery]

__all__ = [
    "API_VERSION",
    "Discovery",
    "DiscoveryBase",
    "DiscoveryCapability",
    "DiscoveryResult",
    "GossipDiscovery",
    "OutOfBandDiscovery",
    "Role",
    "gossip",
    "join_urls",
    "out_of_band",
    "split_urls",
]
