"""Gossip discovery placeholder.

The token and peer list are carried through configuration so that a future
membership protocol can be seeded from them. Until that protocol exists every
operation fails loudly instead of returning empty results.
"""

from __future__ import annotations

from dataclasses import dataclass

from ..exceptions import DiscoveryNotImplemented
from .models import API_VERSION, DiscoveryBase, DiscoveryResult, Role, split_urls


@dataclass(frozen=True)
class GossipDiscovery:
    base: DiscoveryBase
    token: str = ""
    peers: str = ""  # comma separated

    @property
    def role(self) -> Role:
        return self.base.role

    @property
    def api_version(self) -> str:
        return self.base.api_version

    @property
    def peers_list(self) -> list[str]:
        return split_urls(self.peers)

    def start(self) -> None:
        raise DiscoveryNotImplemented("Gossip discovery is not implemented yet: there is no peer protocol to start")

    def discover(self) -> DiscoveryResult:
        raise DiscoveryNotImplemented("Gossip discovery is not implemented yet; use out-of-band discovery")


def gossip(role: Role, token: str = "", peers: str = "") -> GossipDiscovery:
    return GossipDiscovery(
        base=DiscoveryBase(role=role, api_version=API_VERSION),
        token=token,
        peers=peers,
    )
