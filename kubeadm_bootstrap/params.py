"""Bootstrap parameters: role plus exactly one discovery variant."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from typing import Any

from .discovery import (
    API_VERSION,
    Discovery,
    GossipDiscovery,
    OutOfBandDiscovery,
    Role,
    gossip,
    out_of_band,
)
from .exceptions import ConfigError, MissingRequiredField

METHOD_OUT_OF_BAND = "out-of-band"
METHOD_GOSSIP = "gossip"

# On the master we assume the API server is reachable locally
DEFAULT_MASTER_API_SERVER_URLS = "http://127.0.0.1:8080/"


@dataclass(frozen=True)
class DiscoveryOptions:
    """Raw option values as they come from flags or a config file."""

    method: str = METHOD_OUT_OF_BAND
    api_server_urls: str = ""
    ca_cert_file: str = ""
    api_server_dns_name: str | None = None
    listen_ip: str | None = None
    token: str = ""
    peers: str = ""


@dataclass(frozen=True)
class BootstrapParameters:
    role: Role
    discovery: Discovery

    def __post_init__(self) -> None:
        if self.discovery is None:
            raise ValueError("discovery must be set once the role is known")
        if not isinstance(self.discovery, (OutOfBandDiscovery, GossipDiscovery)):
            raise TypeError(f"Unsupported discovery variant: {type(self.discovery).__name__}")
        if self.discovery.role != self.role:
            raise ValueError(
                f"Discovery role {self.discovery.role.value!r} does not match parameters role {self.role.value!r}"
            )

    def with_discovery(self, discovery: Discovery) -> BootstrapParameters:
        """Return new parameters with ``discovery`` replacing the current variant."""
        return dataclasses.replace(self, discovery=discovery)


def build_params(role: Role, options: DiscoveryOptions) -> BootstrapParameters:
    """Construct parameters with exactly one discovery variant.

    Required fields are not checked here; see missing_join_field().
    """
    if options.method == METHOD_GOSSIP:
        discovery: Discovery = gossip(role, token=options.token, peers=options.peers)
    elif options.method == METHOD_OUT_OF_BAND:
        discovery = out_of_band(
            role,
            api_server_urls=options.api_server_urls,
            ca_cert_file=options.ca_cert_file,
            api_server_dns_name=options.api_server_dns_name,
            listen_ip=options.listen_ip,
        )
    else:
        raise ConfigError(f"Unknown discovery method: {options.method!r}")
    return BootstrapParameters(role=role, discovery=discovery)


def missing_join_field(discovery: Discovery) -> MissingRequiredField | None:
    """Return the first field a node join still needs, or None if it can proceed."""
    if isinstance(discovery, OutOfBandDiscovery):
        if not discovery.ca_cert_file:
            return MissingRequiredField("--ca-cert-file")
        if not discovery.endpoints:
            return MissingRequiredField("--api-server-urls")
        return None
    if isinstance(discovery, GossipDiscovery):
        if not discovery.token:
            return MissingRequiredField("--token")
        return None
    raise TypeError(f"Unsupported discovery variant: {type(discovery).__name__}")


def discovery_to_wire(discovery: Discovery) -> dict[str, Any]:
    """Serialize a discovery variant using its camelCase wire field names."""
    if not isinstance(discovery, (OutOfBandDiscovery, GossipDiscovery)):
        raise TypeError(f"Unsupported discovery variant: {type(discovery).__name__}")

    wire: dict[str, Any] = {
        "apiVersion": discovery.api_version,
        "role": discovery.role.value,
    }
    if isinstance(discovery, OutOfBandDiscovery):
        wire["apiServerURLs"] = discovery.api_server_urls
        wire["caCertFile"] = discovery.ca_cert_file
        if discovery.api_server_dns_name:
            wire["apiServerDNSName"] = discovery.api_server_dns_name
        if discovery.listen_ip:
            wire["listenIP"] = discovery.listen_ip
    else:
        wire["token"] = discovery.token
        wire["peers"] = discovery.peers
    return wire


def discovery_from_wire(data: dict[str, Any]) -> Discovery:
    """Inverse of discovery_to_wire(). A ``token`` or ``peers`` key selects gossip."""
    api_version = data.get("apiVersion", API_VERSION)
    if api_version != API_VERSION:
        raise ConfigError(f"Unsupported discovery apiVersion {api_version!r} (expected {API_VERSION!r})")

    try:
        role = Role(data.get("role", ""))
    except ValueError as exc:
        raise ConfigError(f"discovery role must be 'master' or 'node', got {data.get('role')!r}") from exc

    if "token" in data or "peers" in data:
        return gossip(role, token=data.get("token", ""), peers=data.get("peers", ""))
    return out_of_band(
        role,
        api_server_urls=data.get("apiServerURLs", ""),
        ca_cert_file=data.get("caCertFile", ""),
        api_server_dns_name=data.get("apiServerDNSName"),
        listen_ip=data.get("listenIP"),
    )
