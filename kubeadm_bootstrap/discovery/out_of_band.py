"""Out-of-band discovery: endpoints and CA are handed to us by the operator."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from ..exceptions import CertificateReadError
from ..pki import load_certificate
from .models import API_VERSION, DiscoveryBase, DiscoveryResult, Role, split_urls

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OutOfBandDiscovery:
    """Discovery from an operator-distributed CA file and a static URL list."""

    base: DiscoveryBase
    api_server_urls: str = ""  # comma separated
    ca_cert_file: str = ""
    api_server_dns_name: str | None = None  # master only, goes into subjectAltName
    listen_ip: str | None = None  # overrides address autodetection on the master

    @property
    def role(self) -> Role:
        return self.base.role

    @property
    def api_version(self) -> str:
        return self.base.api_version

    @property
    def endpoints(self) -> list[str]:
        return split_urls(self.api_server_urls)

    def start(self) -> None:
        """No long-running process is needed; everything is known up front."""

    def discover(self) -> DiscoveryResult:
        """Read and parse the CA certificate and split the API server URL list.

        Raises CertificateReadError if the file cannot be read and
        CertificateParseError if it is not a DER X.509 certificate. Nothing is
        cached, so each call reflects the file as it is on disk right now.
        """
        try:
            with open(self.ca_cert_file, "rb") as f:
                data = f.read()
        except OSError as exc:
            raise CertificateReadError(
                f"Unable to read CA certificate {self.ca_cert_file}: {exc}",
                path=self.ca_cert_file,
            ) from exc

        ca_cert = load_certificate(data, source=self.ca_cert_file)
        endpoints = tuple(self.endpoints)
        logger.debug(
            "Discovered %d API server endpoint(s) out of band",
            len(endpoints),
            extra={"role": self.role.value, "endpoint_count": len(endpoints)},
        )
        return DiscoveryResult(endpoints=endpoints, ca_cert=ca_cert, ca_cert_bytes=data)


def out_of_band(
    role: Role,
    api_server_urls: str = "",
    ca_cert_file: str = "",
    api_server_dns_name: str | None = None,
    listen_ip: str | None = None,
) -> OutOfBandDiscovery:
    """Convenience constructor that fills in the DiscoveryBase."""
    return OutOfBandDiscovery(
        base=DiscoveryBase(role=role, api_version=API_VERSION),
        api_server_urls=api_server_urls,
        ca_cert_file=ca_cert_file,
        api_server_dns_name=api_server_dns_name or None,
        listen_ip=listen_ip or None,
    )
