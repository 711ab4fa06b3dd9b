"""Certificate authority and API server credential generation.

The CA certificate handed to nodes is DER encoded (``ca.der``); that is also
the only encoding ``load_certificate`` accepts. PEM copies are written for
the control-plane components, which expect PEM on their command line.
"""

from __future__ import annotations

import functools
import ipaddress
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path

from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from .config import MasterConfig, PKIConfig
from .exceptions import CertificateParseError, ProvisioningError

logger = logging.getLogger(__name__)

CA_CERT_PEM = "ca.pem"
CA_CERT_DER = "ca.der"
CA_KEY = "ca-key.pem"
APISERVER_CERT = "apiserver.pem"
APISERVER_KEY = "apiserver-key.pem"
SERVICE_ACCOUNT_KEY = "sa-key.pem"


@dataclass(frozen=True)
class PKIAssets:
    """Locations of the generated credentials plus the parsed CA certificate."""

    ca_cert: x509.Certificate
    ca_cert_path: Path
    ca_der_path: Path
    ca_key_path: Path
    apiserver_cert_path: Path
    apiserver_key_path: Path
    service_account_key_path: Path


def load_certificate(data: bytes, source: str | None = None) -> x509.Certificate:
    """Parse DER encoded X.509 bytes. Raises CertificateParseError otherwise."""
    try:
        return x509.load_der_x509_certificate(data)
    except ValueError as exc:
        where = f" in {source}" if source else ""
        raise CertificateParseError(
            f"Unable to parse DER X.509 certificate{where}: {exc}", path=source,
        ) from exc


def generate_private_key(key_size: int) -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=key_size)


def generate_ca(
    key_size: int = 2048,
    validity_days: int = 365,
    common_name: str = "kubernetes",
) -> tuple[rsa.RSAPrivateKey, x509.Certificate]:
    """Create a self-signed CA key pair."""
    key = generate_private_key(key_size)
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    now = datetime.now(timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(minutes=5))
        .not_valid_after(now + timedelta(days=validity_days))
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        .add_extension(
            x509.KeyUsage(
                digital_signature=True,
                content_commitment=False,
                key_encipherment=True,
                data_encipherment=False,
                key_agreement=False,
                key_cert_sign=True,
                crl_sign=True,
                encipher_only=False,
                decipher_only=False,
            ),
            critical=True,
        )
        .add_extension(x509.SubjectKeyIdentifier.from_public_key(key.public_key()), critical=False)
        .sign(key, hashes.SHA256())
    )
    return key, cert


def apiserver_alt_names(
    master: MasterConfig,
    dns_name: str | None = None,
    listen_ip: str | None = None,
) -> x509.SubjectAlternativeName:
    """subjectAltName entries for the API server serving certificate."""
    dns_names = [
        "kubernetes",
        "kubernetes.default",
        "kubernetes.default.svc",
        f"kubernetes.default.svc.{master.dns_domain}",
    ]
    if dns_name and dns_name not in dns_names:
        dns_names.append(dns_name)

    ips = [ipaddress.ip_address("127.0.0.1")]
    if listen_ip:
        ips.append(ipaddress.ip_address(listen_ip))
    # The "kubernetes" service always gets the first address of the service range
    ips.append(ipaddress.ip_network(master.service_cluster_ip_range)[1])

    unique_ips = list(dict.fromkeys(ips))
    return x509.SubjectAlternativeName(
        [x509.DNSName(n) for n in dns_names] + [x509.IPAddress(ip) for ip in unique_ips]
    )


def generate_apiserver_cert(
    ca_key: rsa.RSAPrivateKey,
    ca_cert: x509.Certificate,
    alt_names: x509.SubjectAlternativeName,
    key_size: int = 2048,
    validity_days: int = 365,
) -> tuple[rsa.RSAPrivateKey, x509.Certificate]:
    key = generate_private_key(key_size)
    now = datetime.now(timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "kube-apiserver")]))
        .issuer_name(ca_cert.subject)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(minutes=5))
        .not_valid_after(now + timedelta(days=validity_days))
        .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
        .add_extension(
            x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH, ExtendedKeyUsageOID.CLIENT_AUTH]),
            critical=False,
        )
        .add_extension(alt_names, critical=False)
        .sign(ca_key, hashes.SHA256())
    )
    return key, cert


def generate_pki(
    pki_dir: str | Path,
    pki_config: PKIConfig,
    master: MasterConfig,
    dns_name: str | None = None,
    listen_ip: str | None = None,
) -> PKIAssets:
    """Create the CA, API server and service-account credentials under pki_dir.

    An existing CA is reused so a re-run does not invalidate certificates
    that nodes already trust. Everything derived from the CA (``ca.der`` and
    the API server certificate) must match it: a freshly generated CA
    replaces both, and an API server certificate from some other CA is a
    ProvisioningError.
    """
    pki_dir = Path(pki_dir)
    os.makedirs(pki_dir, exist_ok=True)

    ca_cert_path = pki_dir / CA_CERT_PEM
    ca_key_path = pki_dir / CA_KEY
    ca_der_path = pki_dir / CA_CERT_DER

    if ca_cert_path.exists() and ca_key_path.exists():
        logger.info("Reusing existing CA in %s", pki_dir, extra={"step": "pki", "path": str(pki_dir)})
        ca_key, ca_cert = _load_ca(ca_key_path, ca_cert_path)
        new_ca = False
    elif ca_cert_path.exists() or ca_key_path.exists():
        raise ProvisioningError(
            f"Found only one of {ca_cert_path.name} / {ca_key_path.name} in {pki_dir}; "
            "remove it or restore the missing half before re-running",
            step="pki",
        )
    else:
        logger.info("Generating new CA in %s", pki_dir, extra={"step": "pki", "path": str(pki_dir)})
        ca_key, ca_cert = generate_ca(pki_config.key_size, pki_config.validity_days, master.cluster_name)
        _write_private(ca_key_path, _key_pem(ca_key))
        _write_public(ca_cert_path, ca_cert.public_bytes(serialization.Encoding.PEM))
        new_ca = True

    ca_der = ca_cert.public_bytes(serialization.Encoding.DER)
    if not ca_der_path.exists() or ca_der_path.read_bytes() != ca_der:
        # ca.pem is authoritative; ca.der is only its distribution copy
        _write_public(ca_der_path, ca_der)

    apiserver_cert_path = pki_dir / APISERVER_CERT
    apiserver_key_path = pki_dir / APISERVER_KEY
    if not new_ca and apiserver_cert_path.exists() and apiserver_key_path.exists():
        _check_issued_by(apiserver_cert_path, ca_cert)
        logger.info("Reusing existing API server certificate", extra={"step": "pki"})
    else:
        alt_names = apiserver_alt_names(master, dns_name=dns_name, listen_ip=listen_ip)
        key, cert = generate_apiserver_cert(
            ca_key, ca_cert, alt_names, pki_config.key_size, pki_config.validity_days,
        )
        _write_private(apiserver_key_path, _key_pem(key))
        _write_public(apiserver_cert_path, cert.public_bytes(serialization.Encoding.PEM))
        logger.info("Wrote API server certificate %s", apiserver_cert_path, extra={"step": "pki"})

    sa_key_path = pki_dir / SERVICE_ACCOUNT_KEY
    if new_ca or not sa_key_path.exists():
        # A new CA starts a new control plane, so its token signing key is new too
        _write_private(sa_key_path, _key_pem(generate_private_key(pki_config.key_size)))

    return PKIAssets(
        ca_cert=ca_cert,
        ca_cert_path=ca_cert_path,
        ca_der_path=ca_der_path,
        ca_key_path=ca_key_path,
        apiserver_cert_path=apiserver_cert_path,
        apiserver_key_path=apiserver_key_path,
        service_account_key_path=sa_key_path,
    )


def _check_issued_by(cert_path: Path, ca_cert: x509.Certificate) -> None:
    try:
        cert = x509.load_pem_x509_certificate(cert_path.read_bytes())
        cert.verify_directly_issued_by(ca_cert)
    except (ValueError, TypeError, InvalidSignature) as exc:
        raise ProvisioningError(
            f"{cert_path} was not issued by the CA in {cert_path.parent}; "
            f"remove it and re-run to issue a new one ({exc or type(exc).__name__})",
            step="pki",
        ) from exc


def _load_ca(key_path: Path, cert_path: Path) -> tuple[rsa.RSAPrivateKey, x509.Certificate]:
    try:
        key = serialization.load_pem_private_key(key_path.read_bytes(), password=None)
        cert = x509.load_pem_x509_certificate(cert_path.read_bytes())
    except ValueError as exc:
        raise ProvisioningError(f"Existing CA material in {key_path.parent} is unreadable: {exc}", step="pki") from exc
    if not isinstance(key, rsa.RSAPrivateKey):
        raise ProvisioningError(f"{key_path} is not an RSA private key", step="pki")
    return key, cert


def _key_pem(key: rsa.RSAPrivateKey) -> bytes:
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )


def _write_private(path: Path, data: bytes) -> None:
    with open(path, "wb", opener=functools.partial(os.open, mode=0o600)) as f:
        f.write(data)


def _write_public(path: Path, data: bytes) -> None:
    with open(path, "wb") as f:
        f.write(data)
