"""Custom exception hierarchy for the cluster bootstrap tooling."""


class BootstrapError(Exception):
    """Base exception for all bootstrap errors."""


class ConfigError(BootstrapError):
    """Invalid or missing configuration."""


class MissingRequiredField(BootstrapError):
    """A flag required by the selected bootstrap role was not supplied."""

    def __init__(self, flag: str, message: str | None = None):
        super().__init__(message or f"Must specify {flag} (see --help)")
        self.flag = flag


class CertificateReadError(BootstrapError):
    """The CA certificate file could not be read from disk."""

    def __init__(self, message: str, path: str | None = None):
        super().__init__(message)
        self.path = path


class CertificateParseError(BootstrapError):
    """The CA certificate bytes do not decode as a DER X.509 certificate."""

    def __init__(self, message: str, path: str | None = None):
        super().__init__(message)
        self.path = path


class DiscoveryNotImplemented(BootstrapError, NotImplementedError):
    """The selected discovery variant has no working implementation yet."""


class ProvisioningError(BootstrapError):
    """A provisioning step failed while writing manifests, PKI or kubeconfig."""

    def __init__(self, message: str, step: str | None = None):
        super().__init__(message)
        self.step = step
