"""Ordered provisioning steps for the master and node bootstrap paths.

Master: manifests -> PKI -> kubeconfig. Node: discover -> kubeconfig.
A failure in any step before the kubeconfig write is fatal and stops the run.
A failed kubeconfig write is only a warning because the earlier steps have
already made progress that must be kept. A kubeconfig that already exists is
left alone and counts as success.
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from cryptography import x509

from .config import AppConfig
from .discovery import Discovery, GossipDiscovery, OutOfBandDiscovery, Role, split_urls
from .exceptions import BootstrapError, MissingRequiredField
from .kubeconfig import write_kubeconfig_if_absent
from .manifests import write_static_pod_manifests
from .params import DEFAULT_MASTER_API_SERVER_URLS, BootstrapParameters, missing_join_field
from .pki import PKIAssets, generate_pki

logger = logging.getLogger(__name__)

STEP_MANIFESTS = "manifests"
STEP_PKI = "pki"
STEP_DISCOVER = "discover"
STEP_KUBECONFIG = "kubeconfig"

# Errors a step may raise that are reported instead of crashing the command
STEP_ERRORS = (BootstrapError, OSError, ValueError)

ManifestWriter = Callable[..., Sequence[Path]]
PKIGenerator = Callable[..., PKIAssets]
KubeconfigWriter = Callable[[Path, Sequence[str], x509.Certificate, str], bool]


class Severity(str, enum.Enum):
    OK = "ok"
    DEGRADED = "degraded"  # bootstrapped, but the kubeconfig write failed
    REJECTED = "rejected"  # required input missing, nothing was touched
    FATAL = "fatal"


class StepStatus(str, enum.Enum):
    DONE = "done"
    SKIPPED = "skipped"  # target already present
    FAILED = "failed"


@dataclass(frozen=True)
class StepResult:
    name: str
    status: StepStatus
    detail: str = ""


@dataclass(frozen=True)
class SequenceResult:
    """Outcome of a bootstrap run that callers can branch on without parsing text."""

    role: Role
    severity: Severity
    steps: tuple[StepResult, ...] = ()
    error: BaseException | None = None
    warning: str | None = None
    partial: str | None = None  # what was kept when severity is DEGRADED
    kubeconfig_path: Path | None = None
    pki: PKIAssets | None = None

    @property
    def ok(self) -> bool:
        return self.severity in (Severity.OK, Severity.DEGRADED)

    def step(self, name: str) -> StepResult | None:
        for result in self.steps:
            if result.name == name:
                return result
        return None


_SEVERITY_LEVELS = {
    Severity.OK: logging.INFO,
    Severity.DEGRADED: logging.WARNING,
    Severity.REJECTED: logging.INFO,
    Severity.FATAL: logging.ERROR,
}


@dataclass
class _Run:
    role: Role
    steps: list[StepResult] = field(default_factory=list)

    def record(self, name: str, status: StepStatus, detail: str = "") -> None:
        self.steps.append(StepResult(name, status, detail))
        level = logging.WARNING if status is StepStatus.FAILED else logging.INFO
        logger.log(
            level,
            "Step %s %s: %s",
            name,
            status.value,
            detail,
            extra={"role": self.role.value, "step": name, "status": status.value},
        )

    def finish(self, severity: Severity, **kwargs) -> SequenceResult:
        logger.log(
            _SEVERITY_LEVELS[severity],
            "Bootstrap of %s finished: %s",
            self.role.value,
            severity.value,
            extra={"role": self.role.value, "severity": severity.value},
        )
        return SequenceResult(role=self.role, severity=severity, steps=tuple(self.steps), **kwargs)


def _master_inputs(discovery: Discovery) -> tuple[list[str], str | None, str | None]:
    """(endpoints, API server DNS name, listen IP) for the master path."""
    if isinstance(discovery, OutOfBandDiscovery):
        endpoints = discovery.endpoints or split_urls(DEFAULT_MASTER_API_SERVER_URLS)
        return endpoints, discovery.api_server_dns_name, discovery.listen_ip
    if isinstance(discovery, GossipDiscovery):
        # The master generates its own CA, so gossip has nothing to resolve here
        return split_urls(DEFAULT_MASTER_API_SERVER_URLS), None, None
    raise TypeError(f"Unsupported discovery variant: {type(discovery).__name__}")


class ProvisioningSequencer:
    """Runs the bootstrap steps for one role against the local filesystem."""

    def __init__(
        self,
        config: AppConfig,
        manifest_writer: ManifestWriter = write_static_pod_manifests,
        pki_generator: PKIGenerator = generate_pki,
        kubeconfig_writer: KubeconfigWriter = write_kubeconfig_if_absent,
    ):
        self._config = config
        self._write_manifests = manifest_writer
        self._generate_pki = pki_generator
        self._write_kubeconfig = kubeconfig_writer

    @property
    def kubeconfig_path(self) -> Path:
        return Path(self._config.paths.kubeconfig_path)

    def run(self, params: BootstrapParameters) -> SequenceResult:
        if params.role is Role.MASTER:
            return self.init_master(params)
        if params.role is Role.NODE:
            return self.join_node(params)
        raise ValueError(f"Unknown role: {params.role!r}")

    # ── Master ──────────────────────────────────────────────────────

    def init_master(self, params: BootstrapParameters) -> SequenceResult:
        run = _Run(Role.MASTER)
        endpoints, dns_name, listen_ip = _master_inputs(params.discovery)
        extra = {"role": Role.MASTER.value}

        logger.info("Writing static pod manifests", extra={**extra, "step": STEP_MANIFESTS})
        try:
            written = self._write_manifests(self._config.master, self._config.paths, listen_ip)
        except STEP_ERRORS as exc:
            return self._fatal(run, STEP_MANIFESTS, exc)
        run.record(STEP_MANIFESTS, StepStatus.DONE, f"{len(written)} manifests in {self._config.paths.manifests_dir}")

        logger.info("Generating PKI", extra={**extra, "step": STEP_PKI})
        try:
            assets = self._generate_pki(
                self._config.paths.pki_dir,
                self._config.pki,
                self._config.master,
                dns_name=dns_name,
                listen_ip=listen_ip,
            )
        except STEP_ERRORS as exc:
            return self._fatal(run, STEP_PKI, exc)
        run.record(STEP_PKI, StepStatus.DONE, f"CA certificate at {assets.ca_der_path}")

        return self._finish_with_kubeconfig(
            run,
            endpoints,
            assets.ca_cert,
            partial=f"static pod manifests and PKI in {self._config.paths.pki_dir} were kept",
            pki=assets,
        )

    # ── Node ────────────────────────────────────────────────────────

    def join_node(self, params: BootstrapParameters) -> SequenceResult:
        run = _Run(Role.NODE)
        missing: MissingRequiredField | None = missing_join_field(params.discovery)
        if missing is not None:
            logger.debug("Rejecting join: %s", missing, extra={"role": Role.NODE.value})
            return run.finish(Severity.REJECTED, error=missing)

        try:
            params.discovery.start()
            result = params.discovery.discover()
        except STEP_ERRORS as exc:
            return self._fatal(run, STEP_DISCOVER, exc)
        run.record(STEP_DISCOVER, StepStatus.DONE, f"{len(result.endpoints)} endpoint(s)")

        return self._finish_with_kubeconfig(
            run,
            result.endpoints,
            result.ca_cert,
            partial="discovery succeeded; no kubeconfig was written",
        )

    # ── Shared ──────────────────────────────────────────────────────

    def _finish_with_kubeconfig(
        self,
        run: _Run,
        endpoints: Sequence[str],
        ca_cert: x509.Certificate,
        partial: str,
        pki: PKIAssets | None = None,
    ) -> SequenceResult:
        path = self.kubeconfig_path
        try:
            written = self._write_kubeconfig(path, endpoints, ca_cert, self._config.master.cluster_name)
        except STEP_ERRORS as exc:
            run.record(STEP_KUBECONFIG, StepStatus.FAILED, str(exc))
            return run.finish(
                Severity.DEGRADED,
                error=exc,
                warning=f"Unable to write config for {run.role.value}:\n{exc}",
                partial=partial,
                kubeconfig_path=path,
                pki=pki,
            )

        status = StepStatus.DONE if written else StepStatus.SKIPPED
        run.record(STEP_KUBECONFIG, status, str(path))
        return run.finish(Severity.OK, kubeconfig_path=path, pki=pki)

    @staticmethod
    def _fatal(run: _Run, step: str, exc: BaseException) -> SequenceResult:
        run.record(step, StepStatus.FAILED, str(exc))
        return run.finish(Severity.FATAL, error=exc)

