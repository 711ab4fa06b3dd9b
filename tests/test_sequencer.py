"""Tests for the master and node provisioning sequences."""

from pathlib import Path
from unittest.mock import MagicMock

import pytest
import yaml
from cryptography.hazmat.primitives import serialization

from kubeadm_bootstrap.discovery import Role, gossip, out_of_band
from kubeadm_bootstrap.exceptions import (
    CertificateReadError,
    DiscoveryNotImplemented,
    MissingRequiredField,
    ProvisioningError,
)
from kubeadm_bootstrap.params import BootstrapParameters, DiscoveryOptions, build_params
from kubeadm_bootstrap.pki import load_certificate
from kubeadm_bootstrap.sequencer import (
    STEP_DISCOVER,
    STEP_KUBECONFIG,
    STEP_MANIFESTS,
    STEP_PKI,
    ProvisioningSequencer,
    Severity,
    StepStatus,
)

URLS = "https://10.0.0.1:6443/,https://10.0.0.2:6443/"


def _node_params(ca_cert_file="", api_server_urls=""):
    return build_params(Role.NODE, DiscoveryOptions(api_server_urls=api_server_urls, ca_cert_file=ca_cert_file))


def _master_params(**kwargs):
    return build_params(Role.MASTER, DiscoveryOptions(api_server_urls="http://127.0.0.1:8080/", **kwargs))


class TestJoinNode:
    def test_writes_kubeconfig(self, app_config, ca_der_file):
        result = ProvisioningSequencer(app_config).join_node(_node_params(str(ca_der_file), URLS))
        assert result.severity is Severity.OK
        assert result.ok
        assert result.step(STEP_DISCOVER).status is StepStatus.DONE
        assert result.step(STEP_KUBECONFIG).status is StepStatus.DONE
        written = yaml.safe_load(Path(app_config.paths.kubeconfig_path).read_text())
        assert [c["cluster"]["server"] for c in written["clusters"]] == URLS.split(",")

    @pytest.mark.parametrize("ca_cert_file,api_server_urls,flag", [
        ("", URLS, "--ca-cert-file"),
        ("/tmp/ca.der", "", "--api-server-urls"),
        ("", "", "--ca-cert-file"),
    ])
    def test_missing_field_rejected_without_writes(self, app_config, ca_cert_file, api_server_urls, flag):
        writer = MagicMock()
        sequencer = ProvisioningSequencer(app_config, kubeconfig_writer=writer)
        result = sequencer.join_node(_node_params(ca_cert_file, api_server_urls))
        assert result.severity is Severity.REJECTED
        assert isinstance(result.error, MissingRequiredField)
        assert result.error.flag == flag
        assert flag in str(result.error)
        assert result.steps == ()
        writer.assert_not_called()
        assert not Path(app_config.paths.kubernetes_dir).exists()

    def test_unreadable_ca_is_fatal(self, app_config, tmp_path):
        result = ProvisioningSequencer(app_config).join_node(_node_params(str(tmp_path / "missing.der"), URLS))
        assert result.severity is Severity.FATAL
        assert isinstance(result.error, CertificateReadError)
        assert result.step(STEP_DISCOVER).status is StepStatus.FAILED
        assert not Path(app_config.paths.kubeconfig_path).exists()

    def test_existing_kubeconfig_is_success(self, app_config, ca_der_file):
        path = Path(app_config.paths.kubeconfig_path)
        path.parent.mkdir(parents=True)
        path.write_bytes(b"existing: true\n")
        result = ProvisioningSequencer(app_config).join_node(_node_params(str(ca_der_file), URLS))
        assert result.severity is Severity.OK
        assert result.step(STEP_KUBECONFIG).status is StepStatus.SKIPPED
        assert path.read_bytes() == b"existing: true\n"

    def test_write_failure_is_degraded(self, app_config, ca_der_file):
        writer = MagicMock(side_effect=PermissionError("read-only filesystem"))
        result = ProvisioningSequencer(app_config, kubeconfig_writer=writer).join_node(
            _node_params(str(ca_der_file), URLS)
        )
        assert result.severity is Severity.DEGRADED
        assert result.ok
        assert "Unable to write config for node" in result.warning
        assert "read-only filesystem" in result.warning
        assert result.partial
        assert result.step(STEP_KUBECONFIG).status is StepStatus.FAILED

    def test_gossip_join_is_fatal_not_implemented(self, app_config):
        params = BootstrapParameters(role=Role.NODE, discovery=gossip(Role.NODE, token="t", peers="p"))
        writer = MagicMock()
        result = ProvisioningSequencer(app_config, kubeconfig_writer=writer).join_node(params)
        assert result.severity is Severity.FATAL
        assert isinstance(result.error, DiscoveryNotImplemented)
        writer.assert_not_called()


class TestInitMaster:
    def test_full_sequence(self, app_config):
        result = ProvisioningSequencer(app_config).init_master(_master_params(api_server_dns_name="api.example.com"))
        assert result.severity is Severity.OK
        assert [s.name for s in result.steps] == [STEP_MANIFESTS, STEP_PKI, STEP_KUBECONFIG]
        assert all(s.status is StepStatus.DONE for s in result.steps)
        assert result.pki.ca_der_path.is_file()
        written = yaml.safe_load(Path(app_config.paths.kubeconfig_path).read_text())
        assert written["clusters"][0]["cluster"]["server"] == "http://127.0.0.1:8080/"

    def test_manifest_failure_aborts_before_pki(self, app_config):
        pki = MagicMock()
        writer = MagicMock()
        sequencer = ProvisioningSequencer(
            app_config,
            manifest_writer=MagicMock(side_effect=PermissionError("manifests dir read-only")),
            pki_generator=pki,
            kubeconfig_writer=writer,
        )
        result = sequencer.init_master(_master_params())
        assert result.severity is Severity.FATAL
        assert isinstance(result.error, PermissionError)
        pki.assert_not_called()
        writer.assert_not_called()

    def test_pki_failure_aborts_before_kubeconfig(self, app_config):
        disk_full = OSError("disk full")
        writer = MagicMock()
        sequencer = ProvisioningSequencer(
            app_config,
            pki_generator=MagicMock(side_effect=disk_full),
            kubeconfig_writer=writer,
        )
        result = sequencer.init_master(_master_params())
        assert result.severity is Severity.FATAL
        assert result.error is disk_full
        assert result.step(STEP_MANIFESTS).status is StepStatus.DONE
        assert result.step(STEP_PKI).status is StepStatus.FAILED
        assert result.step(STEP_KUBECONFIG) is None
        writer.assert_not_called()
        assert not Path(app_config.paths.kubeconfig_path).exists()

    def test_provisioning_error_is_fatal(self, app_config):
        sequencer = ProvisioningSequencer(
            app_config,
            pki_generator=MagicMock(side_effect=ProvisioningError("half a CA", step="pki")),
        )
        result = sequencer.init_master(_master_params())
        assert result.severity is Severity.FATAL
        assert str(result.error) == "half a CA"

    def test_kubeconfig_failure_keeps_progress(self, app_config):
        sequencer = ProvisioningSequencer(app_config, kubeconfig_writer=MagicMock(side_effect=OSError("EROFS")))
        result = sequencer.init_master(_master_params())
        assert result.severity is Severity.DEGRADED
        assert "Unable to write config for master" in result.warning
        assert result.pki is not None
        assert result.pki.ca_key_path.is_file()
        assert Path(app_config.paths.manifests_dir, "kube-apiserver.yaml").is_file()

    def test_rerun_leaves_kubeconfig_and_ca_unchanged(self, app_config):
        sequencer = ProvisioningSequencer(app_config)
        first = sequencer.init_master(_master_params())
        kubeconfig = Path(app_config.paths.kubeconfig_path).read_bytes()
        ca = first.pki.ca_der_path.read_bytes()

        second = sequencer.init_master(_master_params())
        assert second.severity is Severity.OK
        assert second.step(STEP_KUBECONFIG).status is StepStatus.SKIPPED
        assert Path(app_config.paths.kubeconfig_path).read_bytes() == kubeconfig
        assert second.pki.ca_der_path.read_bytes() == ca

    def test_apiserver_cert_from_another_ca_is_fatal(self, app_config, ca_pair):
        first = ProvisioningSequencer(app_config).init_master(_master_params())
        first.pki.ca_cert_path.write_bytes(ca_pair[1].public_bytes(serialization.Encoding.PEM))
        first.pki.ca_key_path.write_bytes(
            ca_pair[0].private_bytes(
                serialization.Encoding.PEM,
                serialization.PrivateFormat.TraditionalOpenSSL,
                serialization.NoEncryption(),
            )
        )
        result = ProvisioningSequencer(app_config).init_master(_master_params())
        assert result.severity is Severity.FATAL
        assert isinstance(result.error, ProvisioningError)
        assert result.step(STEP_PKI).status is StepStatus.FAILED
        assert load_certificate(first.pki.ca_der_path.read_bytes()) == ca_pair[1]

    def test_listen_ip_reaches_collaborators(self, app_config):
        manifests = MagicMock(return_value=[])
        pki = MagicMock()
        sequencer = ProvisioningSequencer(
            app_config, manifest_writer=manifests, pki_generator=pki, kubeconfig_writer=MagicMock(return_value=True),
        )
        sequencer.init_master(_master_params(listen_ip="10.0.0.5", api_server_dns_name="api.example.com"))
        assert manifests.call_args.args[2] == "10.0.0.5"
        assert pki.call_args.kwargs == {"dns_name": "api.example.com", "listen_ip": "10.0.0.5"}

    def test_run_dispatches_on_role(self, app_config):
        result = ProvisioningSequencer(app_config).run(_node_params())
        assert result.role is Role.NODE
        assert result.severity is Severity.REJECTED

    def test_master_with_empty_urls_uses_local_default(self, app_config):
        writer = MagicMock(return_value=True)
        params = BootstrapParameters(role=Role.MASTER, discovery=out_of_band(Role.MASTER))
        ProvisioningSequencer(app_config, kubeconfig_writer=writer).init_master(params)
        assert writer.call_args.args[1] == ["http://127.0.0.1:8080/"]
