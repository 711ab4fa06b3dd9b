"""Tests for static pod manifest rendering and writing."""

from pathlib import Path

import yaml

from kubeadm_bootstrap.config import MasterConfig
from kubeadm_bootstrap.manifests import COMPONENTS, build_manifests, write_static_pod_manifests


def _command(pod):
    return pod["spec"]["containers"][0]["command"]


class TestBuildManifests:
    def test_all_components(self, paths):
        manifests = build_manifests(MasterConfig(), paths)
        assert set(manifests) == set(COMPONENTS)
        for name, pod in manifests.items():
            assert pod["kind"] == "Pod"
            assert pod["metadata"]["name"] == name
            assert pod["metadata"]["namespace"] == "kube-system"
            assert pod["spec"]["hostNetwork"] is True

    def test_hyperkube_image(self, paths):
        master = MasterConfig(image_registry="registry.local", kubernetes_version="v1.4.1")
        pod = build_manifests(master, paths)["kube-apiserver"]
        assert pod["spec"]["containers"][0]["image"] == "registry.local/hyperkube:v1.4.1"

    def test_apiserver_flags(self, paths):
        command = _command(build_manifests(MasterConfig(secure_port=6443), paths, listen_ip="10.0.0.5")["kube-apiserver"])
        assert "--secure-port=6443" in command
        assert "--bind-address=10.0.0.5" in command
        assert "--advertise-address=10.0.0.5" in command
        assert f"--client-ca-file={paths.pki_dir}/ca.pem" in command

    def test_apiserver_binds_all_without_listen_ip(self, paths):
        command = _command(build_manifests(MasterConfig(), paths)["kube-apiserver"])
        assert "--bind-address=0.0.0.0" in command
        assert not any(arg.startswith("--advertise-address") for arg in command)

    def test_cloud_provider_only_when_set(self, paths):
        plain = _command(build_manifests(MasterConfig(), paths)["kube-controller-manager"])
        assert not any(arg.startswith("--cloud-provider") for arg in plain)
        cloud = _command(build_manifests(MasterConfig(cloud_provider="aws"), paths)["kube-controller-manager"])
        assert "--cloud-provider=aws" in cloud


class TestWriteManifests:
    def test_writes_yaml_files(self, paths):
        written = write_static_pod_manifests(MasterConfig(), paths)
        assert sorted(p.name for p in written) == sorted(f"{c}.yaml" for c in COMPONENTS)
        pod = yaml.safe_load(written[0].read_text())
        assert pod["kind"] == "Pod"

    def test_overwrites_and_leaves_no_temp_files(self, paths):
        write_static_pod_manifests(MasterConfig(), paths)
        write_static_pod_manifests(MasterConfig(secure_port=8443), paths, listen_ip="10.0.0.9")
        manifests_dir = Path(paths.manifests_dir)
        assert sorted(p.name for p in manifests_dir.iterdir()) == sorted(f"{c}.yaml" for c in COMPONENTS)
        pod = yaml.safe_load((manifests_dir / "kube-apiserver.yaml").read_text())
        assert "--secure-port=8443" in _command(pod)
