import io
import json
from unittest.mock import patch, MagicMock
from urllib.error import URLError

import pytest

from kubeprov.deploy.vip import (KubeVip, parse_routes, latest_release,
                                 INIT_KUBECONFIG)

ROUTES = json.dumps([
    {"dst": "10.0.0.0/24", "dev": "eth1", "protocol": "kernel"},
    {"dst": "default", "gateway": "10.0.0.1", "dev": "eth0"},
])


def test_parse_routes():
    assert parse_routes(ROUTES)["dev"] == "eth0"

    for text in ["", "[]", json.dumps([{"dst": "10.0.0.0/24"}])]:
        with pytest.raises(ValueError):
            parse_routes(text)


def test_invalid_vip():
    with pytest.raises(ValueError):
        KubeVip("cp.example.com")


def test_manifest_command():
    vip = KubeVip("10.0.0.100", interface="eth0", version="v1.0.1")
    cmd = vip.manifest_command(INIT_KUBECONFIG)

    assert cmd[:5] == ["ctr", "run", "--rm", "--net-host",
                       "ghcr.io/kube-vip/kube-vip:v1.0.1"]
    assert cmd[cmd.index("--address") + 1] == "10.0.0.100"
    assert cmd[cmd.index("--interface") + 1] == "eth0"
    assert cmd[cmd.index("--k8sConfigPath") + 1] == INIT_KUBECONFIG


def test_interface_and_version_are_discovered():
    run = MagicMock()
    run.return_value.stdout = ROUTES
    with patch("kubeprov.deploy.vip.run_cmd", run), \
            patch("kubeprov.deploy.vip.latest_release",
                  return_value="v1.0.1") as latest:
        vip = KubeVip("10.0.0.100")
        assert vip.interface == "eth0"
        assert vip.image.endswith(":v1.0.1")
        assert vip.interface == "eth0"

    run.assert_called_once_with(["ip", "-j", "route"])
    latest.assert_called_once_with("kube-vip/kube-vip")


def test_write_manifest(tmp_path):
    run = MagicMock()
    run.return_value.stdout = "apiVersion: v1\nkind: Pod\n"
    path = str(tmp_path / "manifests" / "kube-vip.yaml")

    with patch("kubeprov.deploy.vip.run_cmd", run):
        vip = KubeVip("10.0.0.100", interface="eth0", version="v1.0.1")
        assert vip.write_manifest(INIT_KUBECONFIG, path) == path

    with open(path) as fh:
        assert fh.read() == "apiVersion: v1\nkind: Pod\n"
    assert run.call_args_list[0][0][0] == [
        "ctr", "image", "pull", "ghcr.io/kube-vip/kube-vip:v1.0.1"]


def test_latest_release():
    resp = io.BytesIO(json.dumps({"tag_name": "v3.30.0"}).encode())
    with patch("kubeprov.deploy.vip.urlopen", return_value=resp):
        assert latest_release("projectcalico/calico") == "v3.30.0"

    with patch("kubeprov.deploy.vip.urlopen",
               side_effect=URLError("offline")):
        with pytest.raises(RuntimeError):
            latest_release("projectcalico/calico")
