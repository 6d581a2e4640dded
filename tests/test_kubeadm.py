import subprocess

import pytest
import yaml

from kubeprov.deploy.kubeadm import (parse_join_command, last_line,
                                     join_command, cluster_configuration,
                                     Kubeadm, JoinParameterProducer)
from kubeprov.ssl import discovery_hash
from kubeprov.store.parameters import JoinParameters, PreconditionError

TOKEN = "abcdef.0123456789abcdef"
HASH = "a" * 64
KEY = "b" * 64

JOIN_COMMAND = ("kubeadm join 10.0.0.5:6443 --token %s "
                "--discovery-token-ca-cert-hash sha256:%s " % (TOKEN, HASH))

UPLOAD_CERTS = """\
[upload-certs] Storing the certificates in Secret "kubeadm-certs" in the "kube-system" Namespace
[upload-certs] Using certificate key:
%s
""" % KEY


class FakeRunner:
    """returns canned output for kubeadm sub commands"""

    def __init__(self, outputs):
        self.outputs = outputs
        self.calls = []

    def __call__(self, cmd, **kwargs):
        self.calls.append((cmd, kwargs))
        for sub, out in self.outputs.items():
            if sub in cmd:
                if isinstance(out, Exception):
                    raise out
                return subprocess.CompletedProcess(cmd, 0, stdout=out,
                                                   stderr="")
        return subprocess.CompletedProcess(cmd, 0, stdout="", stderr="")


def producer(join=JOIN_COMMAND, certs=UPLOAD_CERTS, ca_cert=None):
    runner = FakeRunner({"token": join, "upload-certs": certs})
    return JoinParameterProducer(Kubeadm(runner=runner), ca_cert=ca_cert)


def test_parse_join_command():
    assert parse_join_command(JOIN_COMMAND) == {
        "address": "10.0.0.5:6443", "token": TOKEN, "cert_hash": HASH}


def test_parse_join_command_variants():
    text = ("kubeadm join cp.example.com:6443 \\\n"
            "    --discovery-token-ca-cert-hash=sha256:%s \\\n"
            "    --token=%s" % (HASH, TOKEN))
    assert parse_join_command(text) == {
        "address": "cp.example.com:6443", "token": TOKEN, "cert_hash": HASH}


def test_parse_join_command_garbage():
    empty = {"address": "", "token": "", "cert_hash": ""}
    assert parse_join_command("") == empty
    assert parse_join_command(None) == empty
    assert parse_join_command("error: something failed") == empty
    assert parse_join_command("kubeadm join 10.0.0.5:6443 --token")["token"] \
        == ""


def test_last_line():
    assert last_line(UPLOAD_CERTS) == KEY
    assert last_line("") == ""
    assert last_line(None) == ""


def test_join_command():
    params = JoinParameters("10.0.0.5", TOKEN, HASH, KEY)
    assert join_command(params) == [
        "kubeadm", "join", "10.0.0.5:6443", "--token", TOKEN,
        "--discovery-token-ca-cert-hash", "sha256:" + HASH]

    cmd = join_command(params, control_plane=True)
    assert cmd[-3:] == ["--control-plane", "--certificate-key", KEY]


def test_cluster_configuration():
    config = cluster_configuration("prod-1", "10.0.0.100", "1.34.1")
    assert config["apiVersion"] == "kubeadm.k8s.io/v1beta4"
    assert config["clusterName"] == "prod-1"
    assert config["kubernetesVersion"] == "v1.34.1"
    assert config["controlPlaneEndpoint"] == "10.0.0.100:6443"
    assert config["networking"]["podSubnet"] == "10.244.0.0/16"
    assert config["apiServer"]["certSANs"] == ["10.0.0.100", "127.0.0.1"]

    assert cluster_configuration("prod-1", "10.0.0.100")[
        "kubernetesVersion"] == "stable"


def test_kubeadm_init_writes_config(tmp_path):
    runner = FakeRunner({})
    path = str(tmp_path / "kubeadm-config.yaml")
    config = cluster_configuration("prod-1", "10.0.0.100")

    Kubeadm(runner=runner).init(config, path)

    with open(path) as stream:
        assert yaml.safe_load(stream) == config
    cmd, kwargs = runner.calls[0]
    assert cmd == ["kubeadm", "init", "--config", path, "--upload-certs"]
    assert kwargs["timeout"] == 900


def test_kubeadm_join_and_reset():
    runner = FakeRunner({})
    kubeadm = Kubeadm(binary="/usr/bin/kubeadm", runner=runner)
    kubeadm.join(JoinParameters("10.0.0.5:6443", TOKEN, HASH, KEY),
                 control_plane=True)
    kubeadm.reset()

    join, _ = runner.calls[0]
    assert join[:3] == ["/usr/bin/kubeadm", "join", "10.0.0.5:6443"]
    assert "--control-plane" in join
    reset, kwargs = runner.calls[1]
    assert reset == ["/usr/bin/kubeadm", "reset", "-f"]
    assert kwargs["check"] is False


def test_create_join_command_ttl():
    runner = FakeRunner({"token": JOIN_COMMAND})
    Kubeadm(runner=runner).create_join_command(ttl="2h")
    cmd, _ = runner.calls[0]
    assert cmd[-2:] == ["--ttl", "2h"]


def test_produce():
    params = producer().produce("prod-1")
    assert params == JoinParameters("10.0.0.5:6443", TOKEN, HASH, KEY)


@pytest.mark.parametrize("join,certs", [
    ("kubeadm join 10.0.0.5:6443 --discovery-token-ca-cert-hash sha256:"
     + HASH, UPLOAD_CERTS),
    ("kubeadm join 10.0.0.5:6443 --token " + TOKEN, UPLOAD_CERTS),
    (JOIN_COMMAND, ""),
    ("", UPLOAD_CERTS),
])
def test_produce_missing_values(join, certs):
    with pytest.raises(PreconditionError):
        producer(join, certs).produce("prod-1")


def test_produce_kubeadm_fails():
    failed = subprocess.CalledProcessError(1, ["kubeadm"], stderr="no token")
    runner = FakeRunner({"token": failed})
    with pytest.raises(PreconditionError, match="failed to retrieve"):
        JoinParameterProducer(Kubeadm(runner=runner)).produce("prod-1")


def test_produce_checks_ca_hash(ca_file, ca_cert):
    expected = discovery_hash(ca_cert)
    join = JOIN_COMMAND.replace(HASH, expected)
    params = producer(join, ca_cert=ca_file).produce("prod-1")
    assert params.cert_hash == expected

    with pytest.raises(PreconditionError, match="does not match"):
        producer(ca_cert=ca_file).produce("prod-1")



def test_produce_without_cluster_ca(tmp_path):
    missing = str(tmp_path / "pki" / "ca.crt")
    with pytest.raises(PreconditionError, match="unable to read cluster CA"):
        producer(ca_cert=missing).produce("prod-1")
