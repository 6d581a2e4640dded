"""
kubeadm.py
==========

Thin wrapper around the kubeadm binary and the producer of the join
parameters.
"""
import shlex
import subprocess as sp

import yaml

from kubeprov import API_SERVER_PORT
from kubeprov.ssl import discovery_hash, read_cert
from kubeprov.store.parameters import JoinParameters, PreconditionError
from kubeprov.util.logger import Logger
from kubeprov.util.net import api_endpoint
from kubeprov.util.util import run_cmd

LOGGER = Logger(__name__)

KUBEADM_CONFIG = "/tmp/kubeadm-config.yaml"


def parse_join_command(text):
    """Extract endpoint, token and CA hash from a kubeadm join command.

    The input is what ``kubeadm token create --print-join-command`` prints,
    e.g. ``kubeadm join 10.0.0.5:6443 --token abcdef.0123456789abcdef
    --discovery-token-ca-cert-hash sha256:<hex>``.

    Args:
        text (str): the join command

    Returns:
        dict with the keys address, token and cert_hash. Values that are
        not part of the command are empty strings.
    """
    args = shlex.split(text.replace("\\\n", " ")) if text else []
    parsed = {'address': '', 'token': '', 'cert_hash': ''}

    try:
        args = args[args.index("join") + 1:]
    except ValueError:
        return parsed

    idx = 0
    while idx < len(args):
        arg = args[idx]
        flag, sep, value = arg.partition("=")
        if flag in ("--token", "--discovery-token-ca-cert-hash"):
            if not sep:
                idx += 1
                value = args[idx] if idx < len(args) else ""
            if flag == "--token":
                parsed['token'] = value
            else:
                parsed['cert_hash'] = value.split(":", 1)[-1]
        elif not arg.startswith("-") and not parsed['address']:
            parsed['address'] = arg
        idx += 1

    return parsed


def last_line(text):
    """the last non empty line of text"""
    lines = [line.strip() for line in (text or "").splitlines()
             if line.strip()]
    return lines[-1] if lines else ""


def join_command(params, control_plane=False, default_port=API_SERVER_PORT):
    """Build the ``kubeadm join`` argument list for params.

    Args:
        params (JoinParameters): the cluster's join parameters
        control_plane (bool): join as an additional control plane
        default_port (int): port used when the address has none

    Returns:
        list of str
    """
    cmd = ["kubeadm", "join", api_endpoint(params.address, default_port),
           "--token", params.token,
           "--discovery-token-ca-cert-hash", "sha256:" + params.cert_hash]
    if control_plane:
        cmd += ["--control-plane", "--certificate-key", params.cert_key]

    return cmd


def cluster_configuration(cluster_id, vip_address, kubernetes_version=None,
                          pod_subnet="10.244.0.0/16"):
    """the kubeadm ClusterConfiguration of a new HA control plane"""
    return {
        'apiVersion': 'kubeadm.k8s.io/v1beta4',
        'kind': 'ClusterConfiguration',
        'clusterName': cluster_id,
        'kubernetesVersion': ("v" + kubernetes_version if kubernetes_version
                              else "stable"),
        'controlPlaneEndpoint': api_endpoint(vip_address),
        'networking': {'podSubnet': pod_subnet},
        'apiServer': {'certSANs': [vip_address, "127.0.0.1"]},
    }


class Kubeadm:
    """Run kubeadm sub commands.

    Args:
        binary (str): the kubeadm executable
        runner (callable): executes a command list, defaults to
            :func:`kubeprov.util.util.run_cmd`
    """

    def __init__(self, binary="kubeadm", runner=run_cmd):
        self.binary = binary
        self._run = runner

    def create_join_command(self, ttl=None):
        """register a new bootstrap token and return the join command"""
        cmd = [self.binary, "token", "create", "--print-join-command"]
        if ttl:
            cmd += ["--ttl", ttl]
        return self._run(cmd).stdout.strip()

    def upload_certs(self):
        """re-upload the control plane certificates, return the new key"""
        proc = self._run([self.binary, "init", "phase", "upload-certs",
                          "--upload-certs"])
        return last_line(proc.stdout)

    def init(self, config, path=KUBEADM_CONFIG):
        """write config to path and run kubeadm init with it"""
        with open(path, "w") as stream:
            yaml.dump(config, stream=stream, default_flow_style=False)

        LOGGER.info("Running kubeadm init for %s ...",
                    config.get('controlPlaneEndpoint'))
        return self._run([self.binary, "init", "--config", path,
                          "--upload-certs"], timeout=900)

    def join(self, params, control_plane=False):
        """join this host to the cluster described by params"""
        cmd = join_command(params, control_plane=control_plane)
        cmd[0] = self.binary
        return self._run(cmd, timeout=900)

    def reset(self):
        """revert the changes kubeadm made to this host"""
        return self._run([self.binary, "reset", "-f"], check=False)


class JoinParameterProducer:
    """Collect fresh join parameters from the local control plane.

    Every call registers a new bootstrap token and uploads the control
    plane certificates with a new key.

    Args:
        kubeadm (Kubeadm): the kubeadm wrapper
        ca_cert (str): optional path of the cluster CA. If given, the CA
            hash kubeadm reports is checked against it.
        ttl (str): optional token lifetime, e.g. ``24h``
    """

    def __init__(self, kubeadm=None, ca_cert=None, ttl=None):
        self.kubeadm = kubeadm or Kubeadm()
        self.ca_cert = ca_cert
        self.ttl = ttl

    def produce(self, cluster_id):
        """
        Returns:
            JoinParameters

        Raises:
            PreconditionError if the control plane can't provide all values
        """
        LOGGER.info("Creating join parameters for cluster %s ...", cluster_id)
        try:
            joined = parse_join_command(
                self.kubeadm.create_join_command(ttl=self.ttl))
            cert_key = self.kubeadm.upload_certs()
        except (sp.CalledProcessError, OSError, ValueError) as exc:
            raise PreconditionError(
                f"failed to retrieve kubeadm parameters: {exc}") from exc

        if not (joined['token'] and joined['cert_hash'] and cert_key):
            raise PreconditionError("failed to retrieve kubeadm parameters")

        if self.ca_cert:
            try:
                expected = discovery_hash(read_cert(self.ca_cert))
            except (OSError, ValueError) as exc:
                raise PreconditionError(
                    f"unable to read cluster CA {self.ca_cert}: {exc}") from exc
            if joined['cert_hash'].lower() != expected:
                raise PreconditionError(
                    f"CA hash reported by kubeadm does not match {self.ca_cert}")

        return JoinParameters(joined['address'], joined['token'],
                              joined['cert_hash'], cert_key)
