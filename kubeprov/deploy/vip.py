"""
vip.py
======

Run kube-vip as a static pod on the control plane nodes. kube-vip holds
the virtual IP which is the control plane endpoint of the cluster. The
manifest is generated by kube-vip itself through containerd's ``ctr``.
"""
import json
import os
from urllib.error import URLError, HTTPError
from urllib.request import urlopen

from kubeprov import KUBE_VIP_IMAGE
from kubeprov.util.logger import Logger
from kubeprov.util.net import is_ip
from kubeprov.util.util import run_cmd

LOGGER = Logger(__name__)

GITHUB_LATEST = "https://api.github.com/repos/{repo}/releases/latest"
MANIFEST = "/etc/kubernetes/manifests/kube-vip.yaml"

# kube-vip needs super-admin.conf while the first control plane is created
# github.com/kube-vip/kube-vip/issues/684
INIT_KUBECONFIG = "/etc/kubernetes/super-admin.conf"
JOIN_KUBECONFIG = "/etc/kubernetes/admin.conf"


def latest_release(repo, timeout=10):
    """Return the tag of the latest GitHub release of repo.

    Raises:
        RuntimeError if the GitHub API can't be reached
    """
    url = GITHUB_LATEST.format(repo=repo)
    try:
        with urlopen(url, timeout=timeout) as resp:
            tag = json.loads(resp.read().decode())['tag_name']
    except (HTTPError, URLError, ValueError, KeyError) as exc:
        raise RuntimeError(f"unable to find latest release of {repo}: "
                           f"{exc}") from exc

    LOGGER.debug("Latest release of %s is %s", repo, tag)
    return tag


def parse_routes(text):
    """Return the default route from ``ip -j route`` output as dict"""
    for route in json.loads(text or "[]"):
        if route.get('dst') == 'default':
            return route

    raise ValueError("no default route found")


def default_route():
    """the default route of this host"""
    return parse_routes(run_cmd(["ip", "-j", "route"]).stdout)


class KubeVip:
    """Generate the kube-vip static pod manifest.

    Args:
        vip_address (str): the virtual IP of the control plane
        interface (str): the interface to announce the VIP on, the
            interface of the default route if None
        version (str): the kube-vip release, the latest one if None
    """

    def __init__(self, vip_address, interface=None, version=None):
        if not is_ip(vip_address):
            raise ValueError(f"invalid VIP address '{vip_address}'")
        self.vip_address = vip_address
        self._interface = interface
        self._version = version

    @property
    def interface(self):
        if not self._interface:
            self._interface = default_route()['dev']
        return self._interface

    @property
    def version(self):
        if not self._version:
            self._version = latest_release("kube-vip/kube-vip")
        return self._version

    @property
    def image(self):
        return f"{KUBE_VIP_IMAGE}:{self.version}"

    def manifest_command(self, kubeconfig):
        """the ctr command which prints the static pod manifest"""
        return ["ctr", "run", "--rm", "--net-host", self.image, "vip",
                "/kube-vip", "manifest", "pod",
                "--interface", self.interface,
                "--address", self.vip_address,
                "--controlplane",
                "--services",
                "--arp",
                "--k8sConfigPath", kubeconfig,
                "--leaderElection"]

    def write_manifest(self, kubeconfig, path=MANIFEST):
        """pull the image, render the manifest and write it to path"""
        LOGGER.info("Creating kube-vip static pod manifest for %s on %s "
                    "(kube-vip %s)", self.vip_address, self.interface,
                    self.version)
        run_cmd(["ctr", "image", "pull", self.image], timeout=600)
        manifest = run_cmd(self.manifest_command(kubeconfig)).stdout

        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "w") as fh:
            fh.write(manifest)

        return path
