# pylint: disable=missing-docstring
from importlib import metadata

try:
    __version__ = metadata.version('kubeprov')
except metadata.PackageNotFoundError:
    __version__ = '0.3.0'

# Defining some constants
DEFAULT_PREFIX = "KUBE_PROVISION"
PARAMETERS_NAME = "parameters"
API_SERVER_PORT = 6443
KUBE_VIP_IMAGE = "ghcr.io/kube-vip/kube-vip"
CONTROL_PLANE_TAINTS = ("node-role.kubernetes.io/control-plane",
                        "node-role.kubernetes.io/master")
