"""
cli.py
======

misc functions used by the command line, usually called from
``kubeprov.kubeprov.KubeProv``.

Don't use directly
"""
import os

from huepy import que, bold  # pylint: disable=no-name-in-module

from kubeprov import DEFAULT_PREFIX
from kubeprov.provision.schedule import STORE_VARIABLE
from kubeprov.store.parameters import PreconditionError
from kubeprov.util.logger import Logger
from kubeprov.util.net import is_ip
from kubeprov.util.util import (load_config, name_validation,
                                k8s_version_validation, export_lines)

LOGGER = Logger(__name__)

ROLES = ("control-plane", "worker")
METHODS = ("init", "join")


def confirm(force):
    """Asks the user for confirmation."""
    if not force:
        ans = input(que(bold("Are you sure? [y/N]: ")))
    else:
        ans = 'y'

    return ans.lower()


def need_root():
    """kubeadm and the files in /etc need root privileges"""
    if os.geteuid() != 0:
        raise PreconditionError("this command must be run as root")


def resolve_location(bucket=None, config=None, environ=None):
    """Find the parameter store location.

    An explicit bucket wins over the ``store`` key of the configuration
    which wins over ``KUBEPROV_STORE``.

    Returns:
        str, e.g. ``s3://my-bucket`` or a directory
    """
    if environ is None:
        environ = os.environ

    if bucket:
        return bucket if "://" in bucket else f"s3://{bucket}"

    location = (config or {}).get('store') or environ.get(STORE_VARIABLE)
    if not location:
        raise PreconditionError(
            f"no parameter store given, use --bucket or set {STORE_VARIABLE}")

    return location


def provision_settings(config_path=None, environ=None, **flags):
    """Merge flags with the configuration file and validate the result.

    Flags which are None are taken from the configuration file.

    Returns:
        dict with the keys cluster-name, role, method, vip-address, store,
        kubernetes-version, pod-subnet and prefix

    Raises:
        ValueError or PreconditionError on invalid settings
    """
    settings = {'role': 'control-plane', 'method': 'init',
                'pod-subnet': '10.244.0.0/16', 'prefix': DEFAULT_PREFIX}
    config = load_config(config_path)
    settings.update(config)
    settings.update({k: v for k, v in flags.items() if v is not None})

    name_validation(settings.get('cluster-name'))

    if settings['role'] not in ROLES:
        raise ValueError("Invalid role specified, must be 'control-plane' "
                         "or 'worker'")

    if settings['method'] not in METHODS:
        raise ValueError("Invalid method specified, must be 'init' or 'join'")

    if settings['role'] == 'worker' and settings['method'] == 'init':
        raise ValueError("workers can only join a cluster")

    version = settings.get('kubernetes-version')
    if version is not None:
        version = str(version).lstrip("v")
        if not k8s_version_validation(version):
            raise ValueError("Invalid Kubernetes version specified, must be "
                             "in format X.Y.Z (e.g. 1.34.1)")
        settings['kubernetes-version'] = version

    if settings['role'] == 'control-plane':
        vip = settings.get('vip-address')
        if not vip:
            raise ValueError("--vip is required when role is 'control-plane'")
        if not is_ip(vip):
            raise ValueError(f"Invalid VIP address '{vip}'")

    settings['store'] = resolve_location(settings.pop('bucket', None),
                                         config, environ)
    return settings


def write_env_file(path, env):
    """Write export lines readable only by the owner.

    The file can be sourced by a shell.
    """
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w") as fh:
        fh.write("# kubeadm join parameters (sensitive)\n")
        fh.write(export_lines(env) + "\n")

    LOGGER.info("Join parameters written to %s", path)
    return path
