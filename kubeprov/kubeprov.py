"""
kubeprov
========

The main entry point for provisioning a kubeadm cluster node.
Don't use it directly, instead install the package with setup.py.
It automatically creates an executable in your path.

"""
import argparse
import socket
import sys
from subprocess import CalledProcessError, SubprocessError

from mach import mach1

from . import __version__, DEFAULT_PREFIX
from .cli import (confirm, need_root, provision_settings, resolve_location,
                  write_env_file)
from .deploy.kubeadm import Kubeadm
from .provision.node import (ControlPlane, Worker, store_parameters,
                             retrieve_parameters)
from .provision.schedule import BackupSchedule
from .store.parameters import (AWSCredentials, ParameterStoreError,
                               build_parameter_store)
from .util.logger import Logger
from .util.util import load_config, export_lines

LOGGER = Logger(__name__)

ERRORS = (ParameterStoreError, ValueError, SubprocessError, TimeoutError,
          RuntimeError, OSError)


def open_store(bucket=None, config=None):
    """Build the parameter store from the command line arguments"""
    location = resolve_location(bucket, load_config(config))
    return location, build_parameter_store(location, AWSCredentials.from_env())


def fail(exc):
    """log the error and exit with a non zero status"""
    LOGGER.error(f"Error: {exc}")
    if isinstance(exc, CalledProcessError) and exc.stderr:
        LOGGER.debug(exc.stderr)
    sys.exit(1)


@mach1()
class KubeProv:  # pylint: disable=no-self-use
    """
    The main entry point for the program. This class does the CLI parsing
    and descides which action shoud be taken
    """
    def __init__(self):
        self.parser.add_argument(  # pylint: disable=no-member
            "--version", action="store_true",
            help="show version and exit",
            default=argparse.SUPPRESS)

        verbosity_help = "".join([
            "set the verbosity level (",
            "0 = quiet, ",
            "1 = error, ",
            "2 = warning, ",
            "3 = info, ",
            "4 = debug)"])
        self.parser.add_argument("--verbosity",  # pylint: disable=no-member
                                 "-v",
                                 help=verbosity_help,
                                 choices=['0', '1', '2', '3', '4', 'quiet',
                                          'error', 'warning', 'info', 'debug'],
                                 type=str,
                                 default=3)

    def _get_version(self):
        print("%s version: %s" % (self.__class__.__name__, __version__))

    def _get_verbosity(self):
        pass

    # pylint: disable=too-many-arguments
    def provision(self, name: str = None, role: str = None,
                  method: str = None, vip: str = None, bucket: str = None,
                  k8s_version: str = None, config: str = None):
        """
        Provision this host as a node of a kubeadm cluster

        name - the cluster name
        role - one of control-plane or worker
        method - one of init or join
        vip - the virtual IP of the control plane
        bucket - the S3 bucket holding the join parameters
        k8s_version - the Kubernetes version X.Y.Z
        config - configuration file
        ---
        The first control plane initialises the cluster with --method init
        and stores the join parameters. All other nodes use --method join.
        Values missing on the command line are read from the configuration
        file.
        """
        try:
            need_root()
            settings = provision_settings(
                config, **{'cluster-name': name, 'role': role,
                           'method': method, 'vip-address': vip,
                           'bucket': bucket,
                           'kubernetes-version': k8s_version})
            store = build_parameter_store(settings['store'],
                                          AWSCredentials.from_env())

            cluster_id = settings['cluster-name']
            if settings['role'] == 'worker':
                Worker(cluster_id, store, prefix=settings['prefix']).join()
                LOGGER.success("Worker node joined cluster %s", cluster_id)
                return

            node = ControlPlane(
                cluster_id, settings['vip-address'], store,
                kubernetes_version=settings.get('kubernetes-version'),
                pod_subnet=settings['pod-subnet'],
                prefix=settings['prefix'])
            if settings['method'] == 'init':
                node.init()
            else:
                node.join()

            BackupSchedule(cluster_id, settings['store']).install()
            node.finalize(socket.gethostname())
        except ERRORS as exc:
            fail(exc)

        LOGGER.success("Control plane node of cluster %s is ready",
                       settings['cluster-name'])

    def store(self, cluster_id: str, bucket: str = None, config: str = None):
        """
        Create fresh join parameters and store them

        cluster_id - the cluster identifier
        bucket - the S3 bucket holding the join parameters
        config - configuration file
        ---
        Must run on a control plane node. The store location defaults to
        the environment variable KUBEPROV_STORE.
        """
        try:
            _, store = open_store(bucket, config)
            store_parameters(cluster_id, store)
        except ERRORS as exc:
            fail(exc)

    def retrieve(self, cluster_id: str, bucket: str = None,
                 config: str = None, prefix: str = DEFAULT_PREFIX,
                 output: str = None):
        """
        Fetch the join parameters and print them as shell exports

        cluster_id - the cluster identifier
        bucket - the S3 bucket holding the join parameters
        config - configuration file
        prefix - the prefix of the variable names
        output - write the exports to this file instead of STDOUT
        ---
        Without --output only errors are logged, so the result can be
        evaluated by a shell, e.g. eval "$(kubeprov retrieve prod-1)"
        """
        if not output:
            LOGGER.level = 'error'

        try:
            _, store = open_store(bucket, config)
            _, env = retrieve_parameters(cluster_id, store, prefix, environ={})
            if output:
                write_env_file(output, env)
            else:
                print(export_lines(env))
        except ERRORS as exc:
            fail(exc)

    def schedule(self, cluster_id: str, bucket: str = None,
                 config: str = None, interval: int = 6):
        """
        Install the cron job which refreshes the stored join parameters

        cluster_id - the cluster identifier
        bucket - the S3 bucket holding the join parameters
        config - configuration file
        interval - hours between two runs, must divide 24
        """
        try:
            need_root()
            location, _ = open_store(bucket, config)
            paths = BackupSchedule(cluster_id, location, interval).install()
        except ERRORS as exc:
            fail(exc)

        LOGGER.success("Installed %s", ", ".join(paths))

    def reset(self, force: bool = False):
        """
        Revert the changes kubeadm made to this host

        force - don't ask for confirmation
        """
        LOGGER.question("Resetting this node with kubeadm reset")
        if confirm(force) != 'y':
            LOGGER.info("Aborted")
            sys.exit(0)

        try:
            need_root()
            result = Kubeadm().reset()
        except ERRORS as exc:
            fail(exc)

        if result.returncode:
            LOGGER.error("kubeadm reset failed: %s", result.stderr.strip())
            sys.exit(1)

        LOGGER.success("Node reset")


def main():
    """
    run and execute kubeprov
    """
    k = KubeProv()

    # pylint: disable=no-member
    k.parser.description = 'Provision kubeadm cluster nodes. The join '\
                           'parameters are shared through an S3 bucket, '\
                           'export AWS_ACCESS_KEY_ID, AWS_SECRET_ACCESS_KEY '\
                           'and AWS_REGION before running.'

    LOGGER.level = k.parser.parse_args().verbosity

    # pylint misses the fact that KubeProv is decorated with mach.
    # the mach decortaor analyzes the methods in the class and dynamically
    # creates the CLI parser. It also adds the method run to the class.
    k.run()  # pylint: disable=no-member
