"""
node.py
=======

Bring a host into the cluster. The first control plane initialises the
cluster and publishes the join parameters, further control planes and
workers fetch those parameters and join.
"""
import os
import shutil

from kubeprov import DEFAULT_PREFIX
from kubeprov.deploy.k8s import K8S, ADMIN_CONF, apply_calico
from kubeprov.deploy.kubeadm import (Kubeadm, JoinParameterProducer,
                                     cluster_configuration)
from kubeprov.deploy.vip import (KubeVip, latest_release, INIT_KUBECONFIG,
                                 JOIN_KUBECONFIG)
from kubeprov.ssl import CLUSTER_CA
from kubeprov.store.parameters import JoinParameters
from kubeprov.util.logger import Logger
from kubeprov.util.util import load_environment

LOGGER = Logger(__name__)

ROOT_KUBECONFIG = "/root/.kube/config"


def store_parameters(cluster_id, store, producer=None):
    """Produce fresh join parameters and store them.

    Args:
        cluster_id (str): the cluster identifier
        store: a parameter store (see :mod:`kubeprov.store.parameters`)
        producer (JoinParameterProducer): defaults to one using kubeadm which
            checks the CA hash against the local cluster CA

    Returns:
        the stored JoinParameters
    """
    producer = producer or JoinParameterProducer(ca_cert=CLUSTER_CA)
    params = producer.produce(cluster_id)
    store.put(cluster_id, params)
    LOGGER.success("Parameters of cluster %s stored in %s", cluster_id, store)
    return params


def retrieve_parameters(cluster_id, store, prefix=DEFAULT_PREFIX, environ=None):
    """Fetch the join parameters and publish them as environment variables.

    Args:
        cluster_id (str): the cluster identifier
        store: a parameter store
        prefix (str): the variable name prefix
        environ (dict): the mapping to update, ``os.environ`` if None

    Returns:
        tuple of the JoinParameters and the flattened variables
    """
    params = store.get(cluster_id)
    env = load_environment(params.to_dict(), prefix, environ)
    LOGGER.debug("Exported %s", ", ".join(env))
    return params, env


def setup_kubeconfig(source=ADMIN_CONF, target=ROOT_KUBECONFIG):
    """copy the admin kubeconfig for kubectl"""
    LOGGER.info("Setting up kubeconfig for kubectl...")
    os.makedirs(os.path.dirname(target), exist_ok=True)
    shutil.copyfile(source, target)
    os.chmod(target, 0o600)


class ControlPlane:
    """A control plane node behind the kube-vip virtual IP.

    Args:
        cluster_id (str): the cluster identifier
        vip_address (str): the virtual IP of the control plane
        store: the parameter store
        kubeadm (Kubeadm): the kubeadm wrapper
        vip (KubeVip): the kube-vip manifest generator
        k8s_factory (callable): returns a :class:`kubeprov.deploy.k8s.K8S`
        kubernetes_version (str): ``X.Y.Z``, the latest stable if None
        pod_subnet (str): the POD network
        calico_version (str): the Calico release, the latest if None
        prefix (str): the prefix of the exported variables
    """
    # pylint: disable=too-many-arguments,too-many-instance-attributes
    def __init__(self, cluster_id, vip_address, store, kubeadm=None,
                 vip=None, k8s_factory=K8S, kubernetes_version=None,
                 pod_subnet="10.244.0.0/16", calico_version=None,
                 prefix=DEFAULT_PREFIX):
        self.cluster_id = cluster_id
        self.vip_address = vip_address
        self.store = store
        self.kubeadm = kubeadm or Kubeadm()
        self.vip = vip or KubeVip(vip_address)
        self.k8s_factory = k8s_factory
        self.kubernetes_version = kubernetes_version
        self.pod_subnet = pod_subnet
        self.calico_version = calico_version
        self.prefix = prefix

    def init(self):
        """Initialise the cluster on this host and publish join parameters.

        Returns:
            the stored JoinParameters
        """
        LOGGER.info("Initializing the Kubernetes cluster: %s with "
                    "control-plane endpoint: %s...", self.cluster_id,
                    self.vip_address)
        self.vip.write_manifest(INIT_KUBECONFIG)
        self.kubeadm.init(cluster_configuration(
            self.cluster_id, self.vip_address,
            kubernetes_version=self.kubernetes_version,
            pod_subnet=self.pod_subnet))
        setup_kubeconfig()

        k8s = self.k8s_factory(ADMIN_CONF)
        k8s.wait_for_pod("kube-system", "kube-vip")

        version = self.calico_version or latest_release("projectcalico/calico")
        apply_calico(version)

        return store_parameters(self.cluster_id, self.store,
                                JoinParameterProducer(self.kubeadm,
                                                      ca_cert=CLUSTER_CA))

    def join(self, environ=None):
        """Join this host as an additional control plane.

        Returns:
            the JoinParameters used
        """
        self.vip.write_manifest(JOIN_KUBECONFIG)
        retrieve_parameters(self.cluster_id, self.store, self.prefix, environ)
        params = JoinParameters.from_env(environ, self.prefix)

        LOGGER.info("Joining control-plane node to Kubernetes cluster: %s "
                    "at %s...", self.cluster_id, params.address)
        self.kubeadm.join(params, control_plane=True)
        setup_kubeconfig()
        return params

    def finalize(self, hostname):
        """allow workloads on this control plane"""
        self.k8s_factory(ADMIN_CONF).finalize_control_plane(hostname)


class Worker:
    """A worker node.

    Args:
        cluster_id (str): the cluster identifier
        store: the parameter store
        kubeadm (Kubeadm): the kubeadm wrapper
        prefix (str): the prefix of the exported variables
    """

    def __init__(self, cluster_id, store, kubeadm=None, prefix=DEFAULT_PREFIX):
        self.cluster_id = cluster_id
        self.store = store
        self.kubeadm = kubeadm or Kubeadm()
        self.prefix = prefix

    def join(self, environ=None):
        """Join this host as worker.

        Returns:
            the JoinParameters used
        """
        retrieve_parameters(self.cluster_id, self.store, self.prefix, environ)
        params = JoinParameters.from_env(environ, self.prefix)

        LOGGER.info("Joining worker node to Kubernetes cluster: %s at %s...",
                    self.cluster_id, params.address)
        self.kubeadm.join(params)
        return params
