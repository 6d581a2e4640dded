"""
talk to the kubernetes API server of the freshly initialised cluster
"""
import time

import urllib3
from kubernetes import client as k8sclient
from kubernetes.client.rest import ApiException
from kubernetes.config import kube_config

from kubeprov import CONTROL_PLANE_TAINTS
from kubeprov.util.logger import Logger
from kubeprov.util.util import run_cmd, retry

LOGGER = Logger(__name__)

ADMIN_CONF = "/etc/kubernetes/admin.conf"
CALICO_MANIFEST = ("https://raw.githubusercontent.com/projectcalico/calico/"
                   "{version}/manifests/calico.yaml")


class K8S:
    """Class allowing various interactions with a Kubernetes cluster.

    Args:
        config (str): File path for the kubernetes configuration file
        api: an existing ``CoreV1Api``, the configuration file is not
            loaded if given
    """

    def __init__(self, config=ADMIN_CONF, api=None):

        self.config = config
        if api is None:
            kube_config.load_kube_config(config_file=config)
            api = k8sclient.CoreV1Api()
        self.api = api

    def pod_running(self, namespace, name):
        """Check if a pod whose name contains name is running.

        Returns:
            True if at least one matching pod is in phase Running.
        """
        try:
            pods = self.api.list_namespaced_pod(namespace)
        except ApiException as exc:
            LOGGER.debug("API exception: %s", exc)
            return False
        except urllib3.exceptions.HTTPError as exc:
            LOGGER.debug("API server not reachable: %s", exc)
            return False

        return any(name in pod.metadata.name and
                   pod.status.phase == "Running" for pod in pods.items)

    def wait_for_pod(self, namespace, name, timeout=300, interval=2):
        """Block until a pod matching name runs in namespace.

        Raises:
            TimeoutError if the pod is not running after timeout seconds
        """
        LOGGER.info("Waiting for Pod %s in namespace %s to be ready...", name,
                    namespace)
        deadline = time.monotonic() + timeout
        while not self.pod_running(namespace, name):
            if time.monotonic() > deadline:
                raise TimeoutError(f"Pod {name} in namespace {namespace} "
                                   f"not running after {timeout}s")
            time.sleep(interval)

        LOGGER.debug("Pod %s is running", name)

    @retry(ApiException, tries=3, delay=2, logger=LOGGER.debug)
    def remove_taints(self, keys=CONTROL_PLANE_TAINTS):
        """Remove the taints with the given keys from all nodes.

        This allows workloads on control plane nodes.
        """
        for node in self.api.list_node().items:
            taints = node.spec.taints or []
            keep = [t for t in taints if t.key not in keys]
            if len(keep) == len(taints):
                continue

            LOGGER.debug("Removing taints %s from %s", ", ".join(keys),
                         node.metadata.name)
            self.api.patch_node(node.metadata.name,
                                {"spec": {"taints": keep}})

    @retry(ApiException, tries=3, delay=2, logger=LOGGER.debug)
    def label_node(self, name, labels):
        """Set labels on node name, a value of None removes the label"""
        LOGGER.debug("Labeling node %s with %s", name, labels)
        self.api.patch_node(name, {"metadata": {"labels": labels}})

    def finalize_control_plane(self, name):
        """make a control plane node schedulable like a regular node"""
        self.remove_taints()
        self.label_node(name, {"node-role.kubernetes.io/control-plane": None,
                               "node-role.kubernetes.io/node": ""})
        LOGGER.success("Node %s accepts workloads", name)


def apply_manifest_url(url, kubeconfig=ADMIN_CONF):
    """apply a manifest published at url with kubectl"""
    LOGGER.info("Applying %s ...", url)
    return run_cmd(["kubectl", "--kubeconfig", kubeconfig, "apply", "-f", url])


def apply_calico(version, kubeconfig=ADMIN_CONF):
    """apply the Calico CNI plugin of the given release"""
    return apply_manifest_url(CALICO_MANIFEST.format(version=version),
                              kubeconfig)
