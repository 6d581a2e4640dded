from unittest.mock import MagicMock, patch

import pytest

from kubeprov.deploy.vip import INIT_KUBECONFIG, JOIN_KUBECONFIG
from kubeprov.ssl import CLUSTER_CA
from kubeprov.provision.node import (ControlPlane, Worker, store_parameters,
                                     retrieve_parameters, setup_kubeconfig)
from kubeprov.store.parameters import (JoinParameters, LocalParameterStore,
                                       NotFoundError)


@pytest.fixture
def params(params_dict):
    return JoinParameters(**params_dict)


@pytest.fixture
def store(tmp_path):
    return LocalParameterStore(str(tmp_path / "store"))


def test_store_and_retrieve(store, params):
    producer = MagicMock()
    producer.produce.return_value = params

    assert store_parameters("prod-1", store, producer) == params
    producer.produce.assert_called_once_with("prod-1")

    environ = {}
    retrieved, env = retrieve_parameters("prod-1", store, environ=environ)
    assert retrieved == params
    assert environ == env
    assert environ["KUBE_PROVISION_ADDRESS"] == "10.0.0.5:6443"
    assert environ["KUBE_PROVISION_CERT_KEY"] == "f" * 64


def test_retrieve_custom_prefix(store, params):
    store.put("prod-1", params)
    _, env = retrieve_parameters("prod-1", store, "JOIN", environ={})
    assert sorted(env) == ["JOIN_ADDRESS", "JOIN_CERT_HASH", "JOIN_CERT_KEY",
                           "JOIN_TOKEN"]


def test_retrieve_missing_leaves_environment_alone(store):
    environ = {"KUBE_PROVISION_TOKEN": "old"}
    with pytest.raises(NotFoundError):
        retrieve_parameters("prod-1", store, environ=environ)
    assert environ == {"KUBE_PROVISION_TOKEN": "old"}


def test_setup_kubeconfig(tmp_path):
    source = tmp_path / "admin.conf"
    source.write_text("apiVersion: v1\n")
    target = tmp_path / "root" / ".kube" / "config"

    setup_kubeconfig(str(source), str(target))

    assert target.read_text() == "apiVersion: v1\n"
    assert target.stat().st_mode & 0o777 == 0o600


def control_plane(store, **kwargs):
    return ControlPlane("prod-1", "10.0.0.100", store, kubeadm=MagicMock(),
                        vip=MagicMock(), k8s_factory=MagicMock(), **kwargs)


@patch("kubeprov.provision.node.setup_kubeconfig")
@patch("kubeprov.provision.node.apply_calico")
@patch("kubeprov.provision.node.JoinParameterProducer")
def test_control_plane_init(producer, calico, kubeconfig, store, params):
    producer.return_value.produce.return_value = params
    node = control_plane(store, kubernetes_version="1.34.1",
                         calico_version="v3.30.0")

    assert node.init() == params

    node.vip.write_manifest.assert_called_once_with(INIT_KUBECONFIG)
    config = node.kubeadm.init.call_args[0][0]
    assert config["kubernetesVersion"] == "v1.34.1"
    assert config["controlPlaneEndpoint"] == "10.0.0.100:6443"
    kubeconfig.assert_called_once_with()
    node.k8s_factory.return_value.wait_for_pod.assert_called_once_with(
        "kube-system", "kube-vip")
    calico.assert_called_once_with("v3.30.0")
    producer.assert_called_once_with(node.kubeadm, ca_cert=CLUSTER_CA)
    assert store.get("prod-1") == params


@patch("kubeprov.provision.node.setup_kubeconfig")
@patch("kubeprov.provision.node.apply_calico")
@patch("kubeprov.provision.node.latest_release", return_value="v3.31.0")
@patch("kubeprov.provision.node.JoinParameterProducer")
def test_control_plane_init_latest_calico(producer, latest, calico,
                                          kubeconfig, store, params):
    producer.return_value.produce.return_value = params
    control_plane(store).init()
    latest.assert_called_once_with("projectcalico/calico")
    calico.assert_called_once_with("v3.31.0")


@patch("kubeprov.provision.node.setup_kubeconfig")
def test_control_plane_join(kubeconfig, store, params):
    store.put("prod-1", params)
    node = control_plane(store)
    environ = {}

    assert node.join(environ) == params

    node.vip.write_manifest.assert_called_once_with(JOIN_KUBECONFIG)
    node.kubeadm.join.assert_called_once_with(params, control_plane=True)
    assert environ["KUBE_PROVISION_TOKEN"] == params.token
    kubeconfig.assert_called_once_with()


def test_control_plane_join_without_parameters(store):
    node = control_plane(store)
    with pytest.raises(NotFoundError):
        node.join({})
    node.kubeadm.join.assert_not_called()


def test_control_plane_finalize(store):
    node = control_plane(store)
    node.finalize("cp-1")
    node.k8s_factory.return_value.finalize_control_plane.\
        assert_called_once_with("cp-1")


def test_worker_join(store, params):
    store.put("prod-1", params)
    kubeadm = MagicMock()

    assert Worker("prod-1", store, kubeadm).join({}) == params
    kubeadm.join.assert_called_once_with(params)


def test_worker_join_missing(store):
    kubeadm = MagicMock()
    with pytest.raises(NotFoundError):
        Worker("prod-1", store, kubeadm).join({})
    kubeadm.join.assert_not_called()


@patch("kubeprov.provision.node.JoinParameterProducer")
def test_store_parameters_checks_cluster_ca(producer, store, params):
    producer.return_value.produce.return_value = params

    store_parameters("prod-1", store)

    producer.assert_called_once_with(ca_cert=CLUSTER_CA)
    assert store.get("prod-1") == params
