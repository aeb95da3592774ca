from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
import urllib3
from kubernetes import client, config

from conftest import ScriptedProber, make_settings, status
from pdbmgr.errors import (
    ConflictError,
    ControlPlaneError,
    FatalConfigError,
    MissingResourceVersionError,
    PolicyNotFoundError,
    TransientApiError,
)
from pdbmgr.kube import KubePolicyStore, load_kube_client
from pdbmgr.policy import ConstraintField
from pdbmgr.reconciler import BudgetReconciler


def pdb(resource_version="42", min_available=1, max_unavailable=None):
    return SimpleNamespace(
        metadata=SimpleNamespace(resource_version=resource_version),
        spec=SimpleNamespace(min_available=min_available, max_unavailable=max_unavailable),
    )


@pytest.fixture
def kube_store():
    store = KubePolicyStore(api_client=MagicMock())
    store.api = MagicMock()
    return store


def test_get_returns_snapshot(kube_store):
    kube_store.api.read_namespaced_pod_disruption_budget.return_value = pdb()
    snap = kube_store.get("games", "minecraft")
    assert snap.resource_version == "42"
    assert snap.field_value(ConstraintField.MIN_AVAILABLE) == 1
    assert snap.field_value(ConstraintField.MAX_UNAVAILABLE) is None
    args, _ = kube_store.api.read_namespaced_pod_disruption_budget.call_args
    assert args == ("minecraft", "games")


def test_update_sends_version_precondition_and_single_field(kube_store):
    kube_store.api.patch_namespaced_pod_disruption_budget.return_value = pdb("43", 0)
    snap = kube_store.conditional_update("games", "minecraft", "42", ConstraintField.MIN_AVAILABLE, 0)
    assert snap.resource_version == "43"
    args, _ = kube_store.api.patch_namespaced_pod_disruption_budget.call_args
    name, namespace, body = args
    assert (name, namespace) == ("minecraft", "games")
    assert body == {"metadata": {"resourceVersion": "42"}, "spec": {"minAvailable": 0}}


def test_update_without_version_is_refused(kube_store):
    with pytest.raises(MissingResourceVersionError):
        kube_store.conditional_update("games", "minecraft", "", ConstraintField.MIN_AVAILABLE, 1)
    kube_store.api.patch_namespaced_pod_disruption_budget.assert_not_called()


@pytest.mark.parametrize(
    "status,expected",
    [
        (409, ConflictError),
        (404, PolicyNotFoundError),
        (429, TransientApiError),
        (500, TransientApiError),
        (503, TransientApiError),
        (403, ControlPlaneError),
    ],
)
def test_api_errors_are_translated(kube_store, status, expected):
    kube_store.api.patch_namespaced_pod_disruption_budget.side_effect = client.ApiException(status=status, reason="x")
    with pytest.raises(expected) as exc:
        kube_store.conditional_update("games", "minecraft", "1", ConstraintField.MIN_AVAILABLE, 1)
    if expected is ControlPlaneError:
        assert not isinstance(exc.value, (ConflictError, TransientApiError))


def test_not_found_on_get_is_fatal(kube_store):
    kube_store.api.read_namespaced_pod_disruption_budget.side_effect = client.ApiException(status=404, reason="NotFound")
    with pytest.raises(FatalConfigError):
        kube_store.get("games", "minecraft")


def test_transport_errors_are_transient(kube_store):
    kube_store.api.read_namespaced_pod_disruption_budget.side_effect = urllib3.exceptions.ProtocolError("reset")
    with pytest.raises(TransientApiError):
        kube_store.get("games", "minecraft")


def test_load_kube_client_falls_back_to_kubeconfig(monkeypatch):
    def no_cluster():
        raise config.ConfigException("not in cluster")

    loaded = []
    monkeypatch.setattr(config, "load_incluster_config", no_cluster)
    monkeypatch.setattr(config, "load_kube_config", lambda: loaded.append(True))
    assert isinstance(load_kube_client(), client.ApiClient)
    assert loaded == [True]


def test_load_kube_client_without_any_config_is_fatal(monkeypatch):
    def fail():
        raise config.ConfigException("nothing")

    monkeypatch.setattr(config, "load_incluster_config", fail)
    monkeypatch.setattr(config, "load_kube_config", fail)
    with pytest.raises(FatalConfigError):
        load_kube_client()


def test_update_is_sent_as_merge_patch(monkeypatch):
    api_client = client.ApiClient(client.Configuration())
    sent = MagicMock(side_effect=client.ApiException(status=409, reason="Conflict"))
    monkeypatch.setattr(api_client.rest_client, "request", sent)
    store = KubePolicyStore(api_client=api_client)

    with pytest.raises(ConflictError):
        store.conditional_update("games", "minecraft", "42", ConstraintField.MIN_AVAILABLE, 1)

    args, kwargs = sent.call_args
    assert args[0] == "PATCH"
    assert args[1].endswith("/apis/policy/v1/namespaces/games/poddisruptionbudgets/minecraft")
    assert kwargs["headers"]["Content-Type"] == "application/merge-patch+json"
    assert kwargs["body"] == {"metadata": {"resourceVersion": "42"}, "spec": {"minAvailable": 1}}


def test_pdb_without_version_fails_the_tick_without_writing(kube_store):
    kube_store.api.read_namespaced_pod_disruption_budget.return_value = pdb(resource_version=None, min_available=0)
    rec = BudgetReconciler(make_settings(), kube_store, prober=ScriptedProber(status(3)))

    outcome = rec.tick()

    assert not outcome.wrote
    assert outcome.error == "no_version"
    assert "apply_failed" in [e.kind for e in rec.runtime.recent_events(50)]
    kube_store.api.patch_namespaced_pod_disruption_budget.assert_not_called()
