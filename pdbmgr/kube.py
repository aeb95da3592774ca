from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Protocol

import urllib3
from kubernetes import client, config

from .errors import (
    ConflictError,
    ControlPlaneError,
    FatalConfigError,
    MissingResourceVersionError,
    PolicyNotFoundError,
    TransientApiError,
)
from .policy import ConstraintField

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class PolicySnapshot:
    namespace: str
    name: str
    resource_version: str
    min_available: int | str | None = None
    max_unavailable: int | str | None = None

    def field_value(self, field: ConstraintField) -> int | str | None:
        if field is ConstraintField.MIN_AVAILABLE:
            return self.min_available
        return self.max_unavailable


class PolicyStore(Protocol):
    """The two control-plane calls the reconciler needs. No create/delete."""

    def get(self, namespace: str, name: str) -> PolicySnapshot:
        ...

    def conditional_update(
        self,
        namespace: str,
        name: str,
        resource_version: str,
        field: ConstraintField,
        value: int,
    ) -> PolicySnapshot:
        ...


def load_kube_client() -> client.ApiClient:
    """In-cluster service account first, local kubeconfig as fallback."""
    try:
        config.load_incluster_config()
        log.debug("Loaded in-cluster Kubernetes configuration")
    except config.ConfigException:
        try:
            config.load_kube_config()
        except (config.ConfigException, OSError) as e:
            raise FatalConfigError(f"No usable Kubernetes configuration: {e}") from e
        log.debug("Loaded Kubernetes configuration from kubeconfig")
    return client.ApiClient()


def _translate(e: client.ApiException, namespace: str, name: str) -> ControlPlaneError:
    where = f"PodDisruptionBudget {namespace}/{name}"
    status = e.status or 0
    if status == 409:
        return ConflictError(f"{where} changed concurrently: {e.reason}")
    if status == 404:
        return PolicyNotFoundError(f"{where} does not exist")
    if status == 429 or status >= 500:
        return TransientApiError(f"{where}: HTTP {status} {e.reason}")
    return ControlPlaneError(f"{where}: HTTP {status} {e.reason}")


def _snapshot(obj: Any, namespace: str, name: str) -> PolicySnapshot:
    spec = obj.spec
    return PolicySnapshot(
        namespace=namespace,
        name=name,
        resource_version=obj.metadata.resource_version or "",
        min_available=spec.min_available if spec else None,
        max_unavailable=spec.max_unavailable if spec else None,
    )


class KubePolicyStore:
    """PolicyStore backed by the policy/v1 PodDisruptionBudget API."""

    def __init__(self, api_client: client.ApiClient | None = None, request_timeout_s: float = 10.0):
        self.api = client.PolicyV1Api(api_client)
        self.request_timeout_s = request_timeout_s

    def get(self, namespace: str, name: str) -> PolicySnapshot:
        try:
            obj = self.api.read_namespaced_pod_disruption_budget(
                name, namespace, _request_timeout=self.request_timeout_s
            )
        except client.ApiException as e:
            raise _translate(e, namespace, name) from e
        except (urllib3.exceptions.HTTPError, OSError) as e:
            raise TransientApiError(f"reading PodDisruptionBudget {namespace}/{name}: {e}") from e
        return _snapshot(obj, namespace, name)

    def conditional_update(
        self,
        namespace: str,
        name: str,
        resource_version: str,
        field: ConstraintField,
        value: int,
    ) -> PolicySnapshot:
        # Without a resourceVersion the patch would apply unconditionally.
        if not resource_version:
            raise MissingResourceVersionError(
                f"PodDisruptionBudget {namespace}/{name} has no resourceVersion to condition on"
            )

        body = {
            "metadata": {"resourceVersion": resource_version},
            "spec": {field.value: value},
        }
        try:
            obj = self.api.patch_namespaced_pod_disruption_budget(
                name,
                namespace,
                body,
                _content_type="application/merge-patch+json",
                _request_timeout=self.request_timeout_s,
            )
        except client.ApiException as e:
            raise _translate(e, namespace, name) from e
        except (urllib3.exceptions.HTTPError, OSError) as e:
            raise TransientApiError(f"patching PodDisruptionBudget {namespace}/{name}: {e}") from e
        return _snapshot(obj, namespace, name)
