"""
Kubernetes service layer — the object store the reconciler reads and writes.

Design principles:
  - Absence is data: 404 on a read returns None, callers decide if that's fatal
  - Optimistic concurrency: every write carries the resourceVersion it was
    computed from; a 409 surfaces as ConflictError and the pass is re-run
  - Status writes replace the whole status sub-document
"""

import base64
import logging
from typing import Optional

from kubernetes import client, config
from kubernetes.client import ApiException

from cluster_template_operator.config import Settings, settings as default_settings
from cluster_template_operator.errors import ConflictError, MissingReferenceError
from cluster_template_operator.models import (
    ClusterTemplate,
    ClusterTemplateInstance,
    ClusterTemplateInstanceStatus,
    HelmChartRepository,
)

logger = logging.getLogger("kubernetes_service")

_k8s_loaded = False


def _ensure_k8s(cfg: Settings = default_settings):
    """Load Kubernetes config exactly once."""
    global _k8s_loaded
    if _k8s_loaded:
        return
    if cfg.IN_CLUSTER:
        config.load_incluster_config()
    elif cfg.KUBECONFIG:
        config.load_kube_config(config_file=cfg.KUBECONFIG)
    else:
        try:
            config.load_incluster_config()
        except config.ConfigException:
            config.load_kube_config()
    _k8s_loaded = True


def core_api() -> client.CoreV1Api:
    _ensure_k8s()
    return client.CoreV1Api()


def custom_api() -> client.CustomObjectsApi:
    _ensure_k8s()
    return client.CustomObjectsApi()


def _parse_instance(item: dict) -> ClusterTemplateInstance:
    """Convert a raw CR dict into a ClusterTemplateInstance model."""
    return ClusterTemplateInstance.model_validate({
        "metadata": item.get("metadata", {}),
        "spec": item.get("spec") or {},
        "status": item.get("status") or {},
    })


def _decode_secret_data(data: Optional[dict]) -> dict[str, str]:
    decoded = {}
    for key, value in (data or {}).items():
        decoded[key] = base64.b64decode(value).decode("utf-8", errors="replace")
    return decoded


class KubernetesObjectStore:
    """Reads and writes the resources one reconciliation pass touches."""

    def __init__(self, cfg: Settings = default_settings, custom: Optional[client.CustomObjectsApi] = None,
                 core: Optional[client.CoreV1Api] = None):
        self.settings = cfg
        self._custom = custom
        self._core = core

    @property
    def custom(self) -> client.CustomObjectsApi:
        if self._custom is None:
            self._custom = custom_api()
        return self._custom

    @property
    def core(self) -> client.CoreV1Api:
        if self._core is None:
            self._core = core_api()
        return self._core

    # --- ClusterTemplateInstance ---

    def get_instance(self, namespace: str, name: str) -> Optional[ClusterTemplateInstance]:
        s = self.settings
        try:
            item = self.custom.get_namespaced_custom_object(
                s.CRD_GROUP, s.CRD_VERSION, namespace, s.INSTANCE_PLURAL, name
            )
        except ApiException as e:
            if e.status == 404:
                return None
            raise
        return _parse_instance(item)

    def update_finalizers(self, instance: ClusterTemplateInstance) -> ClusterTemplateInstance:
        """Persist instance.metadata.finalizers, guarded by resourceVersion."""
        s = self.settings
        body = {
            "metadata": {
                "finalizers": instance.metadata.finalizers,
                "resourceVersion": instance.metadata.resourceVersion,
            }
        }
        try:
            item = self.custom.patch_namespaced_custom_object(
                s.CRD_GROUP, s.CRD_VERSION, instance.namespace, s.INSTANCE_PLURAL,
                instance.name, body,
            )
        except ApiException as e:
            if e.status == 409:
                raise ConflictError(f"{instance.namespace}/{instance.name} was modified concurrently") from e
            raise
        logger.info(f"Finalizers of {instance.namespace}/{instance.name} set to {instance.metadata.finalizers}")
        return _parse_instance(item)

    def update_status(self, instance: ClusterTemplateInstance,
                      status: ClusterTemplateInstanceStatus) -> ClusterTemplateInstance:
        """Replace the status sub-document, guarded by resourceVersion."""
        s = self.settings
        body = {
            "metadata": {"resourceVersion": instance.metadata.resourceVersion},
            "status": status.to_patch(),
        }
        try:
            item = self.custom.patch_namespaced_custom_object_status(
                s.CRD_GROUP, s.CRD_VERSION, instance.namespace, s.INSTANCE_PLURAL,
                instance.name, body,
            )
        except ApiException as e:
            if e.status == 409:
                raise ConflictError(f"{instance.namespace}/{instance.name} was modified concurrently") from e
            raise
        return _parse_instance(item)

    # --- Templates and repositories (read-only) ---

    def get_template(self, name: str) -> ClusterTemplate:
        s = self.settings
        try:
            item = self.custom.get_cluster_custom_object(
                s.CRD_GROUP, s.CRD_VERSION, s.TEMPLATE_PLURAL, name
            )
        except ApiException as e:
            if e.status == 404:
                raise MissingReferenceError(f"cluster template {name!r} not found") from e
            raise
        return ClusterTemplate.model_validate(item)

    def list_helm_repositories(self) -> list[HelmChartRepository]:
        s = self.settings
        result = self.custom.list_cluster_custom_object(
            s.HELM_REPO_GROUP, s.HELM_REPO_VERSION, s.HELM_REPO_PLURAL
        )
        return [HelmChartRepository.model_validate(item) for item in result.get("items", [])]

    # --- Generic reads ---

    def get_custom_object(self, group: str, version: str, plural: str,
                          namespace: str, name: str) -> Optional[dict]:
        try:
            return self.custom.get_namespaced_custom_object(group, version, namespace, plural, name)
        except ApiException as e:
            if e.status == 404:
                return None
            raise

    def get_secret(self, namespace: str, name: str) -> Optional[dict[str, str]]:
        """Return the secret's data base64-decoded, or None if it does not exist."""
        try:
            secret = self.core.read_namespaced_secret(name=name, namespace=namespace)
        except ApiException as e:
            if e.status == 404:
                return None
            raise
        return _decode_secret_data(secret.data)
