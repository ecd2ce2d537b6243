"""
Readiness and credentials of the cluster behind a release.

A release's rendered manifest may contain a HostedCluster. When it does,
the live HostedCluster is authoritative for whether the cluster is up and
names the secrets that hold its kubeadmin password and kubeconfig.
"""

import logging
from typing import Optional

import yaml

from cluster_template_operator.config import Settings, settings as default_settings
from cluster_template_operator.errors import ManifestDecodeError
from cluster_template_operator.models import CLUSTER_AVAILABLE, CLUSTER_PENDING, ClusterDescriptor

logger = logging.getLogger("hypershift")

HOSTED_CLUSTER_KIND = "HostedCluster"
DOCUMENT_SEPARATOR = "---\n"


def decode_manifest(manifest: str) -> list[dict]:
    """
    Split a multi-document manifest and parse every fragment.

    Empty fragments and comment-only fragments are dropped. Any fragment
    that is not valid YAML raises ManifestDecodeError.
    """
    documents = []
    for index, fragment in enumerate(manifest.split(DOCUMENT_SEPARATOR)):
        try:
            document = yaml.safe_load(fragment)
        except yaml.YAMLError as e:
            raise ManifestDecodeError(f"manifest document {index} is not valid YAML: {e}") from e
        if isinstance(document, dict):
            documents.append(document)
    return documents


def hosted_cluster_status(conditions: Optional[list]) -> str:
    for c in conditions or []:
        if c.get("type") == "Available" and c.get("status") == "True":
            return CLUSTER_AVAILABLE
    return CLUSTER_PENDING


def api_server_from_kubeconfig(kubeconfig: str) -> Optional[str]:
    """Server URL of the first cluster in a kubeconfig, or None if there isn't one."""
    try:
        data = yaml.safe_load(kubeconfig)
    except yaml.YAMLError as e:
        logger.warning(f"kubeconfig is not valid YAML: {e}")
        return None
    if not isinstance(data, dict):
        logger.warning("kubeconfig is not a mapping")
        return None
    clusters = data.get("clusters") or []
    if not clusters:
        logger.warning("kubeconfig has no clusters")
        return None
    return (clusters[0].get("cluster") or {}).get("server")


class HostedClusterExtractor:
    """Recognizes HostedCluster documents and reads their live state."""

    def __init__(self, store, cfg: Settings = default_settings):
        self.store = store
        self.settings = cfg

    def extract(self, document: dict, default_namespace: str) -> Optional[ClusterDescriptor]:
        """Descriptor for a HostedCluster document; None for any other kind."""
        if document.get("kind") != HOSTED_CLUSTER_KIND:
            return None
        meta = document.get("metadata") or {}
        name = meta.get("name", "")
        namespace = meta.get("namespace") or default_namespace

        s = self.settings
        live = self.store.get_custom_object(
            s.HOSTED_CLUSTER_GROUP, s.HOSTED_CLUSTER_VERSION, s.HOSTED_CLUSTER_PLURAL,
            namespace, name,
        )
        if live is None:
            logger.info(f"HostedCluster {namespace}/{name} not created yet")
            return ClusterDescriptor(namespace=namespace)

        status = live.get("status") or {}
        return ClusterDescriptor(
            namespace=namespace,
            passwordSecret=(status.get("kubeadminPassword") or {}).get("name", ""),
            kubeconfigSecret=(status.get("kubeconfig") or {}).get("name", ""),
            status=hosted_cluster_status(status.get("conditions")),
        )
