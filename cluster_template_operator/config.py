"""
Configuration module — all settings from env vars with sensible defaults.
Follows 12-factor app methodology.
"""
import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    # Kubernetes
    KUBECONFIG: str = os.environ.get("KUBECONFIG", "")
    IN_CLUSTER: bool = os.environ.get("IN_CLUSTER", "false").lower() == "true"

    # CRDs owned by this operator
    CRD_GROUP: str = "clustertemplate.openshift.io"
    CRD_VERSION: str = "v1alpha1"
    INSTANCE_PLURAL: str = "clustertemplateinstances"
    TEMPLATE_PLURAL: str = "clustertemplates"
    FINALIZER: str = "clustertemplateinstance.openshift.io/finalizer"

    # Foreign resources
    HELM_REPO_GROUP: str = "helm.openshift.io"
    HELM_REPO_VERSION: str = "v1beta1"
    HELM_REPO_PLURAL: str = "helmchartrepositories"
    HOSTED_CLUSTER_GROUP: str = "hypershift.openshift.io"
    HOSTED_CLUSTER_VERSION: str = os.environ.get("HOSTED_CLUSTER_VERSION", "v1beta1")
    HOSTED_CLUSTER_PLURAL: str = "hostedclusters"
    TEKTON_GROUP: str = "tekton.dev"
    TEKTON_VERSION: str = os.environ.get("TEKTON_VERSION", "v1beta1")
    TEKTON_PLURAL: str = "pipelineruns"

    # Requeue policy (seconds)
    REQUEUE_DELAY: int = int(os.environ.get("REQUEUE_DELAY", "60"))
    MISSING_REFERENCE_DELAY: int = int(os.environ.get("MISSING_REFERENCE_DELAY", "300"))
    CONFLICT_RETRY_DELAY: int = int(os.environ.get("CONFLICT_RETRY_DELAY", "5"))
    ERROR_RETRY_DELAY: int = int(os.environ.get("ERROR_RETRY_DELAY", "30"))

    # Helm / chart repositories
    HELM_BINARY: str = os.environ.get("HELM_BINARY", "helm")
    HELM_TIMEOUT: int = int(os.environ.get("HELM_TIMEOUT", "300"))
    INDEX_FETCH_TIMEOUT: float = float(os.environ.get("INDEX_FETCH_TIMEOUT", "30"))

    # Operator runtime
    MAX_WORKERS: int = int(os.environ.get("MAX_WORKERS", "4"))
    METRICS_PORT: int = int(os.environ.get("METRICS_PORT", "8080"))
    REDIS_URL: str = os.environ.get("REDIS_URL", "")


settings = Settings()
