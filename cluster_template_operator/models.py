"""
Pydantic models for the custom resources the operator reads and writes.

Field names mirror the CRD JSON so raw objects from the API validate
directly and dump back without renaming.
"""
from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional
from enum import Enum


CLUSTER_AVAILABLE = "Available"
CLUSTER_PENDING = "Pending"


class ConditionStatus(str, Enum):
    TRUE = "True"
    FALSE = "False"
    UNKNOWN = "Unknown"


class ObjectMeta(BaseModel):
    name: str
    namespace: str = ""
    uid: str = ""
    resourceVersion: str = ""
    deletionTimestamp: Optional[str] = None
    finalizers: List[str] = []
    labels: Dict[str, str] = {}


# ---------------------------------------------------------------------------
# ClusterTemplateInstance
# ---------------------------------------------------------------------------

class SetupTaskStatus(BaseModel):
    """Observed state of one post-provision setup task."""
    name: str
    succeeded: ConditionStatus = ConditionStatus.UNKNOWN
    reason: str = ""
    message: str = ""
    completionTime: Optional[str] = None


class ClusterTemplateInstanceSpec(BaseModel):
    template: str
    values: Any = None


class ClusterTemplateInstanceStatus(BaseModel):
    created: bool = False
    clusterStatus: str = ""
    clusterSetupStarted: bool = False
    clusterSetup: List[SetupTaskStatus] = []
    kubeadminPassword: Optional[str] = None
    apiServerURL: Optional[str] = None

    def to_patch(self) -> dict:
        """
        Render the status for a merge patch that replaces the stored one.
        Unset optional fields are sent as null so stale values are removed.
        """
        return {
            "created": self.created,
            "clusterStatus": self.clusterStatus,
            "clusterSetupStarted": self.clusterSetupStarted,
            "clusterSetup": [
                s.model_dump(mode="json", exclude_none=True) for s in self.clusterSetup
            ],
            "kubeadminPassword": self.kubeadminPassword or None,
            "apiServerURL": self.apiServerURL or None,
        }


class ClusterTemplateInstance(BaseModel):
    metadata: ObjectMeta
    spec: ClusterTemplateInstanceSpec
    status: ClusterTemplateInstanceStatus = Field(default_factory=ClusterTemplateInstanceStatus)

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str:
        return self.metadata.namespace

    @property
    def deletion_requested(self) -> bool:
        return self.metadata.deletionTimestamp is not None

    def has_finalizer(self, finalizer: str) -> bool:
        return finalizer in self.metadata.finalizers


# ---------------------------------------------------------------------------
# ClusterTemplate / HelmChartRepository (read-only)
# ---------------------------------------------------------------------------

class ClusterSetup(BaseModel):
    """One ordered post-provision step declared by a template."""
    name: str
    pipelineRef: Optional[Dict[str, Any]] = None
    pipelineSpec: Optional[Dict[str, Any]] = None
    params: List[Dict[str, Any]] = []


class ClusterTemplateSpec(BaseModel):
    helmRepository: str
    helmChart: str
    helmChartVersion: str
    clusterSetup: List[ClusterSetup] = []


class ClusterTemplate(BaseModel):
    metadata: ObjectMeta
    spec: ClusterTemplateSpec


class ConnectionConfig(BaseModel):
    url: str


class HelmChartRepositorySpec(BaseModel):
    connectionConfig: ConnectionConfig


class HelmChartRepository(BaseModel):
    metadata: ObjectMeta
    spec: HelmChartRepositorySpec


# ---------------------------------------------------------------------------
# Derived records (never persisted)
# ---------------------------------------------------------------------------

class ChartVersion(BaseModel):
    """One entry of a chart repository index."""
    version: str
    urls: List[str] = []


class Release(BaseModel):
    name: str
    status: str
    manifest: str = ""


class ClusterDescriptor(BaseModel):
    """Readiness and credential locations of the cluster a release provisioned."""
    namespace: str
    passwordSecret: str = ""
    kubeconfigSecret: str = ""
    status: str = CLUSTER_PENDING


class ObservedTask(BaseModel):
    """A setup task as reported by the task runner."""
    name: str = ""
    labels: Dict[str, str] = {}
    conditions: List[Dict[str, Any]] = []
    completionTime: Optional[str] = None
