"""In-memory collaborators for driving reconciliation passes without a cluster."""

from __future__ import annotations

import base64
from typing import Any, Optional

import pytest

from cluster_template_operator.config import Settings
from cluster_template_operator.errors import ConflictError, MissingReferenceError
from cluster_template_operator.models import (
    ChartVersion,
    ClusterTemplate,
    ClusterTemplateInstance,
    ClusterTemplateInstanceStatus,
    HelmChartRepository,
    ObservedTask,
    Release,
)
from cluster_template_operator.reconciler import ClusterTemplateInstanceReconciler
from cluster_template_operator.services.cluster_setup import (
    CLUSTER_SETUP_INSTANCE_LABEL,
    CLUSTER_SETUP_LABEL,
)
from cluster_template_operator.services.hypershift import HostedClusterExtractor

TEST_SETTINGS = Settings(REQUEUE_DELAY=60, REDIS_URL="")
FINALIZER = TEST_SETTINGS.FINALIZER
REPO_URL = "https://charts.example.com/stable/index.yaml"


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def make_instance(
    name: str = "my-cluster",
    namespace: str = "clusters",
    *,
    finalizers: Optional[list[str]] = None,
    deleting: bool = False,
    values: Any = None,
    **status: Any,
) -> ClusterTemplateInstance:
    return ClusterTemplateInstance.model_validate({
        "metadata": {
            "name": name,
            "namespace": namespace,
            "uid": f"uid-{name}",
            "resourceVersion": "1",
            "finalizers": [FINALIZER] if finalizers is None else finalizers,
            "deletionTimestamp": "2026-10-17T10:00:00Z" if deleting else None,
        },
        "spec": {"template": "hypershift-small", "values": values if values is not None else {"nodes": 2}},
        "status": status,
    })


def make_template(name: str = "hypershift-small", setups: tuple[str, ...] = ("configure-auth", "install-gitops")) -> ClusterTemplate:
    return ClusterTemplate.model_validate({
        "metadata": {"name": name},
        "spec": {
            "helmRepository": "stable",
            "helmChart": "hypershift-cluster",
            "helmChartVersion": "1.2.0",
            "clusterSetup": [{"name": s, "pipelineRef": {"name": s}} for s in setups],
        },
    })


def make_repository(name: str = "stable", url: str = REPO_URL) -> HelmChartRepository:
    return HelmChartRepository.model_validate({
        "metadata": {"name": name},
        "spec": {"connectionConfig": {"url": url}},
    })


def make_run(setup: str, instance: str = "my-cluster", *, succeeded: Optional[str] = None,
             completion_time: Optional[str] = None) -> ObservedTask:
    conditions = []
    if succeeded is not None:
        conditions.append({"type": "Succeeded", "status": succeeded, "reason": "Done", "message": f"{setup} finished"})
    return ObservedTask(
        name=f"{instance}-{setup}",
        labels={CLUSTER_SETUP_INSTANCE_LABEL: instance, CLUSTER_SETUP_LABEL: setup},
        conditions=conditions,
        completionTime=completion_time,
    )


HOSTED_CLUSTER_MANIFEST = """---
# Source: hypershift-cluster/templates/namespace.yaml
apiVersion: v1
kind: Namespace
metadata:
  name: clusters-my-cluster
---
# Source: hypershift-cluster/templates/hostedcluster.yaml
apiVersion: hypershift.openshift.io/v1beta1
kind: HostedCluster
metadata:
  name: my-cluster
  namespace: clusters-my-cluster
spec:
  release:
    image: quay.io/openshift-release-dev/ocp-release:4.14.0-x86_64
"""

KUBECONFIG = """apiVersion: v1
kind: Config
clusters:
- name: my-cluster
  cluster:
    server: https://api.my-cluster.example.com:6443
contexts: []
users: []
"""


def hosted_cluster(available: bool = True) -> dict:
    return {
        "kind": "HostedCluster",
        "metadata": {"name": "my-cluster", "namespace": "clusters-my-cluster"},
        "status": {
            "kubeadminPassword": {"name": "my-cluster-kubeadmin-password"},
            "kubeconfig": {"name": "my-cluster-admin-kubeconfig"},
            "conditions": [{"type": "Available", "status": "True" if available else "False"}],
        },
    }


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeStore:
    def __init__(self):
        self.instances: dict[tuple[str, str], ClusterTemplateInstance] = {}
        self.templates: dict[str, ClusterTemplate] = {}
        self.repositories: list[HelmChartRepository] = []
        self.secrets: dict[tuple[str, str], dict[str, str]] = {}
        self.custom_objects: dict[tuple[str, str, str], dict] = {}
        self.status_updates: list[ClusterTemplateInstanceStatus] = []
        self.finalizer_updates: list[list[str]] = []
        self.conflict_on_status = False

    def add(self, instance: ClusterTemplateInstance) -> ClusterTemplateInstance:
        self.instances[(instance.namespace, instance.name)] = instance
        return instance

    def stored(self, namespace: str = "clusters", name: str = "my-cluster") -> Optional[ClusterTemplateInstance]:
        return self.instances.get((namespace, name))

    def _bump(self, instance: ClusterTemplateInstance) -> ClusterTemplateInstance:
        stored = self.instances[(instance.namespace, instance.name)]
        if stored.metadata.resourceVersion != instance.metadata.resourceVersion:
            raise ConflictError("resourceVersion mismatch")
        updated = instance.model_copy(deep=True)
        updated.metadata.resourceVersion = str(int(stored.metadata.resourceVersion) + 1)
        return updated

    def get_instance(self, namespace, name):
        stored = self.instances.get((namespace, name))
        return stored.model_copy(deep=True) if stored is not None else None

    def update_finalizers(self, instance):
        updated = self._bump(instance)
        updated.status = self.instances[(instance.namespace, instance.name)].status.model_copy(deep=True)
        self.finalizer_updates.append(list(instance.metadata.finalizers))
        if updated.deletion_requested and not updated.metadata.finalizers:
            del self.instances[(instance.namespace, instance.name)]
        else:
            self.instances[(instance.namespace, instance.name)] = updated
        return updated.model_copy(deep=True)

    def update_status(self, instance, status):
        if self.conflict_on_status:
            raise ConflictError("instance was modified concurrently")
        updated = self._bump(instance)
        updated.status = status.model_copy(deep=True)
        self.instances[(instance.namespace, instance.name)] = updated
        self.status_updates.append(status.model_copy(deep=True))
        return updated.model_copy(deep=True)

    def get_template(self, name):
        if name not in self.templates:
            raise MissingReferenceError(f"cluster template {name!r} not found")
        return self.templates[name]

    def list_helm_repositories(self):
        return list(self.repositories)

    def get_custom_object(self, group, version, plural, namespace, name):
        return self.custom_objects.get((plural, namespace, name))

    def get_secret(self, namespace, name):
        return self.secrets.get((namespace, name))


class FakeHelm:
    """Installer that only tolerates repeated installs with identical arguments."""

    def __init__(self, status: str = "deployed", manifest: str = ""):
        self.status = status
        self.manifest = manifest
        self.releases: dict[tuple[str, str], tuple[str, dict]] = {}
        self.install_calls: list[tuple[str, str, str, dict]] = []
        self.uninstall_calls: list[tuple[str, str]] = []
        self.install_error: Optional[Exception] = None
        self.uninstall_error: Optional[Exception] = None

    def install_chart(self, chart_url, release, namespace, values):
        self.install_calls.append((chart_url, release, namespace, values))
        if self.install_error is not None:
            raise self.install_error
        existing = self.releases.get((namespace, release))
        if existing is not None and existing != (chart_url, values):
            raise RuntimeError(f"release {release} already installed with different arguments")
        self.releases[(namespace, release)] = (chart_url, values)

    def get_release(self, release, namespace):
        if (namespace, release) not in self.releases:
            raise RuntimeError(f"release: not found: {release}")
        return Release(name=release, status=self.status, manifest=self.manifest)

    def uninstall_release(self, release, namespace):
        self.uninstall_calls.append((release, namespace))
        if self.uninstall_error is not None:
            raise self.uninstall_error
        self.releases.pop((namespace, release), None)


class FakeIndex:
    def __init__(self, index: Optional[dict[str, list[ChartVersion]]] = None):
        self.index = index if index is not None else {
            "hypershift-cluster": [
                ChartVersion(version="1.3.0", urls=["charts/hypershift-cluster-1.3.0.tgz"]),
                ChartVersion(version="1.2.0", urls=["charts/hypershift-cluster-1.2.0.tgz"]),
            ],
        }
        self.fetched: list[str] = []

    def fetch(self, repo_url):
        self.fetched.append(repo_url)
        return self.index


class FakeTasks:
    def __init__(self):
        self.created: list[tuple[str, str, str]] = []
        self.runs: list[ObservedTask] = []
        self.create_error: Optional[Exception] = None

    def create_setup_pipelines(self, template, instance, kubeconfig_secret):
        if self.create_error is not None:
            raise self.create_error
        self.created.append((template.metadata.name, instance.name, kubeconfig_secret))

    def list_setup_runs(self, instance_name, namespace):
        return [r for r in self.runs if r.labels.get(CLUSTER_SETUP_INSTANCE_LABEL) == instance_name]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> FakeStore:
    s = FakeStore()
    s.templates["hypershift-small"] = make_template()
    s.repositories = [make_repository("incubator", "https://incubator.example.com/"), make_repository()]
    return s


@pytest.fixture
def helm() -> FakeHelm:
    return FakeHelm()


@pytest.fixture
def index() -> FakeIndex:
    return FakeIndex()


@pytest.fixture
def tasks() -> FakeTasks:
    return FakeTasks()


@pytest.fixture
def reconciler(store, helm, index, tasks) -> ClusterTemplateInstanceReconciler:
    return ClusterTemplateInstanceReconciler(
        store=store,
        helm=helm,
        index=index,
        tasks=tasks,
        extractor=HostedClusterExtractor(store, TEST_SETTINGS),
        settings=TEST_SETTINGS,
    )


def b64(value: str) -> str:
    return base64.b64encode(value.encode()).decode()
