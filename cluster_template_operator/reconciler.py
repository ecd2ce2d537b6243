"""
ClusterTemplateInstance reconciler — one pass of the convergence loop.

Pipeline (strictly sequential, first error aborts the pass):
  1. Lifecycle gate   Active   → ensure finalizer, continue
                      Deleting → helm uninstall, drop finalizer, stop
                      Deleted  → stop
  2. Provision        only while status.created is false:
                      values → template → repository → chart index →
                      chart version → resolved URL → helm install
  3. Cluster status   every pass: release status, overridden by the
                      HostedCluster in the rendered manifest; best-effort
                      kubeadmin password and API server URL
  4. Cluster setup    NotReady → poll; AwaitingStart → create setup tasks;
                      Polling/Complete → rebuild clusterSetup from tasks
  5. Persist          replace the whole status sub-document

Guarantees:
  - Level-triggered: every decision is recomputed from stored state
  - created / clusterSetupStarted only ever go false → true
  - Nothing but the finalizer is written until the final status update,
    so a failed pass leaves the stored status exactly as it was
"""

import json as _json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional

from cluster_template_operator.config import Settings, settings as default_settings
from cluster_template_operator.errors import InvalidValuesError, MissingReferenceError
from cluster_template_operator.models import (
    CLUSTER_AVAILABLE,
    ClusterTemplate,
    ClusterTemplateInstance,
    ClusterTemplateInstanceStatus,
    ConditionStatus,
    ObservedTask,
    SetupTaskStatus,
)
from cluster_template_operator.services.chart_index import find_chart_url, resolve_chart_url
from cluster_template_operator.services.cluster_setup import CLUSTER_SETUP_LABEL
from cluster_template_operator.services.hypershift import api_server_from_kubeconfig, decode_manifest

logger = logging.getLogger("cluster-template-operator")


class Lifecycle(str, Enum):
    ACTIVE = "Active"
    DELETING = "Deleting"
    DELETED = "Deleted"


class SetupState(str, Enum):
    NOT_READY = "NotReady"
    AWAITING_START = "AwaitingStart"
    POLLING = "Polling"
    COMPLETE = "Complete"


@dataclass
class PassResult:
    """What the scheduler should do after a successful pass."""
    continue_polling: bool = False
    delay: float = 0


def lifecycle_of(instance: ClusterTemplateInstance, finalizer: str) -> Lifecycle:
    if instance.deletion_requested:
        return Lifecycle.DELETING if instance.has_finalizer(finalizer) else Lifecycle.DELETED
    return Lifecycle.ACTIVE


def decode_values(raw) -> dict:
    """Values document of an instance as a plain mapping."""
    if raw is None:
        return {}
    if isinstance(raw, (str, bytes)):
        try:
            raw = _json.loads(raw)
        except ValueError as e:
            raise InvalidValuesError(f"values are not valid JSON: {e}") from e
    if not isinstance(raw, dict):
        raise InvalidValuesError(f"values must be a mapping, got {type(raw).__name__}")
    return dict(raw)


def compute_setup_status(observed: Iterable[ObservedTask]) -> list[SetupTaskStatus]:
    """
    Status entries for the setup tasks observed right now, sorted by name.
    Tasks without a setup label are not ours to report.
    """
    statuses = []
    for task in observed:
        setup_name = task.labels.get(CLUSTER_SETUP_LABEL, "")
        if not setup_name:
            continue
        entry = SetupTaskStatus(name=setup_name, completionTime=task.completionTime)
        for c in task.conditions:
            if c.get("type") == "Succeeded":
                entry.succeeded = ConditionStatus(c.get("status") or ConditionStatus.UNKNOWN.value)
                entry.reason = c.get("reason") or ""
                entry.message = c.get("message") or ""
        statuses.append(entry)
    return sorted(statuses, key=lambda s: s.name)


def setup_complete(statuses: Iterable[SetupTaskStatus]) -> bool:
    """Every task finished, whatever its outcome."""
    return all(s.completionTime is not None for s in statuses)


def setup_state(status: ClusterTemplateInstanceStatus) -> SetupState:
    if status.clusterStatus != CLUSTER_AVAILABLE:
        return SetupState.NOT_READY
    if not status.clusterSetupStarted:
        return SetupState.AWAITING_START
    if setup_complete(status.clusterSetup):
        return SetupState.COMPLETE
    return SetupState.POLLING


class _PassContext:
    """Lookups shared by the stages of a single pass."""

    def __init__(self, store, instance: ClusterTemplateInstance):
        self.store = store
        self.instance = instance
        self._template: Optional[ClusterTemplate] = None

    def template(self) -> ClusterTemplate:
        if self._template is None:
            self._template = self.store.get_template(self.instance.spec.template)
        return self._template


class ClusterTemplateInstanceReconciler:
    """
    Drives one ClusterTemplateInstance toward a running, set-up cluster.

    Collaborators:
      store         get_instance / update_finalizers / update_status /
                    get_template / list_helm_repositories / get_secret
      helm          install_chart / get_release / uninstall_release
      index         fetch(repo_url) -> {chart: [ChartVersion]}
      tasks         create_setup_pipelines / list_setup_runs
      extractor     extract(document, default_namespace) -> ClusterDescriptor | None
      events        optional EventPublisher
    """

    def __init__(self, store, helm, index, tasks, extractor, events=None,
                 settings: Settings = default_settings):
        self.store = store
        self.helm = helm
        self.index = index
        self.tasks = tasks
        self.extractor = extractor
        self.events = events
        self.settings = settings

    def _publish(self, instance: ClusterTemplateInstance, event_type: str, message: str):
        if self.events is not None:
            self.events.publish(instance.namespace, instance.name, event_type, message)

    # ------------------------------------------------------------------
    # Pass entrypoint
    # ------------------------------------------------------------------

    def reconcile(self, namespace: str, name: str) -> PassResult:
        """Run one pass. Raises on any failure; nothing but finalizers is persisted then."""
        instance = self.store.get_instance(namespace, name)
        if instance is None:
            logger.info(f"[{name}] clustertemplateinstance {namespace}/{name} not found, aborting reconcile")
            return PassResult()

        gate = {
            Lifecycle.ACTIVE: self._ensure_finalizer,
            Lifecycle.DELETING: self._finalize,
            Lifecycle.DELETED: self._settle,
        }
        instance = gate[lifecycle_of(instance, self.settings.FINALIZER)](instance)
        if instance is None:
            return PassResult()

        ctx = _PassContext(self.store, instance)
        self._provision(instance, ctx)

        new_status = ClusterTemplateInstanceStatus(
            created=True,
            clusterSetupStarted=instance.status.clusterSetupStarted,
        )
        kubeconfig_secret = self._observe_cluster(instance, new_status)
        continue_polling = self._setup(instance, ctx, new_status, kubeconfig_secret)
        return self._persist(instance, new_status, continue_polling)

    # ------------------------------------------------------------------
    # 1. Lifecycle gate
    # ------------------------------------------------------------------

    def _settle(self, instance: ClusterTemplateInstance) -> None:
        logger.info(f"[{instance.name}] deletion in progress, nothing left to clean up")
        return None

    def _finalize(self, instance: ClusterTemplateInstance) -> None:
        logger.info(f"[{instance.name}] Uninstalling release for deleted instance")
        self.helm.uninstall_release(instance.name, instance.namespace)
        self._publish(instance, "RELEASE_UNINSTALLED", f"Release {instance.name} uninstalled")

        instance.metadata.finalizers = [
            f for f in instance.metadata.finalizers if f != self.settings.FINALIZER
        ]
        self.store.update_finalizers(instance)
        logger.info(f"[{instance.name}] Finalizer removed")
        if self.events is not None:
            self.events.forget(instance.namespace, instance.name)
        return None

    def _ensure_finalizer(self, instance: ClusterTemplateInstance) -> ClusterTemplateInstance:
        if instance.has_finalizer(self.settings.FINALIZER):
            return instance
        instance.metadata.finalizers = instance.metadata.finalizers + [self.settings.FINALIZER]
        updated = self.store.update_finalizers(instance)
        self._publish(instance, "FINALIZER_ADDED", "Instance is now managed")
        return updated

    # ------------------------------------------------------------------
    # 2. Provision
    # ------------------------------------------------------------------

    def _find_repository_url(self, repository: str) -> str:
        for repo in self.store.list_helm_repositories():
            if repo.metadata.name == repository:
                return repo.spec.connectionConfig.url
        raise MissingReferenceError(f"repository not found: {repository}")

    def _provision(self, instance: ClusterTemplateInstance, ctx: _PassContext):
        if instance.status.created:
            return

        logger.info(f"[{instance.name}] Creating cluster from template {instance.spec.template}")
        values = decode_values(instance.spec.values)
        template = ctx.template()

        repo_url = self._find_repository_url(template.spec.helmRepository)
        index = self.index.fetch(repo_url)
        chart_url = find_chart_url(index, template.spec.helmChart, template.spec.helmChartVersion)
        chart_url = resolve_chart_url(repo_url, chart_url)

        self.helm.install_chart(chart_url, instance.name, instance.namespace, values)
        logger.info(f"[{instance.name}] Release installed from {chart_url}")
        self._publish(instance, "RELEASE_INSTALLED", f"Installed {chart_url}")

    # ------------------------------------------------------------------
    # 3. Cluster status
    # ------------------------------------------------------------------

    def _observe_cluster(self, instance: ClusterTemplateInstance,
                         new_status: ClusterTemplateInstanceStatus) -> str:
        """Fill clusterStatus and credentials; return the kubeconfig secret name ('' if none)."""
        release = self.helm.get_release(instance.name, instance.namespace)
        new_status.clusterStatus = release.status

        descriptor = None
        for document in decode_manifest(release.manifest):
            found = self.extractor.extract(document, instance.namespace)
            if found is not None:
                descriptor = found
                new_status.clusterStatus = found.status
        if descriptor is None:
            return ""

        if descriptor.passwordSecret:
            password = self.store.get_secret(descriptor.namespace, descriptor.passwordSecret)
            if password is None:
                logger.info(f"[{instance.name}] kubeadmin password secret not found")
            else:
                new_status.kubeadminPassword = password.get("password")

        if not descriptor.kubeconfigSecret:
            return ""
        kubeconfig = self.store.get_secret(descriptor.namespace, descriptor.kubeconfigSecret)
        if kubeconfig is None:
            logger.info(f"[{instance.name}] kubeconfig secret not found")
            return ""
        new_status.apiServerURL = api_server_from_kubeconfig(kubeconfig.get("kubeconfig", ""))
        return descriptor.kubeconfigSecret

    # ------------------------------------------------------------------
    # 4. Cluster setup
    # ------------------------------------------------------------------

    def _setup(self, instance: ClusterTemplateInstance, ctx: _PassContext,
               new_status: ClusterTemplateInstanceStatus, kubeconfig_secret: str) -> bool:
        """Advance setup; return whether the instance needs polling."""
        state = setup_state(new_status)

        if state is SetupState.NOT_READY:
            logger.info(f"[{instance.name}] cluster is not ready for setup yet ({new_status.clusterStatus})")
            return True

        if state is SetupState.AWAITING_START:
            logger.info(f"[{instance.name}] Creating cluster setup pipelines")
            template = ctx.template()
            self.tasks.create_setup_pipelines(template, instance, kubeconfig_secret)
            new_status.clusterSetupStarted = True
            self._publish(instance, "SETUP_STARTED", "Cluster setup pipelines created")
            if not template.spec.clusterSetup:
                self._publish(instance, "SETUP_COMPLETE", "Template declares no cluster setup")
            return True

        observed = self.tasks.list_setup_runs(instance.name, instance.namespace)
        new_status.clusterSetup = compute_setup_status(observed)
        state = setup_state(new_status)
        logger.info(f"[{instance.name}] {len(new_status.clusterSetup)} setup tasks, {state.value}")

        # Empty templates announce completion at start; an empty list here means no runs listed yet.
        previous = instance.status.clusterSetup
        newly_complete = (
            state is SetupState.COMPLETE
            and new_status.clusterSetup
            and not (previous and setup_complete(previous))
        )
        if newly_complete:
            self._publish(instance, "SETUP_COMPLETE", "All cluster setup tasks finished")
        return state is not SetupState.COMPLETE

    # ------------------------------------------------------------------
    # 5. Persist
    # ------------------------------------------------------------------

    def _persist(self, instance: ClusterTemplateInstance,
                 new_status: ClusterTemplateInstanceStatus, continue_polling: bool) -> PassResult:
        self.store.update_status(instance, new_status)
        return PassResult(continue_polling=continue_polling, delay=self.settings.REQUEUE_DELAY)
