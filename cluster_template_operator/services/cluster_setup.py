"""
Post-provision cluster setup as Tekton PipelineRuns.

Every `clusterSetup` entry of a template becomes one PipelineRun in the
instance's namespace, named <instance>-<setup>. Two labels tie a run back
to the instance and the setup entry it was created for.
"""

import logging
from typing import Optional

from kubernetes import client
from kubernetes.client import ApiException

from cluster_template_operator.config import Settings, settings as default_settings
from cluster_template_operator.models import (
    ClusterSetup,
    ClusterTemplate,
    ClusterTemplateInstance,
    ObservedTask,
)
from cluster_template_operator.services.kubernetes_service import custom_api

logger = logging.getLogger("cluster_setup")

CLUSTER_SETUP_INSTANCE_LABEL = "clustertemplate.openshift.io/cluster-setup-instance"
CLUSTER_SETUP_LABEL = "clustertemplate.openshift.io/cluster-setup"
KUBECONFIG_PARAM = "kubeconfigSecret"


def setup_run_name(instance: str, setup: str) -> str:
    return f"{instance}-{setup}"


class TektonTaskRunner:
    def __init__(self, cfg: Settings = default_settings, custom: Optional[client.CustomObjectsApi] = None):
        self.settings = cfg
        self._custom = custom

    @property
    def custom(self) -> client.CustomObjectsApi:
        if self._custom is None:
            self._custom = custom_api()
        return self._custom

    def _pipeline_run(self, setup: ClusterSetup, instance: ClusterTemplateInstance,
                      kubeconfig_secret: str) -> dict:
        s = self.settings
        spec = {
            "params": list(setup.params) + [{"name": KUBECONFIG_PARAM, "value": kubeconfig_secret}],
        }
        if setup.pipelineRef is not None:
            spec["pipelineRef"] = setup.pipelineRef
        if setup.pipelineSpec is not None:
            spec["pipelineSpec"] = setup.pipelineSpec
        return {
            "apiVersion": f"{s.TEKTON_GROUP}/{s.TEKTON_VERSION}",
            "kind": "PipelineRun",
            "metadata": {
                "name": setup_run_name(instance.name, setup.name),
                "namespace": instance.namespace,
                "labels": {
                    CLUSTER_SETUP_INSTANCE_LABEL: instance.name,
                    CLUSTER_SETUP_LABEL: setup.name,
                },
                "ownerReferences": [{
                    "apiVersion": f"{s.CRD_GROUP}/{s.CRD_VERSION}",
                    "kind": "ClusterTemplateInstance",
                    "name": instance.name,
                    "uid": instance.metadata.uid,
                }],
            },
            "spec": spec,
        }

    def create_setup_pipelines(self, template: ClusterTemplate, instance: ClusterTemplateInstance,
                               kubeconfig_secret: str):
        """Create one PipelineRun per setup entry, in template order. Existing runs are kept."""
        s = self.settings
        for setup in template.spec.clusterSetup:
            body = self._pipeline_run(setup, instance, kubeconfig_secret)
            try:
                self.custom.create_namespaced_custom_object(
                    s.TEKTON_GROUP, s.TEKTON_VERSION, instance.namespace, s.TEKTON_PLURAL, body
                )
                logger.info(f"[{instance.name}] PipelineRun {body['metadata']['name']} created")
            except ApiException as e:
                if e.status != 409:
                    raise
                logger.info(f"[{instance.name}] PipelineRun {body['metadata']['name']} already exists")

    def list_setup_runs(self, instance_name: str, namespace: str) -> list[ObservedTask]:
        s = self.settings
        result = self.custom.list_namespaced_custom_object(
            s.TEKTON_GROUP, s.TEKTON_VERSION, namespace, s.TEKTON_PLURAL,
            label_selector=f"{CLUSTER_SETUP_INSTANCE_LABEL}={instance_name}",
        )
        tasks = []
        for item in result.get("items", []):
            meta = item.get("metadata", {})
            status = item.get("status") or {}
            tasks.append(ObservedTask(
                name=meta.get("name", ""),
                labels=meta.get("labels") or {},
                conditions=status.get("conditions") or [],
                completionTime=status.get("completionTime"),
            ))
        return tasks
