"""
Cluster Template Operator — Kubernetes Operator for ClusterTemplateInstances

Architecture:
  ClusterTemplateInstance CRD → Operator watches → one reconciliation pass
  (see reconciler.py) per create / update / resume / delete event.

  Requeue:
    - Pass wants more polling (cluster not Available, setup running)
      → TemporaryError with REQUEUE_DELAY
    - Concurrent modification (409) → quick retry
    - Template / repository / chart missing → slow retry
    - Anything else → ERROR_RETRY_DELAY, kopf keeps retrying

  Finalizer:
    The reconciler attaches and removes its own finalizer, so the delete
    handler is optional: kopf adds nothing and calls it while our
    finalizer still blocks deletion.

Run with:  kopf run -m cluster_template_operator.operator
"""

import logging
import time

import kopf
from prometheus_client import start_http_server

from cluster_template_operator import metrics
from cluster_template_operator.config import settings as cfg
from cluster_template_operator.errors import ConflictError, MissingReferenceError
from cluster_template_operator.reconciler import ClusterTemplateInstanceReconciler, PassResult
from cluster_template_operator.services.chart_index import ChartIndexFetcher
from cluster_template_operator.services.cluster_setup import TektonTaskRunner
from cluster_template_operator.services.events import EventPublisher
from cluster_template_operator.services.helm_service import HelmClient
from cluster_template_operator.services.hypershift import HostedClusterExtractor
from cluster_template_operator.services.kubernetes_service import KubernetesObjectStore

logger = logging.getLogger("cluster-template-operator")

_reconciler = None


def get_reconciler() -> ClusterTemplateInstanceReconciler:
    """Build the reconciler with real collaborators exactly once."""
    global _reconciler
    if _reconciler is None:
        store = KubernetesObjectStore(cfg)
        _reconciler = ClusterTemplateInstanceReconciler(
            store=store,
            helm=HelmClient(cfg),
            index=ChartIndexFetcher(cfg),
            tasks=TektonTaskRunner(cfg),
            extractor=HostedClusterExtractor(store, cfg),
            events=EventPublisher.from_settings(cfg),
            settings=cfg,
        )
    return _reconciler


def run_pass(namespace: str, name: str, logger: logging.Logger) -> None:
    """
    Run one pass and translate its outcome into kopf's retry semantics.
    Returns nothing on a settled pass so kopf writes no handler result into status.
    """
    started = time.monotonic()
    try:
        result: PassResult = get_reconciler().reconcile(namespace, name)
    except ConflictError as e:
        metrics.PASSES.labels(outcome="conflict").inc()
        raise kopf.TemporaryError(str(e), delay=cfg.CONFLICT_RETRY_DELAY)
    except MissingReferenceError as e:
        metrics.PASSES.labels(outcome="missing_reference").inc()
        logger.error(f"{namespace}/{name}: {e}")
        raise kopf.TemporaryError(str(e), delay=cfg.MISSING_REFERENCE_DELAY)
    except Exception as e:
        metrics.PASSES.labels(outcome="error").inc()
        logger.error(f"Reconcile of {namespace}/{name} failed: {e}")
        raise kopf.TemporaryError(f"Reconcile failed: {e}", delay=cfg.ERROR_RETRY_DELAY)
    finally:
        metrics.PASS_DURATION.observe(time.monotonic() - started)

    if result.continue_polling:
        metrics.PASSES.labels(outcome="polling").inc()
        raise kopf.TemporaryError("Cluster not converged yet", delay=result.delay)
    metrics.PASSES.labels(outcome="settled").inc()


# ---------------------------------------------------------------------------
# Kopf operator settings
# ---------------------------------------------------------------------------

@kopf.on.startup()
def configure(settings: kopf.OperatorSettings, **kwargs):
    settings.posting.enabled = True
    settings.persistence.progress_storage = kopf.AnnotationsProgressStorage(prefix=cfg.CRD_GROUP)
    settings.execution.max_workers = cfg.MAX_WORKERS
    if cfg.METRICS_PORT:
        start_http_server(cfg.METRICS_PORT)
    logger.info(
        f"Cluster Template Operator started (max_workers={cfg.MAX_WORKERS}, "
        f"requeue={cfg.REQUEUE_DELAY}s, metrics_port={cfg.METRICS_PORT})"
    )


# ---------------------------------------------------------------------------
# Handlers: every trigger runs the same level-triggered pass
# ---------------------------------------------------------------------------

@kopf.on.create(cfg.CRD_GROUP, cfg.CRD_VERSION, cfg.INSTANCE_PLURAL)
@kopf.on.update(cfg.CRD_GROUP, cfg.CRD_VERSION, cfg.INSTANCE_PLURAL)
@kopf.on.resume(cfg.CRD_GROUP, cfg.CRD_VERSION, cfg.INSTANCE_PLURAL)
def reconcile_instance(namespace, name, logger, **kwargs):
    """Converge a ClusterTemplateInstance toward a running, set-up cluster."""
    run_pass(namespace, name, logger)


@kopf.on.delete(cfg.CRD_GROUP, cfg.CRD_VERSION, cfg.INSTANCE_PLURAL, optional=True)
def delete_instance(namespace, name, logger, **kwargs):
    """Uninstall the release and release our finalizer."""
    run_pass(namespace, name, logger)
