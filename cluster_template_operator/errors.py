"""
Error taxonomy for a reconciliation pass.

Anything raised out of a pass aborts the remaining stages and leaves the
stored status untouched; the kopf layer decides how soon to retry.
"""


class ReconcileError(Exception):
    """Base class for failures the reconciler raises itself."""


class MissingReferenceError(ReconcileError):
    """A template, repository, chart or chart version does not exist."""


class InvalidValuesError(ReconcileError):
    """The instance's values document is not a mapping."""


class ManifestDecodeError(ReconcileError):
    """A fragment of a rendered release manifest is not valid YAML."""


class ConflictError(ReconcileError):
    """The stored object changed underneath us (HTTP 409)."""
