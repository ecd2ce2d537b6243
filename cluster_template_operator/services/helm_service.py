"""
Helm wrapper — the package installer behind the provision and status stages.

Releases are named after the ClusterTemplateInstance and live in its
namespace. install_chart() may be called again with identical arguments
after a failed pass: stuck releases are cleared and everything else goes
through `helm upgrade --install`, so repeats converge on one release.
"""

import json as _json
import logging
import subprocess
from typing import Optional

import yaml

from cluster_template_operator.config import Settings, settings as default_settings
from cluster_template_operator.models import Release

logger = logging.getLogger("helm_service")

STUCK_STATES = {"pending-install", "pending-upgrade", "pending-rollback", "failed"}


class HelmClient:
    def __init__(self, cfg: Settings = default_settings):
        self.binary = cfg.HELM_BINARY
        self.timeout = cfg.HELM_TIMEOUT

    def run(self, args: list[str], check: bool = True,
            stdin: Optional[str] = None) -> subprocess.CompletedProcess:
        """Execute a Helm CLI command. Raises RuntimeError on failure if check=True."""
        cmd = [self.binary] + args
        logger.info(f"helm> {' '.join(cmd)}")
        result = subprocess.run(
            cmd, input=stdin, capture_output=True, text=True, timeout=self.timeout + 30
        )
        if result.stdout:
            logger.debug(f"helm stdout: {result.stdout[:800]}")
        if result.stderr:
            logger.warning(f"helm stderr: {result.stderr[:800]}")
        if check and result.returncode != 0:
            raise RuntimeError(f"Helm command failed (rc={result.returncode}): {result.stderr[:500]}")
        return result

    def release_status(self, release: str, namespace: str) -> Optional[str]:
        """
        Get the status of a Helm release. Returns the status string
        (e.g. 'deployed', 'pending-install', 'failed') or None if not found.
        """
        r = self.run(["status", release, "-n", namespace, "-o", "json"], check=False)
        if r.returncode != 0:
            if "not found" in r.stderr:
                return None
            raise RuntimeError(f"Helm status failed for {release} (rc={r.returncode}): {r.stderr[:500]}")
        data = _json.loads(r.stdout)
        return data.get("info", {}).get("status", "unknown")

    def _cleanup_stuck(self, release: str, namespace: str):
        """Force-remove a stuck release so a fresh install can proceed."""
        logger.warning(f"Cleaning up stuck Helm release {release} in {namespace}")
        self.run(["uninstall", release, "-n", namespace, "--no-hooks"])

    def install_chart(self, chart_url: str, release: str, namespace: str, values: dict):
        """Install the chart at chart_url as `release`, or converge an existing one."""
        status = self.release_status(release, namespace)
        if status in STUCK_STATES:
            logger.warning(f"Helm release {release} is stuck in '{status}' — cleaning up")
            self._cleanup_stuck(release, namespace)

        logger.info(f"Installing Helm release {release} from {chart_url}")
        self.run([
            "upgrade", release, chart_url,
            "--install",
            "-n", namespace,
            "--timeout", f"{self.timeout}s",
            "-f", "-",
        ], stdin=yaml.safe_dump(values))

    def get_release(self, release: str, namespace: str) -> Release:
        """Current status and rendered manifest of a release. Raises if it can't be read."""
        r = self.run(["status", release, "-n", namespace, "-o", "json"])
        status = _json.loads(r.stdout).get("info", {}).get("status", "unknown")
        manifest = self.run(["get", "manifest", release, "-n", namespace]).stdout
        return Release(name=release, status=status, manifest=manifest)

    def uninstall_release(self, release: str, namespace: str):
        """Uninstall a release. A release that is already gone counts as uninstalled."""
        if self.release_status(release, namespace) is None:
            logger.info(f"Helm release {release} not found — skipping uninstall")
            return
        self.run(["uninstall", release, "-n", namespace])
        logger.info(f"Helm release {release} uninstalled")
