"""Steps 5-6: Helm and the Prometheus/Grafana monitoring stack."""

from __future__ import annotations

import json
import shlex

from ... import actions
from ...inventory import Host, Role
from ..model import ProvisioningStep, StepContext


def configured_repos(output: str) -> set[str]:
    """Names from ``helm repo list -o json``; empty on anything unparsable."""

    try:
        entries = json.loads(output or "[]")
    except json.JSONDecodeError:
        return set()
    if not isinstance(entries, list):
        return set()
    return {str(entry.get("name")) for entry in entries if isinstance(entry, dict)}


class InstallHelm(ProvisioningStep):
    ordinal = 5
    name = "install-helm"
    description = "Install Helm and chart repositories"
    roles = (Role.CONTROL_PLANE,)
    primary_only = True
    done_detail = "helm and repositories already configured"

    def probe(self, ctx: StepContext, host: Host) -> bool:
        result = self.check(ctx, host, "command -v helm >/dev/null && helm repo list -o json")
        if not result.ok:
            return False
        wanted = {repo.name for repo in ctx.settings.helm_repos}
        return wanted <= configured_repos(result.stdout)

    def mutate(self, ctx: StepContext, host: Host, *, done: bool) -> str:
        self.apply(ctx, host, actions.install_helm())
        # Repositories are per-user configuration; add them as the login user.
        self.apply(ctx, host, actions.add_helm_repos(ctx.settings.helm_repos), sudo=False)
        return "helm installed with " + ", ".join(repo.name for repo in ctx.settings.helm_repos)

    def verify(self, ctx: StepContext, host: Host) -> str:
        return self.query(ctx, host, "helm version --short")


class DeployMonitoring(ProvisioningStep):
    ordinal = 6
    name = "deploy-monitoring"
    description = "Deploy the Prometheus and Grafana monitoring stack"
    roles = (Role.CONTROL_PLANE,)
    primary_only = True
    skip_when_done = False

    def probe(self, ctx: StepContext, host: Host) -> bool:
        monitoring = ctx.settings.monitoring
        result = self.check(
            ctx, host, ctx.helm(f"list -q -n {shlex.quote(monitoring.namespace)}")
        )
        return result.ok and monitoring.release in result.stdout.split()

    def _has_storage_class(self, ctx: StepContext, host: Host) -> bool:
        result = self.check(ctx, host, ctx.kubectl("get storageclass -o name"))
        return result.ok and bool(result.stdout.strip())

    def mutate(self, ctx: StepContext, host: Host, *, done: bool) -> str:
        monitoring = ctx.settings.monitoring
        monitoring.require_secrets()
        mode = "upgrade" if done else "install"
        persistence = self._has_storage_class(ctx, host)
        action = actions.deploy_monitoring(
            monitoring, ctx.settings.kubeconfig_path(), mode=mode, persistence=persistence
        )
        self.apply(ctx, host, action, sudo=False)
        storage = "persistent storage" if persistence else "ephemeral storage"
        past = "upgraded" if done else "installed"
        return f"{monitoring.release} {past} ({storage})"

    def wait_ready(self, ctx: StepContext, host: Host) -> None:
        namespace = shlex.quote(ctx.settings.monitoring.namespace)
        timeout = ctx.settings.retry.kubectl_wait_timeout
        for component in ("prometheus", "grafana"):
            self.wait_for(
                ctx,
                host,
                f"{component} pods",
                ctx.kubectl(
                    f"wait --for=condition=Ready pods -n {namespace} "
                    f"-l app.kubernetes.io/name={component} --timeout={timeout}"
                ),
            )

    def verify(self, ctx: StepContext, host: Host) -> str:
        monitoring = ctx.settings.monitoring
        return self.query(
            ctx,
            host,
            ctx.helm(
                f"status {shlex.quote(monitoring.release)} -n {shlex.quote(monitoring.namespace)}"
            ),
        )
