"""Step 7: Argo CD."""

from __future__ import annotations

import base64
import binascii
import shlex

from ... import actions, console
from ...errors import ReadinessTimeoutError
from ...inventory import Host, Role
from ..artifacts import ARGOCD_CREDENTIALS
from ..model import ProvisioningStep, StepContext

SECONDARY_DEPLOYMENTS = ("argocd-repo-server", "argocd-applicationset-controller")


class DeployArgoCD(ProvisioningStep):
    ordinal = 7
    name = "deploy-argocd"
    description = "Deploy Argo CD"
    roles = (Role.CONTROL_PLANE,)
    primary_only = True
    # An existing install skips the manifest but readiness is still awaited.
    skip_when_done = False

    def _namespace(self, ctx: StepContext) -> str:
        return shlex.quote(ctx.settings.argocd.namespace)

    def probe(self, ctx: StepContext, host: Host) -> bool:
        command = ctx.kubectl(f"-n {self._namespace(ctx)} get deployment argocd-server")
        return self.check(ctx, host, command).ok

    def mutate(self, ctx: StepContext, host: Host, *, done: bool) -> str:
        if done:
            console.info(f"{host.label}: argocd-server already deployed, skipping install")
            return "already installed"
        self.apply(ctx, host, actions.install_argocd(ctx.settings), sudo=False)
        return f"Argo CD {ctx.settings.argocd.version} installed"

    def _rollout(self, ctx: StepContext, host: Host, deployment: str) -> None:
        timeout = ctx.settings.retry.kubectl_wait_timeout
        self.wait_for(
            ctx,
            host,
            f"{deployment} rollout",
            ctx.kubectl(
                f"-n {self._namespace(ctx)} rollout status deployment/{deployment} "
                f"--timeout={timeout}"
            ),
        )

    def wait_ready(self, ctx: StepContext, host: Host) -> None:
        self._rollout(ctx, host, "argocd-server")
        for deployment in SECONDARY_DEPLOYMENTS:
            try:
                self._rollout(ctx, host, deployment)
            except ReadinessTimeoutError as exc:
                if not ctx.settings.pipeline.tolerate_slow_rollout:
                    raise
                console.warning(f"{exc}; continuing because tolerate_slow_rollout is set")

    def _initial_password(self, ctx: StepContext, host: Host) -> str | None:
        command = ctx.kubectl(
            f"-n {self._namespace(ctx)} get secret argocd-initial-admin-secret "
            "-o jsonpath='{.data.password}'"
        )
        result = self.check(ctx, host, command)
        if not result.ok or not result.stdout.strip():
            return None
        try:
            return base64.b64decode(result.stdout.strip(), validate=True).decode()
        except (binascii.Error, UnicodeDecodeError):
            return None

    def verify(self, ctx: StepContext, host: Host) -> str:
        status = self.query(
            ctx, host, ctx.kubectl(f"-n {self._namespace(ctx)} get deployment argocd-server")
        )
        url = f"https://{host.address}:{ctx.settings.argocd.nodeport}"
        password = self._initial_password(ctx, host)
        if password is None:
            if not ctx.dry_run:
                console.warning(
                    "argocd-initial-admin-secret not found; it is removed after the "
                    "admin password is changed"
                )
            return f"{status}\nArgo CD available at {url}"
        path = ctx.artifacts.write(
            ARGOCD_CREDENTIALS,
            f"URL: {url}\nUsername: admin\nPassword: {password}\n",
        )
        return f"{status}\nArgo CD available at {url}; credentials written to {path}"
