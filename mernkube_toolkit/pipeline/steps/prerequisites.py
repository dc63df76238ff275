"""Step 1: container runtime, Kubernetes packages and database host basics."""

from __future__ import annotations

from ... import actions
from ...inventory import Host, Role
from ..model import ProvisioningStep, StepContext

NODE_BINARIES = ("docker", "containerd", "kubeadm", "kubelet", "kubectl")
DATABASE_BINARIES = ("curl", "gpg", "pip3")


def binaries_present(names: tuple[str, ...]) -> str:
    return " && ".join(f"command -v {name} >/dev/null" for name in names)


class InstallPrerequisites(ProvisioningStep):
    ordinal = 1
    name = "prerequisites"
    description = "Install container runtime and Kubernetes packages"
    roles = (Role.CONTROL_PLANE, Role.WORKER, Role.DATABASE)
    done_detail = "packages already installed"

    def probe(self, ctx: StepContext, host: Host) -> bool:
        if host.role is Role.DATABASE:
            command = binaries_present(DATABASE_BINARIES) + " && python3 -c 'import pymongo'"
        else:
            command = binaries_present(NODE_BINARIES)
        return self.check(ctx, host, command).ok

    def mutate(self, ctx: StepContext, host: Host, *, done: bool) -> str:
        if host.role is Role.DATABASE:
            self.apply(ctx, host, actions.install_database_packages())
            return "database packages installed"
        self.apply(ctx, host, actions.install_node_packages(ctx.settings.kubernetes, host.user))
        return f"Kubernetes {ctx.settings.kubernetes.version} packages installed"

    def wait_ready(self, ctx: StepContext, host: Host) -> None:
        if host.role is Role.DATABASE:
            return
        self.wait_for(ctx, host, "containerd", "systemctl is-active --quiet containerd")

    def verify(self, ctx: StepContext, host: Host) -> str:
        if host.role is Role.DATABASE:
            return self.query(ctx, host, "python3 -c 'import pymongo; print(pymongo.version)'")
        return self.query(ctx, host, "kubeadm version -o short")
