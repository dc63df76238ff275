"""Steps 2-4: control plane, worker join and pod network."""

from __future__ import annotations

from ... import actions, console
from ...errors import StepMutationError
from ...inventory import Host, Role
from ..artifacts import JOIN_COMMAND
from ..model import ProvisioningStep, StepContext

ADMIN_CONF = "/etc/kubernetes/admin.conf"
KUBELET_CONF = "/etc/kubernetes/kubelet.conf"
TOKEN_COMMAND = "kubeadm token create --print-join-command"
INTERNAL_IPS = (
    "get nodes -o jsonpath="
    "'{.items[*].status.addresses[?(@.type==\"InternalIP\")].address}'"
)
CALICO_READY = (
    "-n kube-system get pods -l k8s-app=calico-node "
    "-o jsonpath='{.items[*].status.containerStatuses[*].ready}'"
)


def all_ready(flags: str) -> bool:
    """True when a jsonpath list of readiness flags is non-empty and all ``true``."""

    values = flags.split()
    return bool(values) and all(value == "true" for value in values)


def fetch_join_command(step: ProvisioningStep, ctx: StepContext, control_plane: Host) -> str:
    """Mint a join command on the control plane and keep it as a local artifact."""

    if ctx.dry_run:
        ctx.executor.execute(control_plane, TOKEN_COMMAND, sudo=True)
        command = f"kubeadm join {control_plane.address}:6443 --token <dry-run>"
    else:
        command = step.query(ctx, control_plane, TOKEN_COMMAND, sudo=True)
    if not command.startswith("kubeadm join"):
        raise StepMutationError(
            f"Unexpected join command output from {control_plane.label}",
            ordinal=step.ordinal,
            host=control_plane.label,
            command=TOKEN_COMMAND,
        )
    path = ctx.artifacts.write(JOIN_COMMAND, command + "\n")
    ctx.cache[JOIN_COMMAND] = command
    console.info(f"Join command saved to {path}")
    return command


class InitCluster(ProvisioningStep):
    ordinal = 2
    name = "init-cluster"
    description = "Initialise the Kubernetes control plane"
    roles = (Role.CONTROL_PLANE,)
    primary_only = True
    done_detail = "control plane already initialised"

    def probe(self, ctx: StepContext, host: Host) -> bool:
        return self.check(ctx, host, f"test -f {ADMIN_CONF}", sudo=True).ok

    def mutate(self, ctx: StepContext, host: Host, *, done: bool) -> str:
        self.apply(ctx, host, actions.kubeadm_init(ctx.settings, host.address))
        return "kubeadm init completed"

    def wait_ready(self, ctx: StepContext, host: Host) -> None:
        self.wait_for(ctx, host, "the API server", ctx.kubectl("get --raw=/readyz"))

    def verify(self, ctx: StepContext, host: Host) -> str:
        fetch_join_command(self, ctx, host)
        nodes = self.query(ctx, host, ctx.kubectl("get nodes -o wide"))
        return f"{nodes}\njoin command written to {ctx.artifacts.path(JOIN_COMMAND)}"


class JoinWorkers(ProvisioningStep):
    ordinal = 3
    name = "join-workers"
    description = "Join worker nodes to the cluster"
    roles = (Role.WORKER,)
    done_detail = "node already joined"
    no_targets_detail = "no worker hosts in inventory"

    def probe(self, ctx: StepContext, host: Host) -> bool:
        return self.check(ctx, host, f"test -f {KUBELET_CONF}", sudo=True).ok

    def _join_command(self, ctx: StepContext) -> str:
        cached = ctx.cache.get(JOIN_COMMAND)
        if cached:
            return cached
        saved = ctx.artifacts.read(JOIN_COMMAND)
        if saved and saved.strip():
            ctx.cache[JOIN_COMMAND] = saved.strip()
            return saved.strip()
        console.info("No saved join command; generating one on the control plane")
        return fetch_join_command(self, ctx, ctx.inventory.control_plane)

    def mutate(self, ctx: StepContext, host: Host, *, done: bool) -> str:
        self.apply(ctx, host, actions.join_worker(self._join_command(ctx)))
        return "kubeadm join completed"

    def wait_ready(self, ctx: StepContext, host: Host) -> None:
        self.wait_for(
            ctx,
            ctx.inventory.control_plane,
            f"node {host.address} to register",
            ctx.kubectl(INTERNAL_IPS),
            predicate=lambda result: result.ok and host.address in result.stdout.split(),
        )

    def verify(self, ctx: StepContext, host: Host) -> str:
        return self.query(ctx, host, "systemctl is-active kubelet")


class InstallNetwork(ProvisioningStep):
    ordinal = 4
    name = "install-cni"
    description = "Install the Calico pod network"
    roles = (Role.CONTROL_PLANE,)
    primary_only = True
    done_detail = "calico-node pods already Ready"

    def probe(self, ctx: StepContext, host: Host) -> bool:
        result = self.check(ctx, host, ctx.kubectl(CALICO_READY))
        return result.ok and all_ready(result.stdout)

    def mutate(self, ctx: StepContext, host: Host, *, done: bool) -> str:
        kubernetes = ctx.settings.kubernetes
        self.apply(
            ctx, host, actions.apply_calico(kubernetes, ctx.settings.kubeconfig_path()), sudo=False
        )
        return f"Calico {kubernetes.calico_version} applied"

    def wait_ready(self, ctx: StepContext, host: Host) -> None:
        timeout = ctx.settings.retry.kubectl_wait_timeout
        for description, selector in (
            ("calico-node pods", "pods -n kube-system -l k8s-app=calico-node"),
            ("CoreDNS pods", "pods -n kube-system -l k8s-app=kube-dns"),
            ("all nodes Ready", "nodes --all"),
        ):
            self.wait_for(
                ctx,
                host,
                description,
                ctx.kubectl(f"wait --for=condition=Ready {selector} --timeout={timeout}"),
            )

    def verify(self, ctx: StepContext, host: Host) -> str:
        return self.query(ctx, host, ctx.kubectl("get nodes -o wide"))
