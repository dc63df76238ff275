"""Step 8: MongoDB with two-phase authentication and the Prometheus exporter.

Users can only be created while authorization is off, so the order on the
host is fixed: install with ``authorization: disabled``, create the users,
switch ``authorization: enabled`` and restart, then install the exporter
that logs in as the exporter user. A host that already has the admin user
skips creation but still gets authorization re-enabled.
"""

from __future__ import annotations

import json

from ... import actions, console
from ...actions import MONGOD_CONF
from ...inventory import Host, Role
from ..model import ExecutionResult, Outcome, ProvisioningStep, StepContext


class SetupDatabase(ProvisioningStep):
    ordinal = 8
    name = "setup-mongodb"
    description = "Install and secure MongoDB"
    roles = (Role.DATABASE,)
    done_detail = "MongoDB already secured and exporter running"
    no_targets_detail = "no database host in inventory"
    database_setup = True

    def _mongosh(self, ctx: StepContext, script: str, *, database: str = "") -> str:
        port = ctx.settings.mongodb.port
        target = f" {database}" if database else ""
        return f"mongosh --quiet --port {port}{target} --eval {json.dumps(script)}"

    def probe(self, ctx: StepContext, host: Host) -> bool:
        command = (
            f"grep -Eq '^\\s*authorization:\\s*enabled' {MONGOD_CONF}"
            " && systemctl is-active --quiet mongod"
            " && systemctl is-active --quiet mongodb_exporter"
        )
        return self.check(ctx, host, command).ok

    def _admin_exists(self, ctx: StepContext, host: Host) -> bool:
        user = ctx.settings.mongodb.admin_user
        command = self._mongosh(ctx, f"db.getUser({json.dumps(user)}) !== null", database="admin")
        result = self.check(ctx, host, command)
        return result.ok and result.stdout.strip() == "true"

    def _wait_for_mongod(self, ctx: StepContext, host: Host) -> None:
        if ctx.dry_run:
            return
        self.wait_for(
            ctx,
            host,
            "mongod to accept connections",
            self._mongosh(ctx, "db.adminCommand({ ping: 1 }).ok"),
            policy=ctx.settings.retry.mongodb_start(),
            predicate=lambda result: result.ok and result.stdout.strip() == "1",
        )

    def run(self, ctx: StepContext, host: Host) -> ExecutionResult:
        mongodb = ctx.settings.mongodb
        mongodb.require_secrets()
        if not ctx.dry_run and self.probe(ctx, host):
            console.info(f"{host.label}: {self.done_detail}, skipping")
            return self.result(host, Outcome.SKIPPED, self.done_detail)

        self.apply(ctx, host, actions.install_mongodb(mongodb))
        self._wait_for_mongod(ctx, host)

        if not ctx.dry_run and self._admin_exists(ctx, host):
            console.info(f"{host.label}: admin user exists, skipping user creation")
            users = "existing users kept"
        else:
            self.apply(ctx, host, actions.create_mongodb_users(mongodb), sudo=False)
            users = "users created"

        self.apply(ctx, host, actions.enable_mongodb_auth())
        self._wait_for_mongod(ctx, host)

        self.apply(ctx, host, actions.install_mongodb_exporter(mongodb))
        if not ctx.dry_run:
            self.wait_for(
                ctx,
                host,
                "mongodb_exporter",
                "systemctl is-active --quiet mongodb_exporter",
                policy=ctx.settings.retry.mongodb_start(),
            )

        output = self.query(ctx, host, "systemctl status mongod --no-pager --lines=0")
        return self.result(
            host,
            Outcome.SUCCESS,
            f"MongoDB {mongodb.version} secured, {users}, exporter on :{mongodb.exporter_port}",
            output,
        )
