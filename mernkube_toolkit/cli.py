"""Entry points for the mernkube CLI."""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Sequence

from . import console
from .errors import MernkubeError, SelectionError
from .inventory import Inventory, build_inventory, load_provisioning_outputs, read_terraform_outputs
from .pipeline import PipelineRunner, Selection, default_registry, print_report
from .remote import DryRunExecutor, SshExecutor
from .settings import Settings, load_settings

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2
EXIT_INTERRUPTED = 130


def _add_source_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--config",
        help="Path to a TOML configuration file (defaults apply when omitted).",
    )
    source = parser.add_mutually_exclusive_group()
    source.add_argument(
        "--outputs",
        help="JSON file produced by `terraform output -json`.",
    )
    source.add_argument(
        "--terraform-dir",
        help="Run `terraform output -json` in this directory to discover hosts.",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mernkube",
        description="Bootstrap the MERN Kubernetes cluster over SSH through the bastion.",
    )
    parser.set_defaults(handler=None)
    subparsers = parser.add_subparsers(dest="command")

    run_parser = subparsers.add_parser(
        "run",
        help="Run the provisioning pipeline (all steps, --from N or --only N).",
    )
    _add_source_arguments(run_parser)
    selection = run_parser.add_mutually_exclusive_group()
    selection.add_argument(
        "--from",
        dest="from_ordinal",
        type=int,
        metavar="N",
        help="Start at step N and run every later step (resume after a failure).",
    )
    selection.add_argument(
        "--only",
        dest="only_ordinal",
        type=int,
        metavar="N",
        help="Run step N alone.",
    )
    run_parser.add_argument(
        "--skip-database",
        action="store_true",
        help="Skip step 8 (MongoDB setup); step 1 still prepares the database host.",
    )
    run_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Print the commands and actions without connecting to any host.",
    )
    run_parser.set_defaults(handler=_handle_run)

    steps_parser = subparsers.add_parser("steps", help="List the registered steps.")
    steps_parser.set_defaults(handler=_handle_steps)

    inventory_parser = subparsers.add_parser(
        "inventory",
        help="Print the resolved inventory as JSON.",
    )
    _add_source_arguments(inventory_parser)
    inventory_parser.set_defaults(handler=_handle_inventory)
    return parser


def _resolve_path(value: str) -> Path:
    path = Path(value).expanduser()
    if not path.is_absolute():
        path = (Path.cwd() / path).resolve()
    return path


def _load(args: argparse.Namespace) -> tuple[Settings, Inventory]:
    settings = load_settings(_resolve_path(args.config) if args.config else None)
    outputs = None
    if args.outputs:
        outputs = load_provisioning_outputs(_resolve_path(args.outputs))
    elif args.terraform_dir:
        outputs = read_terraform_outputs(_resolve_path(args.terraform_dir))
    inventory = build_inventory(settings.ssh, settings.hosts, outputs=outputs)
    return settings, inventory


def _handle_run(args: argparse.Namespace) -> int:
    selection = Selection(
        from_ordinal=args.from_ordinal,
        only_ordinal=args.only_ordinal,
        skip_database=bool(args.skip_database),
    )
    registry = default_registry()
    registry.select(from_ordinal=selection.from_ordinal, only_ordinal=selection.only_ordinal)

    settings, inventory = _load(args)
    if args.dry_run:
        executor: DryRunExecutor | SshExecutor = DryRunExecutor()
    else:
        executor = SshExecutor(
            connect_timeout=settings.ssh.connect_timeout,
            command_timeout=settings.ssh.command_timeout,
        )

    console.header("MERN infrastructure bootstrap" + (" (dry run)" if args.dry_run else ""))
    for line in inventory.describe():
        console.info(line)

    runner = PipelineRunner(registry, inventory, settings, executor)
    report = runner.run(selection)
    print_report(report, inventory, settings, runner.artifacts)

    if report.succeeded:
        return EXIT_OK
    failure = report.failure
    if report.interrupted:
        print(f"error: interrupted during step {report.aborted_at}", file=sys.stderr)
        code = EXIT_INTERRUPTED
    elif failure is not None:
        print(
            f"error: step {failure.ordinal} failed on {failure.host or 'all hosts'}",
            file=sys.stderr,
        )
        code = EXIT_FAILED
    else:
        print(f"error: run aborted at step {report.aborted_at}", file=sys.stderr)
        code = EXIT_FAILED
    resume = report.resume_command()
    if resume:
        print(f"resume with: {resume}", file=sys.stderr)
    return code


def _handle_steps(args: argparse.Namespace) -> int:
    for step in default_registry():
        print(f"{step.ordinal}. {step.name:<18} {step.description}")
    return EXIT_OK


def _handle_inventory(args: argparse.Namespace) -> int:
    _, inventory = _load(args)
    print(json.dumps(inventory.as_dict(), indent=2))
    return EXIT_OK


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    handler = getattr(args, "handler", None)
    if handler is None:
        parser.print_help()
        return EXIT_USAGE

    try:
        return handler(args)
    except SelectionError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return EXIT_USAGE
    except MernkubeError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return EXIT_FAILED
    except KeyboardInterrupt:
        print("error: interrupted", file=sys.stderr)
        return EXIT_INTERRUPTED


__all__ = ["build_parser", "main"]
