"""Console output helpers shared by the CLI, the executor and the steps.

Everything goes to stderr so ``mernkube inventory`` and similar commands can
keep stdout machine-readable.
"""

from __future__ import annotations

import sys
from collections.abc import Iterable

RULE = "=" * 78
THIN_RULE = "-" * 78
REDACTED = "********"


def _emit(tag: str, message: str) -> None:
    print(f"{tag} {message}", file=sys.stderr, flush=True)


def info(message: str) -> None:
    _emit("[INFO]", message)


def success(message: str) -> None:
    _emit("[OK]", message)


def warning(message: str) -> None:
    _emit("[WARN]", message)


def error(message: str) -> None:
    _emit("[ERROR]", message)


def command(printable: str) -> None:
    _emit("$", printable)


def header(title: str) -> None:
    print(f"\n{RULE}\n{title}\n{RULE}", file=sys.stderr, flush=True)


def progress(current: int, total: int, description: str) -> None:
    print(f"\n[{current}/{total}] {description}\n{THIN_RULE}", file=sys.stderr, flush=True)


def redact(text: str, secrets: Iterable[str]) -> str:
    """Replace every non-empty secret value in ``text``."""

    for secret in secrets:
        if secret:
            text = text.replace(secret, REDACTED)
    return text
