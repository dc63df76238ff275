#!/usr/bin/env python3
"""Run every provisioning step, like the old run-all.sh.

Accepts the same flags as ``mernkube run``.
"""

from __future__ import annotations

import sys
from typing import Sequence

from mernkube_toolkit import cli

__all__ = ["main"]


def main(argv: Sequence[str] | None = None) -> int:
    args = list(argv) if argv is not None else sys.argv[1:]
    return cli.main(["run", *args])


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    sys.exit(main())
