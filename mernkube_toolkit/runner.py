"""Utility helpers for running local subprocesses consistently."""

from __future__ import annotations

import json
import os
import shlex
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from . import console


@dataclass(slots=True)
class CommandError(RuntimeError):
    """Raised when a subprocess exits with a non-zero status."""

    command: Sequence[str]
    returncode: int
    stderr: str | None = None

    def __str__(self) -> str:
        message = f"{format_command(self.command)} exited with status {self.returncode}"
        if self.stderr:
            stderr = self.stderr.strip()
            if stderr:
                message = f"{message}\n{stderr}"
        return message


def format_command(command: Sequence[str | os.PathLike[str]]) -> str:
    """Render a subprocess command for display or logging."""

    return " ".join(shlex.quote(os.fspath(part)) for part in command)


def capture_json(
    command: Sequence[str],
    *,
    cwd: os.PathLike[str] | str | None = None,
) -> Any:
    """Run ``command`` and decode its standard output as JSON."""

    console.command(format_command(command))
    result = subprocess.run(
        command,
        check=False,
        text=True,
        capture_output=True,
        cwd=str(cwd) if cwd is not None else None,
    )
    if result.returncode != 0:
        raise CommandError(command, result.returncode, stderr=result.stderr)
    try:
        return json.loads(result.stdout or "null")
    except json.JSONDecodeError as exc:
        raise CommandError(
            command, result.returncode, stderr=f"output is not valid JSON: {exc}"
        ) from exc


__all__ = ["CommandError", "capture_json", "format_command"]
