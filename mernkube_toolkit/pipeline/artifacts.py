"""Local flat-file state written by the pipeline (join command, credentials)."""

from __future__ import annotations

import os
from pathlib import Path

from .. import console
from ..errors import ArtifactError

JOIN_COMMAND = "join-command"
ARGOCD_CREDENTIALS = "argocd-credentials.txt"


class ArtifactStore:
    """A private directory of small files that later steps and reruns may reuse.

    The directory is created ``0700`` and every file ``0600`` because the
    contents are bearer secrets. Files are overwritten on every write.
    """

    def __init__(self, root: Path, *, dry_run: bool = False):
        self.root = Path(root).expanduser()
        self.dry_run = dry_run

    def path(self, name: str) -> Path:
        if not name or "/" in name or name in {".", ".."}:
            raise ValueError(f"Invalid artifact name: {name!r}")
        return self.root / name

    def _ensure_root(self) -> None:
        self.root.mkdir(mode=0o700, parents=True, exist_ok=True)
        os.chmod(self.root, 0o700)

    def write(self, name: str, content: str) -> Path:
        target = self.path(name)
        if self.dry_run:
            console.info(f"[DRY RUN] would write {target}")
            return target
        try:
            self._ensure_root()
            fd = os.open(target, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(content)
            # O_CREAT's mode is ignored when the file already existed.
            os.chmod(target, 0o600)
        except OSError as exc:
            raise ArtifactError(f"Cannot write {target}: {exc.strerror or exc}") from exc
        return target

    def read(self, name: str) -> str | None:
        target = self.path(name)
        if not target.is_file():
            return None
        try:
            return target.read_text(encoding="utf-8")
        except OSError as exc:
            raise ArtifactError(f"Cannot read {target}: {exc.strerror or exc}") from exc


__all__ = ["ARGOCD_CREDENTIALS", "ArtifactStore", "JOIN_COMMAND"]
