"""Artifact store: named references to the files stages produce.

The store never holds file contents.  It records where each byproduct
(plan file, destroy-plan file, scan report, outputs JSON) lives so that
later stages can find it and finalization can archive and fingerprint it.
"""

from __future__ import annotations

import logging
import shutil
from dataclasses import replace
from pathlib import Path

from src.deploy_orchestrator.exceptions import MissingArtifact
from src.deploy_shared.constants import FINGERPRINTS_FILE
from src.deploy_shared.models import ArtifactRef
from src.deploy_shared.utils import atomic_write_json, ensure_dir, file_fingerprint

logger = logging.getLogger(__name__)


class ArtifactStore:
    """Insertion-ordered registry of :class:`ArtifactRef` objects."""

    def __init__(self, fingerprint: bool = True) -> None:
        self._refs: dict[str, ArtifactRef] = {}
        self._fingerprint = fingerprint

    def put(self, name: str, path: Path | str, allow_empty: bool = False, stage: str = "") -> ArtifactRef:
        """Record an artifact.  Re-putting a name replaces the earlier reference."""
        path = Path(path)
        ref = ArtifactRef(
            name=name,
            path=str(path),
            fingerprint=file_fingerprint(path) if self._fingerprint else None,
            allow_empty=allow_empty,
            stage=stage,
        )
        self._refs.pop(name, None)
        self._refs[name] = ref
        logger.debug("Recorded artifact %s -> %s", name, path)
        return ref

    def get(self, name: str) -> ArtifactRef | None:
        return self._refs.get(name)

    def list(self) -> list[ArtifactRef]:
        return list(self._refs.values())

    def __len__(self) -> int:
        return len(self._refs)

    def __contains__(self, name: object) -> bool:
        return name in self._refs

    def refresh_fingerprints(self) -> None:
        """Recompute fingerprints (files may change after they were recorded)."""
        if not self._fingerprint:
            return
        for name, ref in list(self._refs.items()):
            self._refs[name] = replace(ref, fingerprint=file_fingerprint(ref.path))

    def archive(self, dest_dir: Path | str) -> list[ArtifactRef]:
        """Copy every recorded artifact into *dest_dir*.

        File names are preserved exactly.  A ``fingerprints.json`` index
        (name -> sha256) is written alongside the copies.

        Missing or empty artifacts are skipped silently when their
        ``allow_empty`` flag is set.  Otherwise every other artifact is
        still archived, then :class:`MissingArtifact` is raised for the
        first offender.

        Returns:
            The artifacts that were copied.
        """
        dest_dir = ensure_dir(dest_dir)
        self.refresh_fingerprints()

        archived: list[ArtifactRef] = []
        missing: list[ArtifactRef] = []
        for ref in self._refs.values():
            src = Path(ref.path)
            if not src.is_file() or src.stat().st_size == 0:
                if ref.allow_empty:
                    logger.info("Artifact %s absent or empty -- skipped (allow_empty)", ref.name)
                else:
                    missing.append(ref)
                continue
            shutil.copy2(src, dest_dir / src.name)
            archived.append(ref)

        if self._fingerprint and archived:
            atomic_write_json(
                dest_dir / FINGERPRINTS_FILE,
                {ref.name: ref.fingerprint for ref in archived},
            )
        logger.info("Archived %d artifact(s) to %s", len(archived), dest_dir)

        if missing:
            first = missing[0]
            raise MissingArtifact(first.name, first.path)
        return archived
