"""Dependency fingerprint: sha256 over the normalised declared dependency entries.

Only manifests are hashed, never application source, so dependency
compilation can be cached across source edits.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass

from crossbake.workspace.model import WorkspaceDescriptor

FINGERPRINT_VERSION = 1


@dataclass(frozen=True)
class DependencyFingerprint:
    digest: str
    entries: tuple[tuple[str, str, str], ...]

    def __str__(self) -> str:
        return self.digest

    @property
    def short(self) -> str:
        return self.digest[:12]


def fingerprint_manifest(workspace: WorkspaceDescriptor) -> list[tuple[str, str, str]]:
    """(module, dependency, constraint) entries: whitespace stripped, duplicates dropped, sorted."""
    entries = {
        (m.name.strip(), d.name.strip(), "".join(d.constraint.split()))
        for m in workspace.modules
        for d in m.dependencies
    }
    return sorted(entries)


def canonical_bytes(entries: list[tuple[str, str, str]]) -> bytes:
    payload = {"version": FINGERPRINT_VERSION, "entries": [list(e) for e in entries]}
    return json.dumps(payload, sort_keys=True, separators=(",", ":")).encode("utf-8")


def fingerprint(workspace: WorkspaceDescriptor) -> DependencyFingerprint:
    """Empty workspaces hash to a fixed digest."""
    entries = fingerprint_manifest(workspace)
    digest = hashlib.sha256(canonical_bytes(entries)).hexdigest()
    return DependencyFingerprint(digest=digest, entries=tuple(entries))
