"""WorkspaceDescriptor: modules with name, dependency list, source root. Immutable."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

WORKSPACE_CONSTRAINT = "workspace"


@dataclass(frozen=True)
class DependencySpec:
    """A declared dependency: name + version constraint.

    workspace=True marks an edge to another module of the same workspace.
    """

    name: str
    constraint: str = "*"
    workspace: bool = False

    def __str__(self) -> str:
        return f"{self.name}@{self.constraint}"


@dataclass(frozen=True)
class ModuleSpec:
    name: str
    source_root: Path
    dependencies: tuple[DependencySpec, ...] = ()
    binary: str | None = None

    @property
    def binary_name(self) -> str:
        return self.binary or self.name


@dataclass(frozen=True)
class WorkspaceDescriptor:
    """Modules of one build, loaded once from the on-disk manifests."""

    root: Path
    modules: tuple[ModuleSpec, ...]
    manifest: Path | None = None

    def names(self) -> list[str]:
        return [m.name for m in self.modules]

    def get(self, name: str) -> ModuleSpec | None:
        for m in self.modules:
            if m.name == name:
                return m
        return None

    def select(self, names: list[str] | tuple[str, ...] | None) -> tuple[ModuleSpec, ...]:
        """Modules to build, in workspace order. Empty or None selects all."""
        if not names:
            return self.modules
        wanted = set(names)
        return tuple(m for m in self.modules if m.name in wanted)

    def external_dependencies(self) -> list[DependencySpec]:
        """Unique non-workspace dependencies across all modules, sorted by (name, constraint)."""
        seen = {
            (d.name, d.constraint.strip())
            for m in self.modules
            for d in m.dependencies
            if not d.workspace
        }
        return [DependencySpec(n, c) for n, c in sorted(seen)]

    def to_dict(self) -> dict[str, Any]:
        return {
            "root": str(self.root),
            "manifest": str(self.manifest) if self.manifest else None,
            "modules": [
                {
                    "name": m.name,
                    "source_root": str(m.source_root),
                    "binary": m.binary_name,
                    "dependencies": [
                        {"name": d.name, "constraint": d.constraint, "workspace": d.workspace}
                        for d in m.dependencies
                    ],
                }
                for m in self.modules
            ],
        }
