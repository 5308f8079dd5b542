"""Workspace well-formedness checks run by the prepare stage."""

from __future__ import annotations

from collections import Counter
from collections.abc import Sequence

from crossbake.errors import WorkspaceValidationError
from crossbake.workspace.model import WorkspaceDescriptor


def find_problems(
    workspace: WorkspaceDescriptor,
    selected: Sequence[str] | None = None,
) -> list[tuple[str, str]]:
    """Return (module, problem) pairs; empty list means the workspace is well formed."""
    problems: list[tuple[str, str]] = []
    counts = Counter(workspace.names())
    for name, n in sorted(counts.items()):
        if n > 1:
            problems.append((name, f"duplicate module name '{name}' ({n} definitions)"))
    members = set(counts)
    for m in workspace.modules:
        if not m.name.strip():
            problems.append((m.name, "module with empty name"))
        if not m.source_root.is_dir():
            problems.append((m.name, f"source root not found: {m.source_root}"))
        for d in m.dependencies:
            if not d.name:
                problems.append((m.name, "dependency with empty name"))
            elif d.workspace and d.name not in members:
                problems.append((m.name, f"workspace dependency '{d.name}' is not a module"))
    for name in selected or ():
        if name not in members:
            problems.append((name, f"selected module '{name}' is not in the workspace"))
    return problems


def validate_workspace(
    workspace: WorkspaceDescriptor,
    selected: Sequence[str] | None = None,
) -> None:
    """Raise WorkspaceValidationError listing every problem, naming the first offending module."""
    problems = find_problems(workspace, selected)
    if not problems:
        return
    first_module = problems[0][0]
    detail = "; ".join(p for _, p in problems)
    msg = f"Invalid workspace: {detail}"
    raise WorkspaceValidationError(
        msg,
        context={
            "module": first_module,
            "path": str(workspace.manifest or workspace.root),
        },
    )
