"""Load a WorkspaceDescriptor from crossbake-workspace.yaml or a cargo workspace Cargo.toml.

YAML form::

    modules:
      - name: core
        source_root: crates/core
        binary: core_node          # optional, defaults to name
        dependencies:
          - libA@1.0
          - {name: libB, version: "^2"}
          - {name: util, workspace: true}

Cargo form: [workspace].members (globs allowed) plus the root [package] if
present. path and workspace-member dependencies become workspace edges;
git dependencies are keyed by url and rev/tag/branch.
"""

from __future__ import annotations

import logging
import tomllib
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml

from crossbake.errors import WorkspaceValidationError
from crossbake.helpers import load_yaml, resolve_under
from crossbake.workspace.model import (
    WORKSPACE_CONSTRAINT,
    DependencySpec,
    ModuleSpec,
    WorkspaceDescriptor,
)

log = logging.getLogger(__name__)

DEP_TABLES = ("dependencies", "build-dependencies")


def _invalid(message: str, path: Path, module: str = "") -> WorkspaceValidationError:
    return WorkspaceValidationError(message, context={"path": str(path), "module": module})


# --- YAML ---


def _parse_yaml_dep(raw: Any, manifest: Path, module: str) -> DependencySpec:
    if isinstance(raw, str):
        name, sep, constraint = raw.partition("@")
        return DependencySpec(name.strip(), constraint.strip() if sep else "*")
    if isinstance(raw, dict) and raw.get("name"):
        if raw.get("workspace"):
            return DependencySpec(str(raw["name"]), WORKSPACE_CONSTRAINT, workspace=True)
        version = raw.get("version", "*")
        # an unquoted 1.10 arrives as the float 1.1
        if isinstance(version, bool) or not isinstance(version, (str, int)):
            msg = f"Version of {raw['name']} must be a string, got {version!r}"
            raise WorkspaceValidationError(
                msg,
                hint='Quote the version in the manifest, e.g. version: "1.10".',
                context={"path": str(manifest), "module": module},
            )
        return DependencySpec(str(raw["name"]), str(version).strip())
    msg = f"Invalid dependency entry {raw!r}"
    raise _invalid(msg, manifest, module)


def load_yaml_workspace(manifest: Path) -> WorkspaceDescriptor:
    try:
        data = load_yaml(manifest)
    except (OSError, ValueError, yaml.YAMLError) as e:
        raise _invalid(f"Cannot read workspace manifest: {e}", manifest) from e
    root = manifest.parent
    raw_modules = data.get("modules")
    if not isinstance(raw_modules, list):
        raise _invalid("Workspace manifest needs a 'modules' list", manifest)
    modules: list[ModuleSpec] = []
    for raw in raw_modules:
        if not isinstance(raw, dict) or not raw.get("name"):
            raise _invalid(f"Module entry without a name: {raw!r}", manifest)
        name = str(raw["name"])
        deps = tuple(_parse_yaml_dep(d, manifest, name) for d in raw.get("dependencies") or [])
        modules.append(
            ModuleSpec(
                name=name,
                source_root=resolve_under(root, raw.get("source_root", name)),
                dependencies=deps,
                binary=raw.get("binary"),
            )
        )
    return WorkspaceDescriptor(root=root, modules=tuple(modules), manifest=manifest)


# --- Cargo ---


def _read_toml(path: Path) -> dict[str, Any]:
    try:
        with path.open("rb") as f:
            return tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        raise _invalid(f"Cannot read {path.name}: {e}", path) from e


def _git_constraint(spec: Mapping[str, Any]) -> str:
    ref = spec.get("rev") or spec.get("tag") or spec.get("branch") or "HEAD"
    return f"git:{spec['git']}#{ref}"


def _cargo_dep(
    name: str,
    spec: Any,
    workspace_deps: Mapping[str, Any],
) -> DependencySpec:
    if isinstance(spec, str):
        return DependencySpec(name, spec.strip())
    if not isinstance(spec, dict):
        return DependencySpec(name, "*")
    dep_name = str(spec.get("package", name))
    if spec.get("workspace"):
        inherited = workspace_deps.get(name, "*")
        return _cargo_dep(name, inherited, {})
    if "path" in spec:
        return DependencySpec(dep_name, WORKSPACE_CONSTRAINT, workspace=True)
    if "git" in spec:
        return DependencySpec(dep_name, _git_constraint(spec))
    return DependencySpec(dep_name, str(spec.get("version", "*")).strip())


def _cargo_module(
    member_dir: Path,
    data: dict[str, Any],
    workspace_deps: Mapping[str, Any],
) -> ModuleSpec:
    manifest = member_dir / "Cargo.toml"
    package = data.get("package")
    if not isinstance(package, dict) or not package.get("name"):
        raise _invalid("Member Cargo.toml has no [package].name", manifest)
    tables: list[Mapping[str, Any]] = [data.get(t) or {} for t in DEP_TABLES]
    for cfg in (data.get("target") or {}).values():
        if isinstance(cfg, dict):
            tables.extend(cfg.get(t) or {} for t in DEP_TABLES)
    deps = tuple(
        _cargo_dep(name, spec, workspace_deps) for table in tables for name, spec in table.items()
    )
    bins = data.get("bin") or []
    binary = bins[0].get("name") if bins and isinstance(bins[0], dict) else None
    return ModuleSpec(
        name=str(package["name"]),
        source_root=member_dir,
        dependencies=deps,
        binary=binary,
    )


def _member_dirs(root: Path, patterns: list[str], exclude: list[str]) -> list[Path]:
    excluded = {(root / e).resolve() for e in exclude}
    out: list[Path] = []
    for pattern in patterns:
        matches = sorted(root.glob(pattern)) if any(c in pattern for c in "*?[") else [root / pattern]
        for d in matches:
            if d.resolve() in excluded or d in out:
                continue
            out.append(d)
    return out


def load_cargo_workspace(manifest: Path) -> WorkspaceDescriptor:
    root = manifest.parent
    data = _read_toml(manifest)
    ws = data.get("workspace") or {}
    workspace_deps = ws.get("dependencies") or {}
    modules: list[ModuleSpec] = []
    if isinstance(data.get("package"), dict):
        modules.append(_cargo_module(root, data, workspace_deps))
    for member in _member_dirs(root, list(ws.get("members") or []), list(ws.get("exclude") or [])):
        member_manifest = member / "Cargo.toml"
        if not member_manifest.is_file():
            raise _invalid("Workspace member has no Cargo.toml", member_manifest, member.name)
        log.debug("workspace member %s", member)
        modules.append(_cargo_module(member, _read_toml(member_manifest), workspace_deps))
    return WorkspaceDescriptor(root=root, modules=tuple(modules), manifest=manifest)


def load_workspace(manifest: Path) -> WorkspaceDescriptor:
    """Dispatch on file name: Cargo.toml -> cargo workspace, anything else -> YAML."""
    if not manifest.is_file():
        raise _invalid(f"Workspace manifest not found: {manifest}", manifest)
    if manifest.name == "Cargo.toml":
        return load_cargo_workspace(manifest)
    return load_yaml_workspace(manifest)
