"""Pytest fixtures for crossbake tests."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Any

import pytest
import yaml

from crossbake.config import BuildConfig, build_config
from crossbake.errors import CompilationError
from crossbake.toolchain.model import ToolchainComponent, ToolchainEnvironment
from crossbake.workspace.model import ModuleSpec, WorkspaceDescriptor

TARGET = "x86_64-unknown-linux-musl"


def write_workspace(root: Path, modules: list[dict[str, Any]]) -> Path:
    """Write crossbake-workspace.yaml plus a source dir per module. Returns the manifest path."""
    for m in modules:
        src = root / m.get("source_root", m["name"])
        src.mkdir(parents=True, exist_ok=True)
        (src / "main.rs").write_text(f"// {m['name']}\nfn main() {{}}\n")
    manifest = root / "crossbake-workspace.yaml"
    manifest.write_text(yaml.safe_dump({"modules": modules}, sort_keys=False))
    return manifest


class FakeCompiler:
    """In-process compiler: records calls, writes marker files instead of invoking cargo."""

    def __init__(self, fail_module: str | None = None, fail_dependencies: bool = False) -> None:
        self.fail_module = fail_module
        self.fail_dependencies = fail_dependencies
        self.dependency_builds: list[list[str]] = []
        self.application_builds: list[list[str]] = []

    def compile_dependencies(
        self,
        workspace: WorkspaceDescriptor,
        toolchain: ToolchainEnvironment,
        target: str,
        out_dir: Path,
    ) -> None:
        deps = [str(d) for d in workspace.external_dependencies()]
        self.dependency_builds.append(deps)
        (out_dir / "target").mkdir()
        for d in deps:
            (out_dir / "target" / f"lib{d.replace('@', '-')}.rlib").write_text(d)
            if self.fail_dependencies:
                # partial output is already on disk when the failure happens
                raise CompilationError("dependency build failed", context={"module": "<dependencies>"})

    def compile_application(
        self,
        workspace: WorkspaceDescriptor,
        modules: Sequence[ModuleSpec],
        toolchain: ToolchainEnvironment,
        target: str,
        deps_dir: Path,
        out_dir: Path,
    ) -> list[Path]:
        self.application_builds.append([m.name for m in modules])
        binaries = []
        for m in modules:
            if m.name == self.fail_module:
                raise CompilationError("compile failed", context={"module": m.name})
            binary = out_dir / "bin" / m.binary_name
            binary.parent.mkdir(parents=True, exist_ok=True)
            binary.write_text(f"#!/bin/sh\necho {m.name}\n")
            binary.chmod(0o755)
            binaries.append(binary)
        return binaries


def make_toolchain(root: Path, target: str = TARGET) -> ToolchainEnvironment:
    """Two executable stand-ins for compiler and protocol-compiler."""
    components = {}
    for name, version in (("compiler", "1.80.0"), ("protocol-compiler", "25.1")):
        path = root / "toolchains" / name / version
        binary = path / "bin" / name
        binary.parent.mkdir(parents=True)
        binary.write_text(f"#!/bin/sh\necho {name} {version}\n")
        binary.chmod(0o755)
        components[name] = ToolchainComponent(name=name, version=version, path=path, binary=binary)
    return ToolchainEnvironment(target, components)


@pytest.fixture
def fake_compiler() -> FakeCompiler:
    return FakeCompiler()


@pytest.fixture
def fake_provision(tmp_path: Path) -> Callable[..., ToolchainEnvironment]:
    toolchain = make_toolchain(tmp_path)

    def provision_fn(specs: Sequence[Any], target: str, install_root: Path) -> ToolchainEnvironment:
        return ToolchainEnvironment(target, dict(toolchain))

    return provision_fn


@pytest.fixture
def project(tmp_path: Path) -> Path:
    """Project root with a core(libA@1.0) workspace and crossbake.yaml pointing at it."""
    root = tmp_path / "project"
    root.mkdir()
    write_workspace(root, [{"name": "core", "dependencies": ["libA@1.0"]}])
    (root / "crossbake.yaml").write_text(
        yaml.safe_dump(
            {
                "workspace_manifest": "crossbake-workspace.yaml",
                "target": TARGET,
                "toolchain": [],
            }
        )
    )
    return root


@pytest.fixture
def config(project: Path) -> BuildConfig:
    return build_config(
        project,
        {"workspace_manifest": "crossbake-workspace.yaml", "target": TARGET, "toolchain": []},
    )
