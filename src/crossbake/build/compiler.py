"""Compiler backends. CargoCompiler splits a cargo workspace build the cargo-chef way:

- dependencies: ``cargo chef prepare`` in the workspace, then ``cargo chef
  cook`` in a scratch skeleton dir into the cache layer's target dir (only
  third-party crates are compiled);
- application: copy the cached target dir and ``cargo build``/``cargo
  zigbuild`` each selected package against it.
"""

from __future__ import annotations

import logging
import shutil
from collections.abc import Sequence
from pathlib import Path
from typing import Protocol

from crossbake.build.host_aware import should_use_zigbuild
from crossbake.errors import CompilationError
from crossbake.helpers import run_cmd
from crossbake.toolchain.model import ToolchainEnvironment
from crossbake.workspace.model import ModuleSpec, WorkspaceDescriptor

log = logging.getLogger(__name__)

DEPENDENCIES = "<dependencies>"
SKELETON_DIR = "skeleton"


class Compiler(Protocol):
    def compile_dependencies(
        self,
        workspace: WorkspaceDescriptor,
        toolchain: ToolchainEnvironment,
        target: str,
        out_dir: Path,
    ) -> None: ...

    def compile_application(
        self,
        workspace: WorkspaceDescriptor,
        modules: Sequence[ModuleSpec],
        toolchain: ToolchainEnvironment,
        target: str,
        deps_dir: Path,
        out_dir: Path,
    ) -> list[Path]: ...


class CargoCompiler:
    """cargo-chef + cargo (or cargo-zigbuild) backend."""

    def __init__(
        self,
        release: bool = True,
        zigbuild: bool | None = None,
        locked: bool = True,
        extra_args: Sequence[str] = (),
    ) -> None:
        self.release = release
        self.zigbuild = zigbuild
        self.locked = locked
        self.extra_args = list(extra_args)

    def _use_zigbuild(self, toolchain: ToolchainEnvironment) -> bool:
        if self.zigbuild is None:
            return should_use_zigbuild(toolchain)
        return self.zigbuild

    def _run(
        self,
        cmd: list[str],
        cwd: Path,
        env: dict[str, str],
        module: str,
    ) -> None:
        log.debug("run (cwd=%s): %s", cwd, " ".join(cmd))
        r = run_cmd(cmd, cwd=cwd, env=env)
        if r.returncode != 0:
            msg = f"{' '.join(cmd[:3])} exited {r.returncode}"
            raise CompilationError(msg, context={"module": module, "path": str(cwd)})

    def compile_dependencies(
        self,
        workspace: WorkspaceDescriptor,
        toolchain: ToolchainEnvironment,
        target: str,
        out_dir: Path,
    ) -> None:
        env = toolchain.as_env()
        env["CARGO_TARGET_DIR"] = str(out_dir / "target")
        recipe = out_dir / "recipe.json"
        self._run(
            ["cargo", "chef", "prepare", "--recipe-path", str(recipe)],
            workspace.root,
            env,
            DEPENDENCIES,
        )
        cmd = ["cargo", "chef", "cook", "--recipe-path", str(recipe), "--target", target]
        if self.release:
            cmd.append("--release")
        if self._use_zigbuild(toolchain):
            cmd.append("--zigbuild")
        print(f"🔨 Compiling {len(workspace.external_dependencies())} dependencies for {target}")
        # cook writes a stub project into its cwd; never the real workspace
        skeleton = out_dir / SKELETON_DIR
        skeleton.mkdir(parents=True, exist_ok=True)
        try:
            self._run(cmd + self.extra_args, skeleton, env, DEPENDENCIES)
        finally:
            shutil.rmtree(skeleton, ignore_errors=True)

    def compile_application(
        self,
        workspace: WorkspaceDescriptor,
        modules: Sequence[ModuleSpec],
        toolchain: ToolchainEnvironment,
        target: str,
        deps_dir: Path,
        out_dir: Path,
    ) -> list[Path]:
        target_dir = out_dir / "target"
        cached = deps_dir / "target"
        if cached.is_dir():
            shutil.copytree(cached, target_dir, symlinks=True, dirs_exist_ok=True)
        env = toolchain.as_env()
        env["CARGO_TARGET_DIR"] = str(target_dir)
        env["CARGO_INCREMENTAL"] = "0"
        subcommand = "zigbuild" if self._use_zigbuild(toolchain) else "build"
        profile = "release" if self.release else "debug"

        binaries: list[Path] = []
        for module in modules:
            cmd = ["cargo", subcommand, "--target", target, "-p", module.name]
            if self.release:
                cmd.append("--release")
            if self.locked:
                cmd.append("--locked")
            print(f"🔨 Compiling {module.name} ({target}, {profile})")
            self._run(cmd + self.extra_args, workspace.root, env, module.name)
            binary = target_dir / target / profile / module.binary_name
            if binary.is_file():
                binaries.append(binary)
            else:
                log.debug("%s produced no binary at %s (library crate?)", module.name, binary)
        return binaries
