"""The four build stages: prepare -> cache-dependencies -> build-application -> package.

Each stage reads what its predecessors left on the PipelineContext, writes
into its own output directory under ``<work_dir>/<target>/<stage>/`` and
declares a completion predicate the pipeline checks after it runs.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path

from crossbake.build.compiler import Compiler
from crossbake.cache import CacheLayer, CacheStore
from crossbake.config import BuildConfig
from crossbake.docker.package import RuntimeArtifactBundle, package_artifacts
from crossbake.errors import (
    CacheError,
    CompilationError,
    CrossbakeError,
    PackagingError,
    WorkspaceValidationError,
)
from crossbake.fingerprint import DependencyFingerprint, fingerprint
from crossbake.toolchain.model import ToolchainEnvironment
from crossbake.workspace import ModuleSpec, WorkspaceDescriptor, load_workspace, validate_workspace

log = logging.getLogger(__name__)

REUSED = "reused"
REBUILT = "rebuilt"


@dataclass
class PipelineContext:
    """Inputs of one build plus the outputs stages hand to each other."""

    config: BuildConfig
    toolchain: ToolchainEnvironment
    compiler: Compiler
    cache: CacheStore
    target: str
    workspace: WorkspaceDescriptor | None = None
    modules: tuple[ModuleSpec, ...] = ()
    fingerprint: DependencyFingerprint | None = None
    layer: CacheLayer | None = None
    cache_outcome: str | None = None
    binaries: list[Path] = field(default_factory=list)
    bundle: RuntimeArtifactBundle | None = None

    @property
    def run_dir(self) -> Path:
        return self.config.work_dir / self.target


class BuildStage:
    """Base stage. Subclasses set name/error_type and implement run and is_complete."""

    name = ""
    # OSError raised inside the stage is reported as this kind
    error_type: type[CrossbakeError] = CrossbakeError

    def output_dir(self, ctx: PipelineContext) -> Path:
        return ctx.run_dir / self.name

    def run(self, ctx: PipelineContext) -> None:
        raise NotImplementedError

    def is_complete(self, ctx: PipelineContext) -> bool:
        raise NotImplementedError

    def missing_input(self, ctx: PipelineContext, *fields: str) -> CrossbakeError:
        msg = f"Stage '{self.name}' needs {', '.join(fields)} from an earlier stage"
        return self.error_type(msg, context={"path": str(self.output_dir(ctx))})


class PrepareStage(BuildStage):
    name = "prepare"
    error_type = WorkspaceValidationError

    def run(self, ctx: PipelineContext) -> None:
        ws = ctx.workspace or load_workspace(ctx.config.workspace_manifest)
        validate_workspace(ws, ctx.config.modules)
        ctx.workspace = ws
        ctx.modules = ws.select(ctx.config.modules)
        ctx.fingerprint = fingerprint(ws)
        out = self.output_dir(ctx)
        out.mkdir(parents=True, exist_ok=True)
        payload = {
            "target": ctx.target,
            "fingerprint": ctx.fingerprint.digest,
            "entries": [list(e) for e in ctx.fingerprint.entries],
            "selected": [m.name for m in ctx.modules],
            "workspace": ws.to_dict(),
        }
        (out / "workspace.json").write_text(json.dumps(payload, indent=2, sort_keys=True) + "\n")
        print(
            f"Info: {len(ws.modules)} module(s), {len(ws.external_dependencies())} dependencies, "
            f"fingerprint {ctx.fingerprint.short}"
        )

    def is_complete(self, ctx: PipelineContext) -> bool:
        return ctx.fingerprint is not None and (self.output_dir(ctx) / "workspace.json").is_file()


class CacheDependenciesStage(BuildStage):
    name = "cache-dependencies"
    error_type = CacheError

    def run(self, ctx: PipelineContext) -> None:
        workspace, dep_fp = ctx.workspace, ctx.fingerprint
        if workspace is None or dep_fp is None:
            raise self.missing_input(ctx, "workspace", "fingerprint")
        fp = dep_fp.digest
        toolchain_digest = ctx.toolchain.digest()
        layer = ctx.cache.get(fp, ctx.target)
        created = False
        if layer is None:
            log.debug("cache miss %s/%s", ctx.target, fp)

            def populate(artifacts: Path) -> None:
                ctx.compiler.compile_dependencies(workspace, ctx.toolchain, ctx.target, artifacts)

            layer, created = ctx.cache.put(
                fp,
                ctx.target,
                populate,
                metadata={
                    "toolchain": toolchain_digest,
                    "dependencies": [str(d) for d in workspace.external_dependencies()],
                },
            )
        recorded = layer.manifest.get("toolchain")
        if not created and recorded and recorded != toolchain_digest:
            log.warning(
                "cache layer %s was built with toolchain %s, current is %s",
                layer.path,
                str(recorded)[:12],
                toolchain_digest[:12],
            )
        ctx.layer = layer
        ctx.cache_outcome = REBUILT if created else REUSED
        if created:
            print(f"✅ Dependencies rebuilt and cached: {ctx.target}/{dep_fp.short}")
        else:
            print(f"✅ Dependencies reused from cache: {ctx.target}/{dep_fp.short}")

    def is_complete(self, ctx: PipelineContext) -> bool:
        return ctx.layer is not None and ctx.layer.artifacts.is_dir()


class BuildApplicationStage(BuildStage):
    name = "build-application"
    error_type = CompilationError

    def run(self, ctx: PipelineContext) -> None:
        workspace, layer = ctx.workspace, ctx.layer
        if workspace is None or layer is None:
            raise self.missing_input(ctx, "workspace", "layer")
        out = self.output_dir(ctx)
        out.mkdir(parents=True, exist_ok=True)
        ctx.binaries = ctx.compiler.compile_application(
            workspace,
            ctx.modules,
            ctx.toolchain,
            ctx.target,
            layer.artifacts,
            out,
        )
        print(f"✅ Built {len(ctx.binaries)} binary(ies) for {ctx.target}")

    def is_complete(self, ctx: PipelineContext) -> bool:
        return all(b.is_file() for b in ctx.binaries)


class PackageStage(BuildStage):
    name = "package"
    error_type = PackagingError

    def run(self, ctx: PipelineContext) -> None:
        ctx.bundle = package_artifacts(
            ctx.binaries,
            ctx.config.config_dir,
            ctx.config.runtime,
            self.output_dir(ctx),
            target=ctx.target,
        )

    def is_complete(self, ctx: PipelineContext) -> bool:
        return ctx.bundle is not None and ctx.bundle.dockerfile.is_file()


def default_stages() -> list[BuildStage]:
    return [PrepareStage(), CacheDependenciesStage(), BuildApplicationStage(), PackageStage()]

