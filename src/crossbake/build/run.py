"""End-to-end build: provision the toolchain, run the stage pipeline, optionally build the image."""

from __future__ import annotations

import logging
import sys
from collections.abc import Callable, Sequence
from pathlib import Path

from crossbake.build.compiler import CargoCompiler, Compiler
from crossbake.build.pipeline import Pipeline, PipelineReport
from crossbake.build.stages import BuildStage, PipelineContext, default_stages
from crossbake.cache import CacheStore
from crossbake.config import BuildConfig
from crossbake.docker.build_image import run as run_build_image
from crossbake.errors import CrossbakeError, ProvisioningError, StageFailure
from crossbake.toolchain import ComponentSpec, ToolchainEnvironment, provision

log = logging.getLogger(__name__)

PROVISION_STAGE = "provision"

ProvisionFn = Callable[[Sequence[ComponentSpec], str, Path], ToolchainEnvironment]


def provision_toolchain(
    config: BuildConfig,
    target: str,
    provision_fn: ProvisionFn | None = None,
) -> ToolchainEnvironment:
    """Provision and verify every configured component; failures are reported as stage 'provision'."""
    try:
        env = (provision_fn or provision)(config.toolchain, target, config.install_root)
        env.ensure_executable()
    except CrossbakeError as e:
        raise StageFailure(PROVISION_STAGE, e) from e
    except OSError as e:
        err = ProvisioningError(str(e), context={"path": str(e.filename or "")})
        raise StageFailure(PROVISION_STAGE, err) from e
    return env


def execute_build(
    config: BuildConfig,
    target: str | None = None,
    compiler: Compiler | None = None,
    provision_fn: ProvisionFn | None = None,
    stages: Sequence[BuildStage] | None = None,
) -> tuple[PipelineContext, PipelineReport]:
    """Run provisioning and all stages. Raises StageFailure on the first failure."""
    target = target or config.target
    toolchain = provision_toolchain(config, target, provision_fn)
    cache = CacheStore(config.cache_dir)
    stale = cache.prune_staging()
    if stale:
        log.debug("removed %d stale staging dir(s)", len(stale))
    ctx = PipelineContext(
        config=config,
        toolchain=toolchain,
        compiler=compiler or CargoCompiler(release=config.release, zigbuild=config.zigbuild),
        cache=cache,
        target=target,
    )
    report = Pipeline(stages or default_stages()).run(ctx)
    return ctx, report


def run_build(
    config: BuildConfig,
    target: str | None = None,
    compiler: Compiler | None = None,
    provision_fn: ProvisionFn | None = None,
    image_tag: str | None = None,
) -> int:
    """Build for target (default config.target). Returns 0 on success, 1 on any stage failure."""
    try:
        ctx, report = execute_build(config, target, compiler, provision_fn)
    except StageFailure as e:
        print(f"❌ {e.summary()}", file=sys.stderr)
        if e.error.hint:
            print(f"   Hint: {e.error.hint}", file=sys.stderr)
        return 1

    bundle = ctx.bundle
    if bundle is None:
        print("❌ stage 'package' failed: PackagingError: no bundle produced", file=sys.stderr)
        return 1
    print(
        f"✅ Build complete for {report.target}: dependencies {report.cache_outcome}, "
        f"bundle {bundle.path}"
    )
    if image_tag:
        return run_build_image(bundle.path, image_tag)
    return 0
