"""Staged build: host-aware target selection, compiler backends, stages and the pipeline executor."""

from .compiler import CargoCompiler, Compiler
from .host_aware import ARCH_TARGETS, detect_host_architecture, resolve_target, should_use_zigbuild
from .pipeline import Pipeline, PipelineReport, StageRecord, StageStatus
from .run import execute_build, provision_toolchain, run_build
from .stages import (
    BuildApplicationStage,
    BuildStage,
    CacheDependenciesStage,
    PackageStage,
    PipelineContext,
    PrepareStage,
    default_stages,
)

__all__ = [
    "ARCH_TARGETS",
    "BuildApplicationStage",
    "BuildStage",
    "CacheDependenciesStage",
    "CargoCompiler",
    "Compiler",
    "PackageStage",
    "Pipeline",
    "PipelineContext",
    "PipelineReport",
    "PrepareStage",
    "StageRecord",
    "StageStatus",
    "detect_host_architecture",
    "execute_build",
    "provision_toolchain",
    "resolve_target",
    "run_build",
    "should_use_zigbuild",
]
