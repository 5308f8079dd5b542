"""Assemble the runtime bundle: binaries + config in a minimal root, fixed-uid user, tini as PID 1.

Bundle layout::

    <output>/
      Dockerfile
      bundle.json
      rootfs/<app_dir>/bin/<binary>
      rootfs/<app_dir>/config/...

The bundle is assembled in a sibling staging directory and renamed into
place only when complete.
"""

from __future__ import annotations

import json
import logging
import shutil
import uuid
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from crossbake.docker.dockerfile import render_dockerfile
from crossbake.errors import PackagingError
from crossbake.helpers import sha256_file

log = logging.getLogger(__name__)

# never shipped in a runtime image
BUILD_ONLY_TOOLS = frozenset(
    {
        "cargo",
        "cargo-chef",
        "cargo-zigbuild",
        "rustc",
        "rustup",
        "protoc",
        "zig",
        "clang",
        "gcc",
        "cc",
        "ld",
        "llvm-config",
        "pip",
        "pip3",
    }
)


@dataclass(frozen=True)
class RuntimeSpec:
    base_image: str = "alpine:3.17.0"
    uid: int = 1000
    user: str = "app"
    ports: tuple[int, ...] = (8080, 8081)
    init: str = "/sbin/tini"
    init_package: str = "tini"
    app_dir: str = "/app"
    entrypoint: str | None = None
    dockerfile_template: Path | None = None


@dataclass(frozen=True)
class RuntimeArtifactBundle:
    path: Path
    binaries: tuple[str, ...]
    entrypoint: tuple[str, ...]
    uid: int
    user: str
    ports: tuple[int, ...]
    base_image: str

    @property
    def dockerfile(self) -> Path:
        return self.path / "Dockerfile"

    @property
    def rootfs(self) -> Path:
        return self.path / "rootfs"


def _fail(message: str, path: Path | str = "") -> PackagingError:
    return PackagingError(message, context={"path": str(path)})


def _check_inputs(binaries: Sequence[Path], config_dir: Path | None, spec: RuntimeSpec) -> str:
    """Validate everything before touching disk; return the entrypoint binary name."""
    if not binaries:
        raise _fail("No binaries to package")
    names = [b.name for b in binaries]
    for b in binaries:
        if not b.is_file():
            raise _fail(f"Binary not found: {b}", b)
        if b.name in BUILD_ONLY_TOOLS:
            raise _fail(f"Refusing to package build-time tool '{b.name}'", b)
    if len(set(names)) != len(names):
        raise _fail(f"Duplicate binary names: {sorted(names)}")
    if config_dir is not None and not config_dir.is_dir():
        raise _fail(f"Configuration directory not found: {config_dir}", config_dir)
    if spec.uid <= 0:
        raise _fail(f"Execution identity must be non-root, got uid {spec.uid}")
    if not spec.app_dir.startswith("/"):
        raise _fail(f"app_dir must be absolute, got {spec.app_dir}")
    entry = spec.entrypoint or names[0]
    if entry not in names:
        raise _fail(f"Entrypoint binary '{entry}' is not among {names}")
    return entry


def _assemble(
    staging: Path,
    binaries: Sequence[Path],
    config_dir: Path | None,
    spec: RuntimeSpec,
    entry: str,
    target: str,
) -> tuple[list[str], dict[str, str]]:
    app_root = staging / "rootfs" / spec.app_dir.lstrip("/")
    bin_dir = app_root / "bin"
    bin_dir.mkdir(parents=True)
    checksums: dict[str, str] = {}
    for b in binaries:
        dest = bin_dir / b.name
        shutil.copy2(b, dest)
        dest.chmod(0o755)
        checksums[b.name] = sha256_file(dest)
        print(f"📦 {b.name} -> {dest.relative_to(staging)}")
    if config_dir is not None:
        shutil.copytree(config_dir, app_root / "config")
        log.debug("copied config %s -> %s", config_dir, app_root / "config")

    entrypoint = [spec.init, "--", f"{spec.app_dir.rstrip('/')}/bin/{entry}"]
    dockerfile = render_dockerfile(
        service_name=entry,
        target=target,
        base_image=spec.base_image,
        uid=spec.uid,
        user=spec.user,
        app_dir=spec.app_dir.rstrip("/"),
        init_package=spec.init_package,
        ports=spec.ports,
        entrypoint=entrypoint,
        template_path=spec.dockerfile_template,
    )
    (staging / "Dockerfile").write_text(dockerfile)
    return entrypoint, checksums


def package_artifacts(
    binaries: Sequence[Path],
    config_dir: Path | None,
    spec: RuntimeSpec,
    output_dir: Path,
    target: str = "",
) -> RuntimeArtifactBundle:
    """Produce a RuntimeArtifactBundle at output_dir or raise PackagingError leaving nothing behind."""
    entry = _check_inputs(binaries, config_dir, spec)
    if spec.dockerfile_template is not None and not spec.dockerfile_template.is_file():
        raise _fail(f"Dockerfile template not found: {spec.dockerfile_template}")

    output_dir.parent.mkdir(parents=True, exist_ok=True)
    staging = output_dir.parent / f".{output_dir.name}-{uuid.uuid4().hex[:8]}"
    try:
        entrypoint, checksums = _assemble(staging, binaries, config_dir, spec, entry, target)
        metadata = {
            "target": target,
            "base_image": spec.base_image,
            "user": spec.user,
            "uid": spec.uid,
            "ports": list(spec.ports),
            "entrypoint": entrypoint,
            "binaries": checksums,
            "config": config_dir is not None,
        }
        (staging / "bundle.json").write_text(json.dumps(metadata, indent=2, sort_keys=True) + "\n")
        if output_dir.exists():
            shutil.rmtree(output_dir)
        staging.rename(output_dir)
    except OSError as e:
        raise _fail(f"Could not assemble bundle: {e}", output_dir) from e
    finally:
        if staging.exists():
            shutil.rmtree(staging, ignore_errors=True)

    print(f"✅ Runtime bundle: {output_dir} (entrypoint {' '.join(entrypoint)}, uid {spec.uid})")
    return RuntimeArtifactBundle(
        path=output_dir,
        binaries=tuple(checksums),
        entrypoint=tuple(entrypoint),
        uid=spec.uid,
        user=spec.user,
        ports=spec.ports,
        base_image=spec.base_image,
    )
