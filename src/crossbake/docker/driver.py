"""Container driver: build the toolchain image, then run crossbake build inside it.

Host caches (cache dir, package-manager home) are bind-mounted at the same
paths so they persist across invocations, and the container runs as the
invoking uid so files it writes stay owned by the host user.
"""

from __future__ import annotations

import os
import subprocess
import sys
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path


@dataclass(frozen=True)
class DriverSpec:
    image: str = "crossbake-toolchain"
    dockerfile: Path = Path("docker/toolchain.Dockerfile")
    context: Path = Path(".")
    network: str | None = "host"
    extra_mounts: tuple[str, ...] = field(default_factory=lambda: ("/tmp",))


def build_toolchain_image(spec: DriverSpec, project_root: Path) -> int:
    """docker build -t image -f dockerfile context. Returns 0 or 1."""
    if not spec.dockerfile.exists():
        print(f"❌ {spec.dockerfile} not found", file=sys.stderr)
        return 1
    cmd = ["docker", "build", "-t", spec.image, "-f", str(spec.dockerfile), str(spec.context)]
    print(f"🔨 Building toolchain image {spec.image}")
    r = subprocess.run(cmd, cwd=str(project_root))
    if r.returncode != 0:
        print("❌ Toolchain image build failed", file=sys.stderr)
        return 1
    return 0


def docker_run_command(
    spec: DriverSpec,
    project_root: Path,
    build_argv: Sequence[str],
    cache_dir: Path,
    home: Path,
    uid: int | None = None,
) -> list[str]:
    uid = os.getuid() if uid is None else uid
    mounts: list[str] = []
    for host in (*spec.extra_mounts, str(cache_dir), str(home), str(project_root)):
        arg = f"{host}:{host}"
        if arg not in mounts:
            mounts.append(arg)
    cmd = ["docker", "run", "--rm"]
    if spec.network:
        cmd += ["--net", spec.network]
    cmd += ["-e", f"CARGO_HOME={home / '.cargo'}", "-e", f"HOME={home}", "-u", str(uid)]
    for m in mounts:
        cmd += ["-v", m]
    cmd += ["--workdir", str(project_root), spec.image, "crossbake", "build", *build_argv]
    return cmd


def run(
    spec: DriverSpec,
    project_root: Path,
    build_argv: Sequence[str],
    cache_dir: Path,
    home: Path | None = None,
    uid: int | None = None,
    skip_image_build: bool = False,
) -> int:
    """Build the toolchain image (unless skipped) and run the build in it. Returns the build exit code."""
    home = home or Path.home()
    if not skip_image_build and build_toolchain_image(spec, project_root) != 0:
        return 1
    cache_dir.mkdir(parents=True, exist_ok=True)
    cmd = docker_run_command(spec, project_root, build_argv, cache_dir, home, uid)
    r = subprocess.run(cmd, cwd=str(project_root))
    if r.returncode != 0:
        print(f"❌ Containerised build failed (exit {r.returncode})", file=sys.stderr)
        # negative return codes mean the container was killed by a signal
        return r.returncode if r.returncode > 0 else 1
    return 0
