"""Host-aware target selection: arch aliases, host detection, zigbuild availability."""

from __future__ import annotations

import platform
import re
import shutil

from crossbake.toolchain.model import ToolchainEnvironment

ARCH_TARGETS: dict[str, str] = {
    "amd64": "x86_64-unknown-linux-musl",
    "arm64": "aarch64-unknown-linux-musl",
    "arm7": "armv7-unknown-linux-musleabihf",
}

_MACHINE_TO_ARCH = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
    "armv7l": "arm7",
}

_TRIPLE = re.compile(r"^[A-Za-z0-9_]+(-[A-Za-z0-9_.]+){1,3}$")


def detect_host_architecture() -> str:
    """amd64, arm64 or arm7 for the build host (defaults to amd64)."""
    return _MACHINE_TO_ARCH.get(platform.machine().lower(), "amd64")


def resolve_target(arch_or_triple: str | None) -> str:
    """Alias (amd64/arm64/arm7) or full triple -> triple. None -> host arch triple."""
    if not arch_or_triple:
        return ARCH_TARGETS[detect_host_architecture()]
    if arch_or_triple in ARCH_TARGETS:
        return ARCH_TARGETS[arch_or_triple]
    if not _TRIPLE.match(arch_or_triple):
        msg = f"Not a target triple or arch alias: {arch_or_triple}"
        raise ValueError(msg)
    return arch_or_triple



def should_use_zigbuild(toolchain: ToolchainEnvironment | None = None) -> bool:
    """cargo-zigbuild provisioned in the toolchain or present on PATH."""
    if toolchain is not None and "cargo-zigbuild" in toolchain:
        return True
    return shutil.which("cargo-zigbuild") is not None
