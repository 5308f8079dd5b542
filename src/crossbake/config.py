"""Build configuration: crossbake.yaml merged over DEFAULT_CONFIG.

Paths are relative to project_root unless absolute. The resolved config is
frozen and passed explicitly to every component.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

import yaml

from crossbake.docker.package import RuntimeSpec
from crossbake.docker.driver import DriverSpec
from crossbake.errors import ConfigError
from crossbake.helpers import load_yaml, resolve_under
from crossbake.toolchain.model import ComponentSpec

log = logging.getLogger(__name__)

CONFIG_FILE = "crossbake.yaml"
DEFAULT_TARGET = "x86_64-unknown-linux-musl"

# Pins follow the muslrust 1.80 / protoc 25.1 / LLVM 18 / zig toolchain image.
DEFAULT_TOOLCHAIN: list[dict[str, Any]] = [
    {
        "name": "compiler",
        "version": "1.80.0",
        "installer": "rustup",
        "binary": "rustc",
    },
    {
        "name": "linker",
        "version": "0.13.0",
        "installer": "pip",
        "binary": "ziglang/zig",
        "version_args": ["version"],
        "env": {"CARGO_ZIGBUILD_ZIG_PATH": "binary"},
        "source": {"package": "ziglang"},
    },
    {
        "name": "codegen-backend",
        "version": "18",
        "installer": "system",
        "binary": "bin/llvm-config",
        "env": {
            "LLVM_SYS_181_PREFIX": "path",
            "MLIR_SYS_180_PREFIX": "path",
            "TABLEGEN_180_PREFIX": "path",
        },
        "source": {"prefix": "/usr/lib/llvm-{version}"},
    },
    {
        "name": "protocol-compiler",
        "version": "25.1",
        "installer": "archive",
        "binary": "bin/protoc",
        "env": {"PROTOC": "binary"},
        "source": {
            "url": "https://github.com/protocolbuffers/protobuf/releases/download/"
            "v{version}/protoc-{version}-linux-x86_64.zip",
        },
    },
    {
        "name": "cargo-chef",
        "version": "0.1.67",
        "installer": "cargo",
        "binary": "bin/cargo-chef",
        "version_args": ["chef", "--version"],
    },
    {
        "name": "cargo-zigbuild",
        "version": "0.19.1",
        "installer": "cargo",
        "binary": "bin/cargo-zigbuild",
    },
]

DEFAULT_CONFIG: dict[str, Any] = {
    "workspace_manifest": "Cargo.toml",
    "cache_dir": ".crossbake/cache",
    "install_root": ".crossbake/toolchains",
    "work_dir": ".crossbake/work",
    "target": DEFAULT_TARGET,
    "modules": [],
    "zigbuild": "auto",
    "release": True,
    "toolchain": DEFAULT_TOOLCHAIN,
    "runtime": {
        "base_image": "alpine:3.17.0",
        "uid": 1000,
        "user": "app",
        "ports": [8080, 8081],
        "config_dir": None,
        "init": "/sbin/tini",
        "init_package": "tini",
        "app_dir": "/app",
        "entrypoint": None,
        "dockerfile_template": None,
    },
    "driver": {
        "image": "crossbake-toolchain",
        "dockerfile": "docker/toolchain.Dockerfile",
        "context": ".",
        "network": "host",
        "extra_mounts": ["/tmp"],
    },
}


def resolve_config(raw: dict[str, Any] | None) -> dict[str, Any]:
    """Return config dict with defaults filled. Nested runtime/driver mappings merge key by key."""
    out = copy.deepcopy(DEFAULT_CONFIG)
    if not raw:
        return out
    for k, v in raw.items():
        if k not in out:
            log.warning("ignoring unknown config key %r", k)
            continue
        if isinstance(out[k], dict) and isinstance(v, dict):
            out[k].update({kk: vv for kk, vv in v.items() if kk in out[k]})
        else:
            out[k] = v
    return out


@dataclass(frozen=True)
class BuildConfig:
    project_root: Path
    workspace_manifest: Path
    cache_dir: Path
    install_root: Path
    work_dir: Path
    target: str
    modules: tuple[str, ...] = ()
    zigbuild: bool | None = None
    release: bool = True
    toolchain: tuple[ComponentSpec, ...] = ()
    runtime: RuntimeSpec = field(default_factory=RuntimeSpec)
    config_dir: Path | None = None
    driver: DriverSpec = field(default_factory=DriverSpec)

    def with_overrides(self, **changes: Any) -> BuildConfig:
        """Copy with non-None overrides applied (CLI flags win over the file)."""
        return replace(self, **{k: v for k, v in changes.items() if v is not None})


def _zigbuild_flag(value: Any) -> bool | None:
    if value in (None, "auto"):
        return None
    if isinstance(value, bool):
        return value
    msg = f"zigbuild must be true, false or auto, got {value!r}"
    raise ConfigError(msg)


def build_config(project_root: Path, raw: dict[str, Any] | None = None) -> BuildConfig:
    cfg = resolve_config(raw)
    root = project_root.resolve()
    rt = cfg["runtime"]
    try:
        runtime = RuntimeSpec(
            base_image=str(rt["base_image"]),
            uid=int(rt["uid"]),
            user=str(rt["user"]),
            ports=tuple(int(p) for p in rt["ports"] or ()),
            init=str(rt["init"]),
            init_package=str(rt["init_package"]),
            app_dir=str(rt["app_dir"]),
            entrypoint=rt["entrypoint"],
            dockerfile_template=(
                resolve_under(root, rt["dockerfile_template"])
                if rt["dockerfile_template"]
                else None
            ),
        )
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid runtime section: {e}", context={"path": CONFIG_FILE}) from e
    drv = cfg["driver"]
    driver = DriverSpec(
        image=str(drv["image"]),
        dockerfile=resolve_under(root, drv["dockerfile"]),
        context=resolve_under(root, drv["context"]),
        network=str(drv["network"]) if drv["network"] else None,
        extra_mounts=tuple(str(m) for m in drv["extra_mounts"] or ()),
    )
    if not isinstance(cfg["toolchain"], list):
        raise ConfigError("toolchain must be a list of components", context={"path": CONFIG_FILE})
    return BuildConfig(
        project_root=root,
        workspace_manifest=resolve_under(root, cfg["workspace_manifest"]),
        cache_dir=resolve_under(root, cfg["cache_dir"]),
        install_root=resolve_under(root, cfg["install_root"]),
        work_dir=resolve_under(root, cfg["work_dir"]),
        target=str(cfg["target"]),
        modules=tuple(str(m) for m in cfg["modules"] or ()),
        zigbuild=_zigbuild_flag(cfg["zigbuild"]),
        release=bool(cfg["release"]),
        toolchain=tuple(ComponentSpec.from_dict(c) for c in cfg["toolchain"]),
        runtime=runtime,
        config_dir=resolve_under(root, rt["config_dir"]) if rt["config_dir"] else None,
        driver=driver,
    )


def load_config(project_root: Path, config_path: Path | None = None) -> BuildConfig:
    """Load crossbake.yaml (or config_path) from project_root; missing default file -> defaults."""
    path = config_path or (project_root / CONFIG_FILE)
    raw: dict[str, Any] | None = None
    if path.exists():
        try:
            raw = load_yaml(path)
        except (OSError, ValueError, yaml.YAMLError) as e:
            raise ConfigError(f"Cannot read config: {e}", context={"path": str(path)}) from e
    elif config_path is not None:
        raise ConfigError(f"Config file not found: {path}", context={"path": str(path)})
    return build_config(project_root, raw)
