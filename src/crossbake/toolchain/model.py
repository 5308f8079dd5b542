"""Toolchain component specs and the provisioned ToolchainEnvironment."""

from __future__ import annotations

import hashlib
import json
import os
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any

from crossbake.errors import ConfigError, ProvisioningError
from crossbake.helpers import is_executable, to_env_name

INSTALLER_KINDS = ("archive", "rustup", "cargo", "pip", "system")
ENV_SOURCES = ("path", "binary")


@dataclass(frozen=True)
class ComponentSpec:
    """One pinned toolchain component.

    binary is relative to the install directory; rustup components resolve it
    at install time. env maps extra variable names to "path" or "binary".
    source holds installer settings (url, sha256, crate, package, prefix).
    """

    name: str
    version: str
    installer: str
    binary: str = ""
    version_args: tuple[str, ...] = ("--version",)
    env: Mapping[str, str] = field(default_factory=dict)
    source: Mapping[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ComponentSpec:
        try:
            name = str(data["name"])
            version = str(data["version"])
        except KeyError as e:
            msg = f"Toolchain component missing required key {e}"
            raise ConfigError(msg, context={"component": str(data.get("name", ""))}) from e
        if isinstance(data["version"], float):
            msg = f"Version of {name} must be a string, got {data['version']!r}"
            raise ConfigError(msg, hint="Quote the version in crossbake.yaml.", context={"component": name})
        installer = str(data.get("installer", "archive"))
        if installer not in INSTALLER_KINDS:
            msg = f"Unknown installer '{installer}'"
            raise ConfigError(
                msg,
                hint=f"Use one of: {', '.join(INSTALLER_KINDS)}",
                context={"component": name},
            )
        env = {str(k): str(v) for k, v in (data.get("env") or {}).items()}
        for var, what in env.items():
            if what not in ENV_SOURCES:
                msg = f"env binding {var} must be 'path' or 'binary', got '{what}'"
                raise ConfigError(msg, context={"component": name})
        version_args = data.get("version_args", ["--version"])
        return cls(
            name=name,
            version=version,
            installer=installer,
            binary=str(data.get("binary", "")),
            version_args=tuple(str(a) for a in version_args),
            env=env,
            source={str(k): str(v) for k, v in (data.get("source") or {}).items()},
        )


@dataclass(frozen=True)
class ToolchainComponent:
    """A provisioned component: absolute install path, executable, pinned version."""

    name: str
    version: str
    path: Path
    binary: Path
    env: Mapping[str, str] = field(default_factory=dict)
    extra_env: Mapping[str, str] = field(default_factory=dict)

    def bindings(self) -> dict[str, str]:
        stem = to_env_name(self.name)
        out = {
            f"CROSSBAKE_{stem}": str(self.path),
            f"CROSSBAKE_{stem}_BIN": str(self.binary),
        }
        for var, what in self.env.items():
            out[var] = str(self.binary) if what == "binary" else str(self.path)
        out.update(self.extra_env)
        return out


class ToolchainEnvironment(Mapping[str, ToolchainComponent]):
    """Read-only mapping of component name -> ToolchainComponent.

    Built once by the provisioner; later stages only read it.
    """

    def __init__(self, target: str, components: Mapping[str, ToolchainComponent]) -> None:
        self._target = target
        self._components = MappingProxyType(dict(components))

    @property
    def target(self) -> str:
        return self._target

    def __getitem__(self, name: str) -> ToolchainComponent:
        return self._components[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._components)

    def __len__(self) -> int:
        return len(self._components)

    def __repr__(self) -> str:
        pinned = ", ".join(f"{c.name}={c.version}" for c in self._components.values())
        return f"ToolchainEnvironment(target={self._target!r}, {pinned})"

    def as_env(self) -> dict[str, str]:
        """Environment variables for the compile step, PATH extended with each binary dir."""
        env: dict[str, str] = {}
        bin_dirs: list[str] = []
        for comp in self._components.values():
            env.update(comp.bindings())
            d = str(comp.binary.parent)
            if d not in bin_dirs:
                bin_dirs.append(d)
        env["PATH"] = os.pathsep.join([*bin_dirs, os.environ.get("PATH", "")])
        return env

    def ensure_executable(self) -> None:
        """Raise ProvisioningError if any component binary is missing or not executable."""
        for comp in self._components.values():
            if not is_executable(comp.binary):
                msg = f"Toolchain binary missing or not executable: {comp.binary}"
                raise ProvisioningError(
                    msg,
                    hint="Re-run provisioning.",
                    context={"component": comp.name, "path": str(comp.binary)},
                )

    def describe(self) -> dict[str, dict[str, str]]:
        return {
            name: {"version": c.version, "path": str(c.path), "binary": str(c.binary)}
            for name, c in sorted(self._components.items())
        }

    def digest(self) -> str:
        """sha256 over target + sorted component versions and paths."""
        payload = {"target": self._target, "components": self.describe()}
        canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()
