"""Shared helpers for crossbake (text, yaml load, hashing, paths, subprocess).

Used by config, workspace, toolchain, cache, build, and docker modules.
"""

from __future__ import annotations

import hashlib
import os
import re
import subprocess
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any

import yaml

# --- Text ---


def to_env_name(name: str) -> str:
    """Component name to environment variable stem (e.g. protocol-compiler -> PROTOCOL_COMPILER)."""
    return re.sub(r"[^A-Za-z0-9]+", "_", name).strip("_").upper()


def is_safe_name(s: str) -> bool:
    """Letters, digits, dot, underscore, hyphen; used for module, component and tag segments."""
    return bool(re.match(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$", s))


# --- YAML / file ---


def load_yaml(p: Path) -> dict[str, Any]:
    """Load a YAML mapping from path. Empty file -> {}. Raises ValueError if not a mapping."""
    with p.open() as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        msg = f"Expected a mapping at top level: {p}"
        raise ValueError(msg)
    return data


def sha256_file(path: Path) -> str:
    """Hex sha256 of a file, read in chunks."""
    h = hashlib.sha256()
    with path.open("rb") as f:
        for chunk in iter(lambda: f.read(1 << 20), b""):
            h.update(chunk)
    return h.hexdigest()


# --- Path ---


def resolve_under(root: Path, p: str | Path) -> Path:
    """Absolute path: p itself if absolute, else root / p."""
    path = Path(p)
    return path if path.is_absolute() else root / path


def is_executable(p: Path) -> bool:
    return p.is_file() and os.access(p, os.X_OK)


# --- Subprocess ---


def run_cmd(
    cmd: Sequence[str],
    cwd: Path | None = None,
    env: Mapping[str, str] | None = None,
    capture: bool = False,
) -> subprocess.CompletedProcess[str]:
    """Run cmd with env merged over os.environ. Never raises on non-zero exit."""
    merged = None
    if env is not None:
        merged = dict(os.environ)
        merged.update(env)
    return subprocess.run(
        list(cmd),
        cwd=str(cwd) if cwd is not None else None,
        env=merged,
        capture_output=capture,
        text=True,
    )
