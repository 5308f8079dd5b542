"""Component installers: archive, rustup, cargo, pip, system.

Each installer fills a staging directory and returns the component binary
path relative to it. The provisioner renames the staging directory into
<install-root>/<component>/<version>/ afterwards.
"""

from __future__ import annotations

import hashlib
import logging
import shutil
import sys
import tarfile
import tempfile
import zipfile
from collections.abc import Callable
from pathlib import Path
from urllib.error import URLError
from urllib.request import Request, urlopen

from crossbake.errors import ProvisioningError
from crossbake.helpers import run_cmd
from crossbake.toolchain.model import ComponentSpec

log = logging.getLogger(__name__)

DOWNLOAD_TIMEOUT = 120


def _fail(spec: ComponentSpec, message: str, hint: str | None = None) -> ProvisioningError:
    return ProvisioningError(
        message, hint=hint, context={"component": spec.name, "version": spec.version}
    )


def _require_source(spec: ComponentSpec, key: str) -> str:
    value = spec.source.get(key)
    if not value:
        raise _fail(spec, f"Installer '{spec.installer}' requires source.{key}")
    return value


def _run_install(spec: ComponentSpec, cmd: list[str], env: dict[str, str] | None = None) -> str:
    log.debug("install %s: %s", spec.name, " ".join(cmd))
    r = run_cmd(cmd, env=env, capture=True)
    if r.returncode != 0:
        tail = (r.stderr or r.stdout or "").strip().splitlines()[-5:]
        raise _fail(spec, f"{cmd[0]} exited {r.returncode}: {' | '.join(tail)}")
    return r.stdout or ""


# --- archive ---


def _download(spec: ComponentSpec, url: str, dest: Path) -> None:
    req = Request(url, headers={"User-Agent": "crossbake"})
    try:
        with urlopen(req, timeout=DOWNLOAD_TIMEOUT) as response, dest.open("wb") as f:
            shutil.copyfileobj(response, f)
    except (URLError, OSError) as e:
        raise _fail(spec, f"Download failed: {url} ({e})") from e


def _safe_members(names: list[str]) -> list[str]:
    return [n for n in names if not n.startswith("/") and ".." not in Path(n).parts]


def _extract(spec: ComponentSpec, archive: Path, dest: Path, url: str) -> None:
    if url.endswith(".zip"):
        with zipfile.ZipFile(archive) as zh:
            for name in _safe_members(zh.namelist()):
                zh.extract(name, dest)
        return
    if url.endswith((".tar.gz", ".tgz", ".tar.xz", ".tar")):
        with tarfile.open(archive) as th:
            safe = set(_safe_members(th.getnames()))
            members = [m for m in th.getmembers() if m.name in safe]
            th.extractall(dest, members=members, filter="data")
        return
    raise _fail(spec, f"Unsupported archive type: {url}", hint="Use .zip, .tar.gz or .tar.xz")


def install_archive(spec: ComponentSpec, dest: Path, target: str) -> str:
    url = _require_source(spec, "url").format(version=spec.version, target=target)
    with tempfile.TemporaryDirectory(prefix="crossbake-dl-") as tmp:
        archive = Path(tmp) / Path(url).name
        _download(spec, url, archive)
        expected = spec.source.get("sha256")
        if expected:
            actual = hashlib.sha256(archive.read_bytes()).hexdigest()
            if actual != expected:
                raise _fail(spec, f"sha256 mismatch for {url}: expected {expected}, got {actual}")
        _extract(spec, archive, dest, url)
    binary = dest / spec.binary
    if binary.is_file():
        # zip archives drop the executable bit
        binary.chmod(0o755)
    return spec.binary


# --- rustup ---


def install_rustup(spec: ComponentSpec, dest: Path, target: str) -> str:
    rustup = shutil.which("rustup")
    if rustup is None:
        raise _fail(spec, "rustup not found on PATH", hint="Install rustup on the build host.")
    env = {"RUSTUP_HOME": str(dest / "rustup"), "CARGO_HOME": str(dest / "cargo")}
    _run_install(
        spec,
        [
            rustup,
            "toolchain",
            "install",
            spec.version,
            "--profile",
            "minimal",
            "--target",
            target,
            "--no-self-update",
        ],
        env=env,
    )
    which = _run_install(
        spec, [rustup, "which", spec.binary or "rustc", "--toolchain", spec.version], env=env
    ).strip()
    try:
        return Path(which).relative_to(dest).as_posix()
    except ValueError as e:
        raise _fail(spec, f"rustup resolved {which} outside {dest}") from e


def add_rustup_target(spec: ComponentSpec, install_dir: Path, target: str) -> None:
    """Add a target to an existing rustup install; rustup skips targets already present."""
    rustup = shutil.which("rustup")
    if rustup is None:
        raise _fail(spec, "rustup not found on PATH", hint="Install rustup on the build host.")
    env = {"RUSTUP_HOME": str(install_dir / "rustup"), "CARGO_HOME": str(install_dir / "cargo")}
    _run_install(spec, [rustup, "target", "add", target, "--toolchain", spec.version], env=env)


# --- cargo ---


def install_cargo(spec: ComponentSpec, dest: Path, target: str) -> str:
    cargo = shutil.which("cargo")
    if cargo is None:
        raise _fail(spec, "cargo not found on PATH", hint="Install a host Rust toolchain.")
    crate = spec.source.get("crate") or spec.name
    _run_install(
        spec,
        [cargo, "install", "--locked", "--root", str(dest), "--version", spec.version, crate],
    )
    return spec.binary or f"bin/{crate}"


# --- pip ---


def install_pip(spec: ComponentSpec, dest: Path, target: str) -> str:
    package = spec.source.get("package") or spec.name
    _run_install(
        spec,
        [
            sys.executable,
            "-m",
            "pip",
            "install",
            "--no-deps",
            "--target",
            str(dest),
            f"{package}=={spec.version}",
        ],
    )
    return spec.binary


# --- system ---


def install_system(spec: ComponentSpec, dest: Path, target: str) -> str:
    """Pin an existing prefix (e.g. /usr/lib/llvm-18) by symlinking its entries into dest."""
    prefix = Path(_require_source(spec, "prefix").format(version=spec.version))
    if not prefix.is_dir():
        raise _fail(spec, f"System prefix not found: {prefix}", hint="Install it on the host.")
    dest.mkdir(parents=True, exist_ok=True)
    for entry in sorted(prefix.iterdir()):
        (dest / entry.name).symlink_to(entry)
    return spec.binary


INSTALLERS: dict[str, Callable[[ComponentSpec, Path, str], str]] = {
    "archive": install_archive,
    "rustup": install_rustup,
    "cargo": install_cargo,
    "pip": install_pip,
    "system": install_system,
}

# installers whose result depends on the build target
TARGET_ADDERS: dict[str, Callable[[ComponentSpec, Path, str], None]] = {
    "rustup": add_rustup_target,
}


def extra_env_for(spec: ComponentSpec, install_dir: Path) -> dict[str, str]:
    """Installer-specific variables the component needs at run time."""
    if spec.installer == "rustup":
        return {"RUSTUP_HOME": str(install_dir / "rustup"), "RUSTUP_TOOLCHAIN": spec.version}
    return {}
