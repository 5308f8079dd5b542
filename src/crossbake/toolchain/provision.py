"""Provision pinned toolchain components into <install-root>/<component>/<version>/.

Idempotent: a completed install carries a marker file and is not touched
again, except that target-dependent components (rustup) get any missing
build target added in place. Components install concurrently; all are
joined before the ToolchainEnvironment is returned.
"""

from __future__ import annotations

import json
import logging
import re
import shutil
import threading
import uuid
from collections.abc import Callable, Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any

from crossbake.errors import ConfigError, ProvisioningError, VersionMismatchError
from crossbake.helpers import is_executable, is_safe_name, run_cmd
from crossbake.toolchain.installers import INSTALLERS, TARGET_ADDERS, extra_env_for
from crossbake.toolchain.model import ComponentSpec, ToolchainComponent, ToolchainEnvironment

log = logging.getLogger(__name__)

MARKER = ".crossbake-installed"

Installer = Callable[[ComponentSpec, Path, str], str]
TargetAdder = Callable[[ComponentSpec, Path, str], None]

_marker_lock = threading.Lock()


def install_dir(install_root: Path, spec: ComponentSpec) -> Path:
    return install_root / spec.name / spec.version


def _marker_data(spec: ComponentSpec, rel_binary: str, targets: Sequence[str]) -> str:
    data = {
        "name": spec.name,
        "version": spec.version,
        "binary": rel_binary,
        "targets": sorted(set(targets)),
    }
    return json.dumps(data, indent=2, sort_keys=True) + "\n"


def _read_marker(final: Path) -> dict[str, Any] | None:
    marker = final / MARKER
    if not marker.is_file():
        return None
    try:
        data = json.loads(marker.read_text())
    except json.JSONDecodeError:
        return None
    if not isinstance(data, dict) or not isinstance(data.get("binary"), str):
        return None
    return data


def _write_marker(final: Path, content: str) -> None:
    tmp = final / f"{MARKER}.{uuid.uuid4().hex[:8]}"
    tmp.write_text(content)
    tmp.replace(final / MARKER)


def _install(spec: ComponentSpec, final: Path, target: str, installer: Installer) -> None:
    staging = final.parent / f".staging-{spec.version}-{uuid.uuid4().hex[:8]}"
    staging.mkdir(parents=True)
    try:
        rel_binary = installer(spec, staging, target)
        (staging / MARKER).write_text(_marker_data(spec, rel_binary, [target]))
        try:
            staging.rename(final)
        except OSError:
            # another provisioner published first; its install wins
            if _read_marker(final) is None:
                raise
            log.debug("install race for %s %s lost; reusing %s", spec.name, spec.version, final)
            shutil.rmtree(staging, ignore_errors=True)
    except BaseException:
        shutil.rmtree(staging, ignore_errors=True)
        raise


def _ensure_target(
    spec: ComponentSpec,
    final: Path,
    target: str,
    marker: Mapping[str, Any],
    adder: TargetAdder,
) -> None:
    targets = marker.get("targets") or []
    if target in targets:
        return
    print(f"📦 Adding target {target} to {spec.name} {spec.version}")
    adder(spec, final, target)
    with _marker_lock:
        current = _read_marker(final) or marker
        recorded = [*(current.get("targets") or []), target]
        _write_marker(final, _marker_data(spec, current["binary"], recorded))


def version_matches(output: str, version: str) -> bool:
    """True if version appears in output as a version token (18 matches 18.1.8, not 181)."""
    return re.search(rf"(?<![\d.]){re.escape(version)}(?!\d)", output) is not None


def check_version(spec: ComponentSpec, binary: Path, env: Mapping[str, str]) -> None:
    r = run_cmd([str(binary), *spec.version_args], env=env, capture=True)
    output = f"{r.stdout or ''}\n{r.stderr or ''}"
    if r.returncode != 0:
        msg = f"{binary.name} {' '.join(spec.version_args)} exited {r.returncode}"
        raise ProvisioningError(msg, context={"component": spec.name, "path": str(binary)})
    if not version_matches(output, spec.version):
        reported = output.strip().splitlines()[0] if output.strip() else "<no output>"
        msg = f"expected version {spec.version}, binary reports '{reported}'"
        raise VersionMismatchError(
            msg,
            hint="Remove the install directory and provision again.",
            context={"component": spec.name, "path": str(binary)},
        )


def provision_component(
    spec: ComponentSpec,
    target: str,
    install_root: Path,
    installers: Mapping[str, Installer] = INSTALLERS,
    target_adders: Mapping[str, TargetAdder] = TARGET_ADDERS,
) -> ToolchainComponent:
    """Install (if needed) and verify one component."""
    if not is_safe_name(spec.name) or not is_safe_name(spec.version):
        msg = f"Invalid component name or version: {spec.name} {spec.version}"
        raise ProvisioningError(msg, context={"component": spec.name})
    installer = installers.get(spec.installer)
    if installer is None:
        msg = f"No installer for kind '{spec.installer}'"
        raise ProvisioningError(msg, context={"component": spec.name})

    final = install_dir(install_root, spec).resolve()
    marker = _read_marker(final)
    if marker is None:
        if final.exists():
            msg = f"Install directory exists without a completion marker: {final}"
            raise ProvisioningError(
                msg, hint="Remove it and provision again.", context={"component": spec.name}
            )
        print(f"📦 Installing {spec.name} {spec.version} ({spec.installer})")
        _install(spec, final, target, installer)
        marker = _read_marker(final)
        if marker is None:
            msg = f"Install left no completion marker: {final}"
            raise ProvisioningError(msg, context={"component": spec.name})
    else:
        log.debug("%s %s already installed at %s", spec.name, spec.version, final)
    adder = target_adders.get(spec.installer)
    if adder is not None:
        # a lost install race may have published another target
        _ensure_target(spec, final, target, marker, adder)

    rel_binary = marker["binary"]
    if not rel_binary:
        msg = "Component declares no binary"
        raise ProvisioningError(msg, context={"component": spec.name})
    binary = final / rel_binary
    if not is_executable(binary):
        msg = f"Binary missing or not executable after install: {binary}"
        raise ProvisioningError(msg, context={"component": spec.name, "path": str(binary)})

    extra_env = extra_env_for(spec, final)
    check_version(spec, binary, extra_env)
    return ToolchainComponent(
        name=spec.name,
        version=spec.version,
        path=final,
        binary=binary,
        env=dict(spec.env),
        extra_env=extra_env,
    )


def provision(
    specs: Sequence[ComponentSpec],
    target: str,
    install_root: Path,
    installers: Mapping[str, Installer] = INSTALLERS,
    target_adders: Mapping[str, TargetAdder] = TARGET_ADDERS,
    max_workers: int | None = None,
) -> ToolchainEnvironment:
    """Provision every component concurrently; raise the first failure in declaration order."""
    names = [s.name for s in specs]
    dupes = sorted({n for n in names if names.count(n) > 1})
    if dupes:
        msg = f"Duplicate toolchain components: {', '.join(dupes)}"
        raise ConfigError(msg, context={"component": dupes[0]})

    install_root.mkdir(parents=True, exist_ok=True)
    if not specs:
        return ToolchainEnvironment(target, {})

    with ThreadPoolExecutor(max_workers=max_workers or len(specs)) as pool:
        futures = [
            pool.submit(provision_component, s, target, install_root, installers, target_adders)
            for s in specs
        ]
        # join-wait on every install before reporting
        errors: list[BaseException] = []
        components: dict[str, ToolchainComponent] = {}
        for spec, fut in zip(specs, futures, strict=True):
            exc = fut.exception()
            if exc is not None:
                errors.append(exc)
            else:
                components[spec.name] = fut.result()
    if errors:
        raise errors[0]

    env = ToolchainEnvironment(target, components)
    print(f"✅ Toolchain ready for {target}: {', '.join(f'{n}={c.version}' for n, c in env.items())}")
    return env
