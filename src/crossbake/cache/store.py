"""Key-addressed cache of compiled dependency layers.

Layout: <cache-root>/<target-triple>/<fingerprint>/{layer.json,artifacts/}.
A layer is published by renaming a fully written staging directory, so a
directory at the key path is either complete or absent. Population of one
key is serialised across processes with flock on <fingerprint>.lock; free
lock files are removed by remove() and prune_staging().
"""

from __future__ import annotations

import fcntl
import json
import logging
import os
import shutil
import uuid
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from crossbake.errors import CacheError
from crossbake.helpers import is_safe_name

log = logging.getLogger(__name__)

MANIFEST = "layer.json"
ARTIFACTS = "artifacts"
STAGING_PREFIX = ".staging-"


@dataclass(frozen=True)
class CacheLayer:
    fingerprint: str
    target: str
    path: Path
    manifest: Mapping[str, Any] = field(default_factory=dict)

    @property
    def artifacts(self) -> Path:
        return self.path / ARTIFACTS


class CacheStore:
    """get/put over the shared on-disk cache root."""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    def layer_path(self, fingerprint: str, target: str) -> Path:
        if not is_safe_name(fingerprint) or not is_safe_name(target):
            msg = f"Invalid cache key: {target}/{fingerprint}"
            raise CacheError(msg, context={"path": str(self.root)})
        return self.root / target / fingerprint

    def _lock_path(self, fingerprint: str, target: str) -> Path:
        return self.root / target / f"{fingerprint}.lock"

    @staticmethod
    def _is_current(fh: Any, lock_path: Path) -> bool:
        try:
            st = os.stat(lock_path)
        except FileNotFoundError:
            return False
        fst = os.fstat(fh.fileno())
        return (st.st_dev, st.st_ino) == (fst.st_dev, fst.st_ino)

    @contextmanager
    def _key_lock(
        self,
        fingerprint: str,
        target: str,
        blocking: bool = True,
        unlink: bool = False,
    ) -> Iterator[bool]:
        lock_path = self._lock_path(fingerprint, target)
        lock_path.parent.mkdir(parents=True, exist_ok=True)
        flags = fcntl.LOCK_EX if blocking else fcntl.LOCK_EX | fcntl.LOCK_NB
        while True:
            fh = lock_path.open("a")
            try:
                fcntl.flock(fh, flags)
            except BlockingIOError:
                fh.close()
                yield False
                return
            if self._is_current(fh, lock_path):
                break
            # lock file was unlinked while we waited; lock its replacement
            fh.close()
        try:
            yield True
        finally:
            if unlink:
                lock_path.unlink(missing_ok=True)
            fcntl.flock(fh, fcntl.LOCK_UN)
            fh.close()

    def _read_manifest(self, path: Path) -> dict[str, Any] | None:
        try:
            data = json.loads((path / MANIFEST).read_text())
        except (OSError, json.JSONDecodeError):
            return None
        return data if isinstance(data, dict) else None

    def get(self, fingerprint: str, target: str) -> CacheLayer | None:
        """Published layer for exactly this key, else None."""
        path = self.layer_path(fingerprint, target)
        if not path.is_dir():
            return None
        manifest = self._read_manifest(path)
        if (
            manifest is None
            or manifest.get("fingerprint") != fingerprint
            or manifest.get("target") != target
            or not (path / ARTIFACTS).is_dir()
        ):
            log.warning("cache layer %s does not match its key; treating as miss", path)
            return None
        return CacheLayer(fingerprint=fingerprint, target=target, path=path, manifest=manifest)

    def put(
        self,
        fingerprint: str,
        target: str,
        populate: Callable[[Path], None],
        metadata: Mapping[str, Any] | None = None,
    ) -> tuple[CacheLayer, bool]:
        """Populate and publish a layer. Returns (layer, created).

        populate(artifacts_dir) fills a private staging directory. If another
        process published the key while we waited for the lock, its layer is
        returned with created=False and populate is not called. If populate
        raises, the staging directory is removed and nothing is published.
        """
        final = self.layer_path(fingerprint, target)
        with self._key_lock(fingerprint, target):
            existing = self.get(fingerprint, target)
            if existing is not None:
                log.debug("layer %s published by another writer", final)
                return existing, False

            staging = final.parent / f"{STAGING_PREFIX}{fingerprint}-{uuid.uuid4().hex[:8]}"
            (staging / ARTIFACTS).mkdir(parents=True)
            try:
                populate(staging / ARTIFACTS)
                manifest = {
                    "fingerprint": fingerprint,
                    "target": target,
                    "created": datetime.now(timezone.utc).isoformat(),
                    **dict(metadata or {}),
                }
                with (staging / MANIFEST).open("w") as f:
                    json.dump(manifest, f, indent=2, sort_keys=True)
                    f.write("\n")
                    f.flush()
                    os.fsync(f.fileno())
                if final.exists():
                    # present but failed get() above; replace it
                    shutil.rmtree(final)
                os.rename(staging, final)
            except BaseException:
                shutil.rmtree(staging, ignore_errors=True)
                raise
        log.debug("published cache layer %s", final)
        return CacheLayer(fingerprint=fingerprint, target=target, path=final, manifest=manifest), True

    def list_layers(self, target: str | None = None) -> list[CacheLayer]:
        if not self.root.is_dir():
            return []
        targets = [self.root / target] if target else sorted(self.root.iterdir())
        out: list[CacheLayer] = []
        for tdir in targets:
            if not tdir.is_dir():
                continue
            for d in sorted(tdir.iterdir()):
                if not d.is_dir() or d.name.startswith(STAGING_PREFIX):
                    continue
                layer = self.get(d.name, tdir.name)
                if layer is not None:
                    out.append(layer)
        return out

    def prune_staging(self) -> list[Path]:
        """Remove staging dirs left by interrupted builds, and lock files, whose key lock is free."""
        removed: list[Path] = []
        if not self.root.is_dir():
            return removed
        for tdir in sorted(p for p in self.root.iterdir() if p.is_dir()):
            for d in sorted(tdir.glob(f"{STAGING_PREFIX}*")):
                fingerprint = d.name[len(STAGING_PREFIX) :].rsplit("-", 1)[0]
                with self._key_lock(fingerprint, tdir.name, blocking=False) as acquired:
                    if not acquired:
                        continue
                    shutil.rmtree(d, ignore_errors=True)
                    removed.append(d)
            for lock in sorted(tdir.glob("*.lock")):
                with self._key_lock(lock.stem, tdir.name, blocking=False, unlink=True) as acquired:
                    if not acquired:
                        log.debug("lock %s held; keeping it", lock)
        return removed

    def remove(self, fingerprint: str, target: str) -> bool:
        path = self.layer_path(fingerprint, target)
        with self._key_lock(fingerprint, target, unlink=True):
            if not path.exists():
                return False
            shutil.rmtree(path)
        return True
