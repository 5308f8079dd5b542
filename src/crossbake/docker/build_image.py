"""Build the runtime image from a packaged bundle (local docker build; no push)."""

from __future__ import annotations

import json
import subprocess
import sys
from pathlib import Path


def run(bundle_dir: Path, tag: str, dry_run: bool = False) -> int:
    """docker build -t tag -f bundle/Dockerfile bundle. Returns 0 or 1."""
    dockerfile = bundle_dir / "Dockerfile"
    metadata = bundle_dir / "bundle.json"
    if not dockerfile.exists() or not metadata.exists():
        print(f"❌ Not a runtime bundle: {bundle_dir}", file=sys.stderr)
        print("   Run crossbake build or crossbake package first", file=sys.stderr)
        return 1
    meta = json.loads(metadata.read_text())
    cmd = [
        "docker",
        "build",
        "-t",
        tag,
        "--rm",
        "--force-rm",
        "-f",
        str(dockerfile),
        "--label",
        f"crossbake.target={meta.get('target', '')}",
        "--label",
        f"crossbake.uid={meta.get('uid', '')}",
        str(bundle_dir),
    ]
    if dry_run:
        print(f"[dry-run] would: {' '.join(cmd)}")
        return 0
    print(f"🔨 Building image {tag} from {bundle_dir}")
    r = subprocess.run(cmd, cwd=str(bundle_dir))
    if r.returncode != 0:
        print("❌ Docker build failed", file=sys.stderr)
        return 1
    print(f"✅ Docker image ready: {tag}")
    return 0
