"""`crossbake fingerprint`: print the dependency fingerprint of the workspace."""

import json
import sys

from crossbake.cli.parse_common import add_common_args, config_from_args
from crossbake.errors import CrossbakeError
from crossbake.fingerprint import fingerprint
from crossbake.workspace import load_workspace, validate_workspace


def run_fingerprint_argv(argv: list[str] | None = None) -> None:
    import argparse

    if argv is None:
        argv = sys.argv[2:] if len(sys.argv) > 2 else []
    ap = argparse.ArgumentParser(prog="crossbake fingerprint", description="Dependency fingerprint")
    ap.add_argument("--explain", action="store_true", help="Also print the hashed entries")
    ap.add_argument("--json", action="store_true", help="JSON output")
    add_common_args(ap)
    args = ap.parse_args(argv)

    config = config_from_args(args)
    if config is None:
        sys.exit(1)
    try:
        ws = load_workspace(config.workspace_manifest)
        validate_workspace(ws)
    except CrossbakeError as e:
        print(f"❌ {e.kind}: {e}", file=sys.stderr)
        sys.exit(1)
    fp = fingerprint(ws)

    if args.json:
        payload = {"fingerprint": fp.digest, "entries": [list(e) for e in fp.entries]}
        print(json.dumps(payload, indent=2))
    else:
        print(fp.digest)
        if args.explain:
            for module, dep, constraint in fp.entries:
                print(f"  {module:<24} {dep:<32} {constraint}")
    sys.exit(0)
