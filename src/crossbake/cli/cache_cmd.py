"""`crossbake cache` subcommands: list, prune, remove."""

import sys

from crossbake.cache import CacheStore
from crossbake.cli.parse_common import add_common_args, config_from_args
from crossbake.errors import CacheError


def run_cache_argv(argv: list[str] | None = None) -> None:
    import argparse

    if argv is None:
        argv = sys.argv[2:] if len(sys.argv) > 2 else []
    ap = argparse.ArgumentParser(prog="crossbake cache", description="Inspect the dependency cache")
    sub = ap.add_subparsers(dest="action", required=True)
    ls = sub.add_parser("list", help="List published layers")
    ls.add_argument("--target", default=None, help="Only this target triple")
    add_common_args(ls)
    prune = sub.add_parser("prune", help="Remove staging dirs left by interrupted builds")
    add_common_args(prune)
    rm = sub.add_parser("remove", help="Remove one published layer")
    rm.add_argument("fingerprint")
    rm.add_argument("target")
    add_common_args(rm)
    args = ap.parse_args(argv)

    config = config_from_args(args)
    if config is None:
        sys.exit(1)
    store = CacheStore(config.cache_dir)

    try:
        if args.action == "list":
            layers = store.list_layers(args.target)
            if not layers:
                print(f"Info: no cache layers under {config.cache_dir}")
            for layer in layers:
                created = layer.manifest.get("created", "")
                toolchain = str(layer.manifest.get("toolchain", ""))[:12]
                print(f"{layer.target}  {layer.fingerprint}  {created}  toolchain={toolchain}")
        elif args.action == "prune":
            removed = store.prune_staging()
            for p in removed:
                print(f"  removed {p}")
            print(f"✅ Pruned {len(removed)} staging dir(s)")
        else:
            if not store.remove(args.fingerprint, args.target):
                print(f"❌ No layer {args.target}/{args.fingerprint}", file=sys.stderr)
                sys.exit(1)
            print(f"✅ Removed {args.target}/{args.fingerprint}")
    except CacheError as e:
        print(f"❌ {e.kind}: {e}", file=sys.stderr)
        sys.exit(1)
    sys.exit(0)
