"""`crossbake build`: provision, cache dependencies, build application modules, package."""

import sys

from crossbake.build.run import run_build
from crossbake.cli.parse_common import add_common_args, config_from_args, target_from_args


def run_build_argv(argv: list[str] | None = None) -> None:
    """Parse argv and run the staged build (target, --module, --image-tag, common flags)."""
    import argparse

    if argv is None:
        argv = sys.argv[2:] if len(sys.argv) > 2 else []  # skip 'crossbake build'
    ap = argparse.ArgumentParser(prog="crossbake build", description="Staged, cache-aware cross build")
    ap.add_argument(
        "target",
        nargs="?",
        default=None,
        help="Target triple or amd64, arm64, arm7 (default: config target)",
    )
    ap.add_argument(
        "--module",
        action="append",
        default=None,
        help="Module to build (repeatable; default: all)",
    )
    ap.add_argument("--image-tag", default=None, help="Also docker build the bundle with this tag")
    add_common_args(ap)
    args = ap.parse_args(argv)

    config = config_from_args(args)
    if config is None:
        sys.exit(1)
    target = target_from_args(config, args.target)
    if target is None:
        sys.exit(1)
    rc = run_build(config, target, image_tag=args.image_tag)
    sys.exit(rc)
