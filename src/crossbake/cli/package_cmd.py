"""`crossbake package`: bundle already-built binaries into a runtime bundle."""

import sys

from crossbake.cli.parse_common import add_common_args, config_from_args, path_resolver
from crossbake.docker.build_image import run as run_build_image
from crossbake.docker.package import package_artifacts
from crossbake.errors import PackagingError


def run_package_argv(argv: list[str] | None = None) -> None:
    import argparse

    if argv is None:
        argv = sys.argv[2:] if len(sys.argv) > 2 else []
    ap = argparse.ArgumentParser(prog="crossbake package", description="Assemble a runtime bundle")
    ap.add_argument("binaries", nargs="+", type=path_resolver, help="Compiled binaries")
    ap.add_argument("--config-dir", type=path_resolver, default=None, help="Static configuration tree")
    ap.add_argument("--output", type=path_resolver, required=True, help="Bundle directory")
    ap.add_argument("--target", default="", help="Target triple recorded in bundle.json")
    ap.add_argument("--image-tag", default=None, help="Also docker build the bundle with this tag")
    add_common_args(ap)
    args = ap.parse_args(argv)

    config = config_from_args(args)
    if config is None:
        sys.exit(1)
    config_dir = args.config_dir or config.config_dir
    try:
        bundle = package_artifacts(
            args.binaries, config_dir, config.runtime, args.output, target=args.target
        )
    except PackagingError as e:
        print(f"❌ {e.kind}: {e}", file=sys.stderr)
        sys.exit(1)
    if args.image_tag:
        sys.exit(run_build_image(bundle.path, args.image_tag))
    sys.exit(0)
