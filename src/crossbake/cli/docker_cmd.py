"""`crossbake docker` subcommands: run-build, build-image."""

import sys
from pathlib import Path

from crossbake.cli.parse_common import config_from_args, path_resolver, setup_logging
from crossbake.docker.build_image import run as run_build_image
from crossbake.docker.driver import run as run_driver


def _run_build(rest: list[str]) -> int:
    import argparse

    ap = argparse.ArgumentParser(
        prog="crossbake docker run-build",
        description="Build the toolchain image, then run crossbake build inside it",
    )
    ap.add_argument("target", help="Target triple or arch alias passed to the inner build")
    ap.add_argument("--project-root", type=path_resolver, default=Path.cwd())
    ap.add_argument("--config", type=path_resolver, default=None)
    ap.add_argument("--cache-dir", type=path_resolver, default=None)
    ap.add_argument("--install-root", type=path_resolver, default=None)
    ap.add_argument("--home", type=path_resolver, default=None, help="Host home to mount (default: $HOME)")
    ap.add_argument("--skip-image-build", action="store_true", help="Reuse an existing toolchain image")
    ap.add_argument("-v", "--verbose", action="store_true")
    # everything unknown (--module, --image-tag, ...) goes to the inner build
    args, inner = ap.parse_known_args(rest)

    config = config_from_args(args)
    if config is None:
        return 1
    build_argv = [args.target, "--cache-dir", str(config.cache_dir)]
    build_argv += ["--install-root", str(config.install_root)]
    if args.config is not None:
        build_argv += ["--config", str(args.config)]
    if args.verbose:
        build_argv.append("-v")
    build_argv += inner
    return run_driver(
        config.driver,
        config.project_root,
        build_argv,
        config.cache_dir,
        home=args.home,
        skip_image_build=args.skip_image_build,
    )


def run_docker_argv(argv: list[str] | None = None) -> None:
    """Parse docker subcommand from argv and run. argv defaults to sys.argv[2:] when called from main."""
    if argv is None:
        argv = sys.argv[2:] if len(sys.argv) > 2 else []
    if not argv:
        print("crossbake docker: missing subcommand", file=sys.stderr)
        print("  run-build, build-image", file=sys.stderr)
        sys.exit(1)
    cmd = argv[0]
    rest = argv[1:]

    if cmd == "run-build":
        sys.exit(_run_build(rest))

    if cmd == "build-image":
        if len(rest) < 2:
            print(
                "Usage: crossbake docker build-image <bundle_dir> <tag> [--dry-run] [-v]",
                file=sys.stderr,
            )
            sys.exit(1)
        setup_logging("-v" in rest or "--verbose" in rest)
        bundle = Path(rest[0]).resolve()
        rc = run_build_image(bundle, rest[1], dry_run="--dry-run" in rest)
        sys.exit(rc)

    print(f"Error: Unknown docker subcommand: {cmd}", file=sys.stderr)
    sys.exit(1)
