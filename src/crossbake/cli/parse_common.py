"""Shared CLI flags (--project-root, --config, --cache-dir, ...) and config loading."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from crossbake.build.host_aware import resolve_target
from crossbake.config import BuildConfig, load_config
from crossbake.errors import CrossbakeError


def path_resolver(s: str) -> Path:
    """Resolve a path argument to absolute Path (e.g. --project-root, --cache-dir)."""
    return Path(s).resolve()


def add_common_args(ap: argparse.ArgumentParser) -> None:
    ap.add_argument(
        "--project-root",
        type=path_resolver,
        default=Path.cwd(),
        help="Project root (default: cwd)",
    )
    ap.add_argument("--config", type=path_resolver, default=None, help="Config file (default: crossbake.yaml)")
    ap.add_argument("--cache-dir", type=path_resolver, default=None, help="Dependency cache root")
    ap.add_argument("--install-root", type=path_resolver, default=None, help="Toolchain install root")
    ap.add_argument("-v", "--verbose", action="store_true", help="Debug logging")


def setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


def config_from_args(args: argparse.Namespace) -> BuildConfig | None:
    """Load config and apply flag overrides; prints and returns None on error."""
    setup_logging(getattr(args, "verbose", False))
    try:
        config = load_config(args.project_root, args.config)
    except CrossbakeError as e:
        print(f"❌ {e.kind}: {e}", file=sys.stderr)
        return None
    modules = getattr(args, "module", None)
    return config.with_overrides(
        cache_dir=args.cache_dir,
        install_root=args.install_root,
        modules=tuple(modules) if modules else None,
    )


def target_from_args(config: BuildConfig, value: str | None) -> str | None:
    """Positional target/arch, else the configured target. Prints and returns None when invalid."""
    if not value:
        return config.target
    try:
        return resolve_target(value)
    except ValueError as e:
        print(f"❌ {e}", file=sys.stderr)
        return None
