"""`crossbake provision`: install and verify the pinned toolchain for a target."""

import sys

from crossbake.build.run import provision_toolchain
from crossbake.cli.parse_common import add_common_args, config_from_args, target_from_args
from crossbake.errors import StageFailure


def run_provision_argv(argv: list[str] | None = None) -> None:
    import argparse

    if argv is None:
        argv = sys.argv[2:] if len(sys.argv) > 2 else []
    ap = argparse.ArgumentParser(prog="crossbake provision", description="Provision the toolchain")
    ap.add_argument("target", nargs="?", default=None, help="Target triple or arch alias")
    ap.add_argument("--env", action="store_true", help="Print the environment bindings (KEY=VALUE)")
    add_common_args(ap)
    args = ap.parse_args(argv)

    config = config_from_args(args)
    if config is None:
        sys.exit(1)
    target = target_from_args(config, args.target)
    if target is None:
        sys.exit(1)
    try:
        env = provision_toolchain(config, target)
    except StageFailure as e:
        print(f"❌ {e.summary()}", file=sys.stderr)
        sys.exit(1)

    if args.env:
        for comp in env.values():
            for key, value in sorted(comp.bindings().items()):
                print(f"{key}={value}")
    else:
        for name, info in env.describe().items():
            print(f"  {name:<20} {info['version']:<10} {info['binary']}")
    sys.exit(0)
