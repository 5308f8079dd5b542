"""Main CLI entry point for crossbake."""

import sys

from crossbake.cli import (
    build as build_cli,
)
from crossbake.cli import (
    cache_cmd,
    docker_cmd,
    fingerprint_cmd,
    package_cmd,
    provision_cmd,
)


def main() -> None:
    """Main CLI entry point."""
    if len(sys.argv) < 2:
        print("Usage: crossbake <command> [args...]", file=sys.stderr)
        print("Commands:", file=sys.stderr)
        print(
            "  build [target|arch]    - Provision, cache dependencies, build modules, package",
            file=sys.stderr,
        )
        print(
            "  docker <cmd> ...       - run-build (build inside the toolchain image), build-image",
            file=sys.stderr,
        )
        print("  provision [target]     - Install and verify the pinned toolchain", file=sys.stderr)
        print("  fingerprint            - Print the dependency fingerprint", file=sys.stderr)
        print("  cache list|prune|remove - Inspect the dependency cache", file=sys.stderr)
        print("  package <binary>...    - Assemble a runtime bundle", file=sys.stderr)
        sys.exit(1)

    command = sys.argv[1]

    if command == "build":
        build_cli.run_build_argv()
    elif command == "docker":
        docker_cmd.run_docker_argv()
    elif command == "provision":
        provision_cmd.run_provision_argv()
    elif command == "fingerprint":
        fingerprint_cmd.run_fingerprint_argv()
    elif command == "cache":
        cache_cmd.run_cache_argv()
    elif command == "package":
        package_cmd.run_package_argv()
    else:
        print(f"Error: Unknown command: {command}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
