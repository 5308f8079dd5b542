"""Toolchain provisioning: pinned compiler, linker, codegen backend, protocol compiler."""

from .model import ComponentSpec, ToolchainComponent, ToolchainEnvironment
from .provision import check_version, install_dir, provision, provision_component, version_matches

__all__ = [
    "ComponentSpec",
    "ToolchainComponent",
    "ToolchainEnvironment",
    "check_version",
    "install_dir",
    "provision",
    "provision_component",
    "version_matches",
]
