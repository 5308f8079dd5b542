"""Workspace descriptor: load from YAML or cargo manifests, validate."""

from .loader import load_cargo_workspace, load_workspace, load_yaml_workspace
from .model import DependencySpec, ModuleSpec, WorkspaceDescriptor
from .validate import find_problems, validate_workspace

__all__ = [
    "DependencySpec",
    "ModuleSpec",
    "WorkspaceDescriptor",
    "find_problems",
    "load_cargo_workspace",
    "load_workspace",
    "load_yaml_workspace",
    "validate_workspace",
]
