"""crossbake: staged, cache-aware cross-compilation builds for cargo workspaces."""

__version__ = "0.1.0"
