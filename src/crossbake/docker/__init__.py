"""Runtime packaging and container driver: bundle assembly, Dockerfile rendering, image build, docker run."""

from .build_image import run as run_build_image
from .dockerfile import render_dockerfile
from .driver import DriverSpec, build_toolchain_image, docker_run_command
from .driver import run as run_driver
from .package import RuntimeArtifactBundle, RuntimeSpec, package_artifacts

__all__ = [
    "DriverSpec",
    "RuntimeArtifactBundle",
    "RuntimeSpec",
    "build_toolchain_image",
    "docker_run_command",
    "package_artifacts",
    "render_dockerfile",
    "run_build_image",
    "run_driver",
]
