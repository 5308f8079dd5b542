"""Render the runtime Dockerfile from a {{placeholder}} template."""

from __future__ import annotations

import json
from pathlib import Path

DEFAULT_TEMPLATE = """\
# Runtime image for {{service_name}} ({{target}}). Generated by crossbake.
FROM {{base_image}}
ENV ID={{uid}}
WORKDIR {{app_dir}}

# tini reaps orphaned children and forwards signals as PID 1.
RUN set -ex; \\
    apk add --no-cache {{init_package}}; \\
    mkdir -p {{app_dir}}/data

RUN set -ex; \\
    addgroup -g ${ID} {{user}}; \\
    adduser -D -G {{user}} -u ${ID} -g "" -h {{app_dir}} {{user}}

COPY --chown={{uid}}:{{uid}} rootfs{{app_dir}}/ {{app_dir}}/
RUN chown -R ${ID}:${ID} {{app_dir}}
{{expose}}
USER ${ID}

ENTRYPOINT {{entrypoint}}
"""


def render_dockerfile(
    *,
    service_name: str,
    target: str,
    base_image: str,
    uid: int,
    user: str,
    app_dir: str,
    init_package: str,
    ports: tuple[int, ...],
    entrypoint: list[str],
    template_path: Path | None = None,
) -> str:
    """Fill the template. template_path overrides the built-in template."""
    content = template_path.read_text() if template_path is not None else DEFAULT_TEMPLATE
    expose = f"EXPOSE {' '.join(str(p) for p in ports)}" if ports else ""
    replacements = {
        "{{service_name}}": service_name,
        "{{target}}": target,
        "{{base_image}}": base_image,
        "{{uid}}": str(uid),
        "{{user}}": user,
        "{{app_dir}}": app_dir,
        "{{init_package}}": init_package,
        "{{expose}}": expose,
        "{{entrypoint}}": json.dumps(entrypoint),
    }
    for key, value in replacements.items():
        content = content.replace(key, value)
    return content
