"""Typed build errors. Each carries a stable kind, an optional hint, and string context."""

from __future__ import annotations

from collections.abc import Mapping


class CrossbakeError(Exception):
    """Base error: kind, optional hint, context (component/module/path)."""

    kind = "CrossbakeError"

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.hint = hint
        self.context = dict(context or {})

    def __str__(self) -> str:
        parts = [self.message]
        for k, v in self.context.items():
            if v:
                parts.append(f"  {k}: {v}")
        if self.hint:
            parts.append(f"  Hint: {self.hint}")
        return "\n".join(parts)

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "kind": self.kind,
            "message": self.message,
            "context": dict(self.context),
        }
        if self.hint is not None:
            payload["hint"] = self.hint
        return payload


class ConfigError(CrossbakeError):
    kind = "ConfigError"


class WorkspaceValidationError(CrossbakeError):
    kind = "WorkspaceValidationError"


class ProvisioningError(CrossbakeError):
    kind = "ProvisioningError"


class VersionMismatchError(ProvisioningError):
    kind = "VersionMismatchError"


class CompilationError(CrossbakeError):
    kind = "CompilationError"


class CacheError(CrossbakeError):
    kind = "CacheError"


class PackagingError(CrossbakeError):
    kind = "PackagingError"


class StageFailure(CrossbakeError):
    """A stage failed; wraps the original error and names the stage."""

    kind = "StageFailure"

    def __init__(self, stage: str, error: CrossbakeError) -> None:
        super().__init__(
            error.message,
            hint=error.hint,
            context={"stage": stage, **error.context},
        )
        self.stage = stage
        self.error = error

    def summary(self) -> str:
        """Single terminal line: stage, error kind, offending component/module."""
        subject = (
            self.error.context.get("component")
            or self.error.context.get("module")
            or self.error.context.get("path")
        )
        suffix = f" [{subject}]" if subject else ""
        return f"stage '{self.stage}' failed: {self.error.kind}: {self.error.message}{suffix}"


__all__ = [
    "CacheError",
    "CompilationError",
    "ConfigError",
    "CrossbakeError",
    "PackagingError",
    "ProvisioningError",
    "StageFailure",
    "VersionMismatchError",
    "WorkspaceValidationError",
]
