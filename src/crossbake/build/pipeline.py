"""Strict linear stage executor: PENDING -> RUNNING -> SUCCEEDED | FAILED, fail-fast, no retries."""

from __future__ import annotations

import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum

from crossbake.build.stages import BuildStage, PipelineContext
from crossbake.errors import CrossbakeError, StageFailure

log = logging.getLogger(__name__)


class StageStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class StageRecord:
    name: str
    status: StageStatus = StageStatus.PENDING
    seconds: float = 0.0
    error: CrossbakeError | None = None


@dataclass
class PipelineReport:
    target: str
    stages: list[StageRecord] = field(default_factory=list)
    cache_outcome: str | None = None

    def status(self, name: str) -> StageStatus:
        for rec in self.stages:
            if rec.name == name:
                return rec.status
        raise KeyError(name)

    @property
    def succeeded(self) -> bool:
        return all(rec.status is StageStatus.SUCCEEDED for rec in self.stages)


class Pipeline:
    def __init__(self, stages: Sequence[BuildStage]) -> None:
        names = [s.name for s in stages]
        if len(set(names)) != len(names):
            msg = f"Duplicate stage names: {names}"
            raise ValueError(msg)
        self.stages = list(stages)

    def run(self, ctx: PipelineContext, report: PipelineReport | None = None) -> PipelineReport:
        """Run every stage in order; the first failure is raised as StageFailure.

        Pass a report to inspect stage states after a failure.
        """
        report = report or PipelineReport(target=ctx.target)
        report.stages = [StageRecord(s.name) for s in self.stages]
        for stage, rec in zip(self.stages, report.stages, strict=True):
            rec.status = StageStatus.RUNNING
            log.debug("stage %s: running", stage.name)
            start = time.monotonic()
            try:
                stage.run(ctx)
                if not stage.is_complete(ctx):
                    msg = f"Stage '{stage.name}' finished without producing its outputs"
                    raise stage.error_type(msg, context={"path": str(stage.output_dir(ctx))})
            except CrossbakeError as e:
                rec.status = StageStatus.FAILED
                rec.error = e
                raise StageFailure(stage.name, e) from e
            except OSError as e:
                err = stage.error_type(str(e), context={"path": str(e.filename or "")})
                rec.status = StageStatus.FAILED
                rec.error = err
                raise StageFailure(stage.name, err) from e
            except BaseException:
                # bugs and interrupts propagate unwrapped
                rec.status = StageStatus.FAILED
                raise
            finally:
                rec.seconds = time.monotonic() - start
            rec.status = StageStatus.SUCCEEDED
            log.debug("stage %s: succeeded in %.1fs", stage.name, rec.seconds)
        report.cache_outcome = ctx.cache_outcome
        return report
