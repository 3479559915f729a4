"""Runs the stage graph for one case, checkpointing each stage as it completes."""

from __future__ import annotations

import logging
import traceback
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from alegi.cases.models import CaseRecord, ProcessingErrorRecord, StageRecord
from alegi.core.errors import PipelineStageFailure
from alegi.pipeline.contracts import PipelineContext, StageHandler, StageKind, StageResult, StageSpec
from alegi.pipeline.graph import validate_stage_graph
from alegi.storage.cases_repo import CasesRepository

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
  return datetime.now(UTC)


def summarize_outputs(outputs: Mapping[str, dict[str, Any]]) -> dict[str, Any]:
  """Headline results reported with a completed status."""
  prediction = outputs.get(StageKind.OUTCOME_PREDICTION.value) or {}
  complexity = outputs.get(StageKind.COMPLEXITY_SCORE.value) or {}
  return {
    "outcome_prediction_score": prediction.get("outcome_prediction_score"),
    "settlement_probability": prediction.get("settlement_probability"),
    "risk_level": prediction.get("risk_level"),
    "prediction_confidence": prediction.get("prediction_confidence"),
    "complexity_score": complexity.get("complexity_score"),
  }


@dataclass(frozen=True)
class PipelineOutcome:
  case_id: str
  succeeded: bool
  completed_stages: tuple[str, ...]
  failed_stage: str | None = None
  error: str | None = None
  skipped_optional: tuple[str, ...] = ()
  outputs: dict[str, dict[str, Any]] = field(default_factory=dict, repr=False)

  def summary(self) -> dict[str, Any]:
    return summarize_outputs(self.outputs)

  def as_job_result(self) -> dict[str, Any]:
    result: dict[str, Any] = {"case_id": self.case_id, "outcome": "completed" if self.succeeded else "failed", "completed_stages": list(self.completed_stages)}
    if self.failed_stage:
      result["failed_stage"] = self.failed_stage
      result["error"] = self.error
    if self.skipped_optional:
      result["skipped_optional"] = list(self.skipped_optional)
    return result


class PipelineOrchestrator:
  """Executes stages strictly in graph order; the first required failure ends the run."""

  def __init__(self, *, graph: Sequence[StageSpec], handlers: Mapping[StageKind, StageHandler], cases_repo: CasesRepository, clock: Callable[[], datetime] = _utc_now) -> None:
    validate_stage_graph(graph, handlers)
    self._graph = tuple(graph)
    self._handlers = dict(handlers)
    self._cases_repo = cases_repo
    self._clock = clock

  @property
  def graph(self) -> tuple[StageSpec, ...]:
    return self._graph

  async def run(self, case: CaseRecord) -> PipelineOutcome:
    documents = await self._cases_repo.list_documents(case.id)
    ctx = PipelineContext(case=case, documents=documents)

    # A new run supersedes every checkpoint from the previous one.
    for position, spec in enumerate(self._graph):
      await self._cases_repo.save_stage(StageRecord(case_id=case.id, stage_name=spec.kind.value, position=position, status="pending"))

    completed: list[str] = []
    skipped: list[str] = []
    finished: set[StageKind] = set()
    for position, spec in enumerate(self._graph):
      stage_name = spec.kind.value
      unmet = [dependency.value for dependency in spec.depends_on if dependency not in finished]
      if unmet:
        failure = PipelineStageFailure(stage_name, f"Dependencies not completed: {', '.join(unmet)}")
        await self._record_failure(case, spec, position, failure, started_at=None)
        return PipelineOutcome(case_id=case.id, succeeded=False, completed_stages=tuple(completed), failed_stage=stage_name, error=failure.case_message, outputs=dict(ctx.outputs))

      started_at = self._clock()
      await self._cases_repo.save_stage(StageRecord(case_id=case.id, stage_name=stage_name, position=position, status="running", started_at=started_at))
      logger.info("Case %s stage %s/%s %s started", case.id, position + 1, len(self._graph), stage_name)
      try:
        result = await self._handlers[spec.kind](ctx)
        if not isinstance(result, StageResult):
          raise TypeError(f"Stage handler returned {type(result).__name__}, expected StageResult")
      except Exception as exc:  # noqa: BLE001
        failure = exc if isinstance(exc, PipelineStageFailure) else PipelineStageFailure(stage_name, str(exc) or type(exc).__name__)
        await self._record_failure(case, spec, position, failure, started_at=started_at, cause=exc)
        if not spec.required:
          logger.warning("Optional stage %s failed for case %s; continuing: %s", stage_name, case.id, failure)
          skipped.append(stage_name)
          continue
        logger.error("Case %s failed at stage %s: %s", case.id, stage_name, failure)
        return PipelineOutcome(case_id=case.id, succeeded=False, completed_stages=tuple(completed), failed_stage=stage_name, error=failure.case_message, skipped_optional=tuple(skipped), outputs=dict(ctx.outputs))

      ctx.merge(spec.kind, result.output)
      await self._cases_repo.save_stage(
        StageRecord(case_id=case.id, stage_name=stage_name, position=position, status="completed", output=result.output, started_at=started_at, completed_at=self._clock())
      )
      finished.add(spec.kind)
      completed.append(stage_name)

    logger.info("Case %s pipeline completed (%s stages)", case.id, len(completed))
    return PipelineOutcome(case_id=case.id, succeeded=True, completed_stages=tuple(completed), skipped_optional=tuple(skipped), outputs=dict(ctx.outputs))

  async def _record_failure(self, case: CaseRecord, spec: StageSpec, position: int, failure: PipelineStageFailure, *, started_at: datetime | None, cause: BaseException | None = None) -> None:
    stage_name = spec.kind.value
    await self._cases_repo.save_stage(
      StageRecord(case_id=case.id, stage_name=stage_name, position=position, status="failed", error=str(failure), started_at=started_at, completed_at=self._clock())
    )
    error = cause or failure
    await self._cases_repo.record_processing_error(
      ProcessingErrorRecord(
        case_id=case.id,
        stage_name=stage_name,
        error_type=type(error).__name__,
        error_message=str(failure),
        error_stack="".join(traceback.format_exception(error)),
        context={"position": position, "required": spec.required, **failure.detail},
      )
    )
