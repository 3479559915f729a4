"""The case pipeline's stage graph and its startup validation."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence

from alegi.core.errors import StageRegistryError
from alegi.pipeline.contracts import StageHandler, StageKind, StageSpec

logger = logging.getLogger(__name__)

S = StageKind

CASE_PIPELINE: tuple[StageSpec, ...] = (
  StageSpec(S.EXTRACT_DOCUMENTS),
  StageSpec(S.INTAKE_ANALYSIS, depends_on=(S.EXTRACT_DOCUMENTS,)),
  StageSpec(S.PERSIST_INTAKE, depends_on=(S.INTAKE_ANALYSIS,)),
  StageSpec(S.JURISDICTION_ANALYSIS, depends_on=(S.INTAKE_ANALYSIS,)),
  StageSpec(S.CASE_ENHANCEMENT, depends_on=(S.INTAKE_ANALYSIS, S.JURISDICTION_ANALYSIS)),
  StageSpec(S.PERSIST_ENHANCEMENT, depends_on=(S.JURISDICTION_ANALYSIS, S.CASE_ENHANCEMENT)),
  StageSpec(S.CASE_LAW_SEARCH, depends_on=(S.INTAKE_ANALYSIS, S.JURISDICTION_ANALYSIS, S.CASE_ENHANCEMENT)),
  StageSpec(S.OPINION_ANALYSIS, depends_on=(S.CASE_LAW_SEARCH,)),
  StageSpec(S.PERSIST_OPINIONS, depends_on=(S.CASE_LAW_SEARCH, S.OPINION_ANALYSIS)),
  StageSpec(S.COMPLEXITY_SCORE, depends_on=(S.INTAKE_ANALYSIS, S.CASE_ENHANCEMENT, S.OPINION_ANALYSIS)),
  StageSpec(S.OUTCOME_PREDICTION, depends_on=(S.INTAKE_ANALYSIS, S.JURISDICTION_ANALYSIS, S.CASE_ENHANCEMENT, S.OPINION_ANALYSIS, S.COMPLEXITY_SCORE)),
  StageSpec(S.SUPPLEMENTARY_ANALYSIS, depends_on=(S.OUTCOME_PREDICTION,), required=False),
  StageSpec(S.FINAL_PERSIST, depends_on=(S.COMPLEXITY_SCORE, S.OUTCOME_PREDICTION)),
)


def validate_stage_graph(graph: Sequence[StageSpec], handlers: Mapping[StageKind, StageHandler]) -> None:
  """Fail fast when the graph and handler mapping disagree."""
  if not graph:
    raise StageRegistryError("Stage graph is empty")

  seen: set[StageKind] = set()
  optional_stages = {spec.kind for spec in graph if not spec.required}
  for spec in graph:
    if not isinstance(spec.kind, StageKind):
      raise StageRegistryError(f"Unknown stage kind: {spec.kind!r}")
    if spec.kind in seen:
      raise StageRegistryError(f"Stage {spec.kind} is declared twice")
    missing = [dependency for dependency in spec.depends_on if dependency not in seen]
    if missing:
      raise StageRegistryError(f"Stage {spec.kind} depends on {', '.join(missing)} which do not run before it")
    optional = [dependency for dependency in spec.depends_on if dependency in optional_stages]
    if spec.required and optional:
      raise StageRegistryError(f"Required stage {spec.kind} cannot depend on optional stages {', '.join(optional)}")
    if spec.kind not in handlers:
      raise StageRegistryError(f"No handler registered for stage {spec.kind}")
    seen.add(spec.kind)

  extra = [str(kind) for kind in handlers if kind not in seen]
  if extra:
    raise StageRegistryError(f"Handlers registered for undeclared stages: {', '.join(extra)}")

  terminal = graph[-1]
  if not terminal.required:
    raise StageRegistryError(f"Terminal stage {terminal.kind} must be required")
  logger.info("Validated stage graph with %s stages", len(graph))
