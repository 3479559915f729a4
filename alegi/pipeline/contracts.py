"""Typed contracts shared by the stage graph, handlers and orchestrator."""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Protocol

from alegi.cases.models import CaseDocumentRecord, CaseRecord


class StageKind(StrEnum):
  EXTRACT_DOCUMENTS = "extract_documents"
  INTAKE_ANALYSIS = "intake_analysis"
  PERSIST_INTAKE = "persist_intake"
  JURISDICTION_ANALYSIS = "jurisdiction_analysis"
  CASE_ENHANCEMENT = "case_enhancement"
  PERSIST_ENHANCEMENT = "persist_enhancement"
  CASE_LAW_SEARCH = "case_law_search"
  OPINION_ANALYSIS = "opinion_analysis"
  PERSIST_OPINIONS = "persist_opinions"
  COMPLEXITY_SCORE = "complexity_score"
  OUTCOME_PREDICTION = "outcome_prediction"
  SUPPLEMENTARY_ANALYSIS = "supplementary_analysis"
  FINAL_PERSIST = "final_persist"


@dataclass(frozen=True)
class StageSpec:
  kind: StageKind
  depends_on: tuple[StageKind, ...] = ()
  required: bool = True


@dataclass
class PipelineContext:
  """Accumulates stage outputs keyed by stage name for the duration of one run."""

  case: CaseRecord
  documents: list[CaseDocumentRecord] = field(default_factory=list)
  outputs: dict[str, dict[str, Any]] = field(default_factory=dict)

  def output(self, kind: StageKind) -> dict[str, Any]:
    return self.outputs.get(kind.value, {})

  def merge(self, kind: StageKind, update: Mapping[str, Any]) -> None:
    self.outputs[kind.value] = dict(update)


@dataclass(frozen=True)
class StageResult:
  """Partial context update; it is merged into the context and checkpointed as the stage output."""

  output: dict[str, Any]


StageHandler = Callable[[PipelineContext], Awaitable[StageResult]]


class JsonCompleter(Protocol):
  async def complete_json(self, *, model: str, system: str, prompt: str, operation: str) -> dict[str, Any]: ...


class CaseLawSource(Protocol):
  name: str

  async def search(self, query: str, *, court: str | None = None, filed_after: str | None = None) -> list[dict[str, Any]]: ...


class OpinionFetcher(Protocol):
  async def fetch_opinion_text(self, opinion_id: int | str) -> str: ...


class TextExtractor(Protocol):
  async def extract_text(self, file_url: str) -> str: ...
