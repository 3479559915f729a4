"""Handlers for each StageKind of the case pipeline."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from typing import Any

from alegi.core.errors import ExternalServiceError, PipelineStageFailure
from alegi.pipeline import prompts
from alegi.pipeline.contracts import CaseLawSource, JsonCompleter, OpinionFetcher, PipelineContext, StageHandler, StageKind, StageResult, TextExtractor
from alegi.pipeline.normalize import normalize_complexity, normalize_prediction
from alegi.services.documents import infer_document_type
from alegi.storage.cases_repo import CasesRepository

logger = logging.getLogger(__name__)

_MAX_DOCUMENT_CHARS = 40000
_MAX_PRECEDENTS = 20


def _as_text(value: Any) -> str:
  if isinstance(value, list):
    return " ".join(str(item) for item in value if item)
  return str(value or "")


def build_case_law_queries(ctx: PipelineContext) -> list[str]:
  """Primary query from the claims, secondary from the refined cause of action and jurisdiction."""
  intake = ctx.output(StageKind.INTAKE_ANALYSIS)
  enhancement = ctx.output(StageKind.CASE_ENHANCEMENT)
  jurisdiction = ctx.output(StageKind.JURISDICTION_ANALYSIS)
  primary = " ".join(part for part in (_as_text(intake.get("case_type") or ctx.case.case_type), _as_text(intake.get("legal_claims"))) if part).strip()
  secondary = " ".join(part for part in (_as_text(enhancement.get("search_terms") or enhancement.get("cause_of_action")), _as_text(jurisdiction.get("jurisdiction"))) if part).strip()
  queries: list[str] = []
  for query in (primary, secondary):
    if query and query not in queries:
      queries.append(query[:500])
  return queries


class CaseStages:
  """Builds the StageKind -> handler mapping around injected collaborators."""

  def __init__(
    self,
    *,
    llm: JsonCompleter,
    cases_repo: CasesRepository,
    case_law_sources: Sequence[CaseLawSource],
    model_for: Callable[[str], str],
    opinion_fetcher: OpinionFetcher | None = None,
    extractor: TextExtractor | None = None,
    max_opinions: int = 5,
    filed_after: str | None = "2020-01-01",
  ) -> None:
    self._llm = llm
    self._cases_repo = cases_repo
    self._sources = tuple(case_law_sources)
    self._model_for = model_for
    self._opinion_fetcher = opinion_fetcher
    self._extractor = extractor
    self._max_opinions = max_opinions
    self._filed_after = filed_after

  @classmethod
  def unbound_handlers(cls) -> dict[StageKind, StageHandler]:
    """Handler functions by stage kind; usable for startup validation before collaborators exist."""
    return {kind: getattr(cls, kind.value) for kind in StageKind if callable(getattr(cls, kind.value, None))}

  def handlers(self) -> dict[StageKind, StageHandler]:
    return {kind: getattr(self, kind.value) for kind in self.unbound_handlers()}

  async def _complete(self, kind: StageKind, system: str, sections: dict[str, Any]) -> dict[str, Any]:
    return await self._llm.complete_json(model=self._model_for(kind.value), system=system, prompt=prompts.build_prompt(sections), operation=kind.value.replace("_", " "))

  async def extract_documents(self, ctx: PipelineContext) -> StageResult:
    summaries: list[dict[str, Any]] = []
    texts: list[str] = []
    for document in ctx.documents:
      text = document.extracted_text
      if not text and document.file_url:
        if self._extractor is None:
          raise ExternalServiceError("document-extraction", "no extraction service is configured")
        text = await self._extractor.extract_text(document.file_url)
        await self._cases_repo.save_document_text(document.id, text)
      summaries.append({"document_id": document.id, "file_name": document.file_name, "document_type": infer_document_type(document.file_name), "characters": len(text or "")})
      if text:
        texts.append(f"--- {document.file_name} ---\n{text}")
    return StageResult({"documents": summaries, "document_text": "\n\n".join(texts)[:_MAX_DOCUMENT_CHARS]})

  async def intake_analysis(self, ctx: PipelineContext) -> StageResult:
    narrative = ctx.case.narrative_text
    document_text = ctx.output(StageKind.EXTRACT_DOCUMENTS).get("document_text", "")
    if not narrative and not document_text:
      raise PipelineStageFailure(StageKind.INTAKE_ANALYSIS.value, "Case has no narrative or document text to analyze")
    sections = {"Case name": ctx.case.case_name, "Stated case type": ctx.case.case_type, "Narrative": narrative, "Documents": document_text}
    return StageResult(await self._complete(StageKind.INTAKE_ANALYSIS, prompts.INTAKE_SYSTEM, sections))

  async def persist_intake(self, ctx: PipelineContext) -> StageResult:
    intake = ctx.output(StageKind.INTAKE_ANALYSIS)
    await self._cases_repo.save_analysis(ctx.case.id, "intake", intake)
    case_type = intake.get("case_type")
    await self._cases_repo.update_case_fields(ctx.case.id, case_type=case_type if isinstance(case_type, str) else None)
    return StageResult({"persisted": ["intake"]})

  async def jurisdiction_analysis(self, ctx: PipelineContext) -> StageResult:
    sections = {"Stated jurisdiction": ctx.case.jurisdiction, "Intake": ctx.output(StageKind.INTAKE_ANALYSIS), "Narrative": ctx.case.narrative_text}
    return StageResult(await self._complete(StageKind.JURISDICTION_ANALYSIS, prompts.JURISDICTION_SYSTEM, sections))

  async def case_enhancement(self, ctx: PipelineContext) -> StageResult:
    sections = {"Intake": ctx.output(StageKind.INTAKE_ANALYSIS), "Jurisdiction": ctx.output(StageKind.JURISDICTION_ANALYSIS), "Narrative": ctx.case.narrative_text}
    return StageResult(await self._complete(StageKind.CASE_ENHANCEMENT, prompts.ENHANCEMENT_SYSTEM, sections))

  async def persist_enhancement(self, ctx: PipelineContext) -> StageResult:
    jurisdiction = ctx.output(StageKind.JURISDICTION_ANALYSIS)
    await self._cases_repo.save_analysis(ctx.case.id, "jurisdiction", jurisdiction)
    await self._cases_repo.save_analysis(ctx.case.id, "enhancement", ctx.output(StageKind.CASE_ENHANCEMENT))
    value = jurisdiction.get("jurisdiction")
    await self._cases_repo.update_case_fields(ctx.case.id, jurisdiction=value if isinstance(value, str) else None)
    return StageResult({"persisted": ["jurisdiction", "enhancement"]})

  async def case_law_search(self, ctx: PipelineContext) -> StageResult:
    """Fan out every query to every source; tolerate failures while at least one sub-query succeeds."""
    queries = build_case_law_queries(ctx)
    if not queries:
      raise PipelineStageFailure(StageKind.CASE_LAW_SEARCH.value, "No search terms could be derived from the analysis")
    if not self._sources:
      raise PipelineStageFailure(StageKind.CASE_LAW_SEARCH.value, "No case-law sources are configured")

    court = ctx.output(StageKind.JURISDICTION_ANALYSIS).get("court_id")
    court = court if isinstance(court, str) and court else None
    pairs = [(source, query) for query in queries for source in self._sources]
    outcomes = await asyncio.gather(*(source.search(query, court=court, filed_after=self._filed_after) for source, query in pairs), return_exceptions=True)

    cases: list[dict[str, Any]] = []
    seen: set[str] = set()
    failures: list[dict[str, str]] = []
    succeeded = 0
    for (source, query), outcome in zip(pairs, outcomes, strict=True):
      if isinstance(outcome, BaseException):
        if not isinstance(outcome, Exception):
          raise outcome
        logger.warning("Case-law source %s failed for case %s: %s", source.name, ctx.case.id, outcome)
        failures.append({"source": source.name, "query": query, "error": str(outcome)})
        continue
      succeeded += 1
      for hit in outcome:
        key = str(hit.get("url") or hit.get("opinion_id") or hit.get("case_name"))
        if key in seen:
          continue
        seen.add(key)
        cases.append(hit)

    if succeeded == 0:
      detail = "; ".join(f"{failure['source']}: {failure['error']}" for failure in failures)
      raise PipelineStageFailure(StageKind.CASE_LAW_SEARCH.value, f"All case-law sources failed ({detail})", detail={"failures": failures})
    return StageResult({"queries": queries, "cases": cases[:_MAX_PRECEDENTS], "total_found": len(cases), "failed_sources": failures})

  async def opinion_analysis(self, ctx: PipelineContext) -> StageResult:
    cases = ctx.output(StageKind.CASE_LAW_SEARCH).get("cases", [])
    if not cases:
      return StageResult({"opinions_analyzed": 0, "insights": [], "overall_trend": "No comparable opinions found"})

    selected = cases[: self._max_opinions]
    texts: list[str | None] = [None] * len(selected)
    if self._opinion_fetcher is not None:
      fetchable = [(index, case["opinion_id"]) for index, case in enumerate(selected) if case.get("opinion_id")]
      fetched = await asyncio.gather(*(self._opinion_fetcher.fetch_opinion_text(opinion_id) for _, opinion_id in fetchable), return_exceptions=True)
      for (index, opinion_id), outcome in zip(fetchable, fetched, strict=True):
        if isinstance(outcome, Exception):
          logger.warning("Opinion %s could not be fetched: %s", opinion_id, outcome)
          continue
        if isinstance(outcome, BaseException):
          raise outcome
        texts[index] = outcome

    opinions = [{**case, "text": text or case.get("snippet")} for case, text in zip(selected, texts, strict=True)]
    sections = {"Case intake": ctx.output(StageKind.INTAKE_ANALYSIS), "Causes of action": ctx.output(StageKind.CASE_ENHANCEMENT).get("cause_of_action"), "Opinions": opinions}
    analysis = await self._complete(StageKind.OPINION_ANALYSIS, prompts.OPINION_SYSTEM, sections)
    return StageResult({"opinions_analyzed": len(opinions), **analysis})

  async def persist_opinions(self, ctx: PipelineContext) -> StageResult:
    search = ctx.output(StageKind.CASE_LAW_SEARCH)
    await self._cases_repo.save_analysis(ctx.case.id, "precedents", {"cases": search.get("cases", []), "analysis": ctx.output(StageKind.OPINION_ANALYSIS)})
    return StageResult({"persisted": ["precedents"]})

  async def complexity_score(self, ctx: PipelineContext) -> StageResult:
    sections = {
      "Intake": ctx.output(StageKind.INTAKE_ANALYSIS),
      "Enhancement": ctx.output(StageKind.CASE_ENHANCEMENT),
      "Precedent analysis": ctx.output(StageKind.OPINION_ANALYSIS),
    }
    return StageResult(normalize_complexity(await self._complete(StageKind.COMPLEXITY_SCORE, prompts.COMPLEXITY_SYSTEM, sections)))

  async def outcome_prediction(self, ctx: PipelineContext) -> StageResult:
    sections = {
      "Intake": ctx.output(StageKind.INTAKE_ANALYSIS),
      "Jurisdiction": ctx.output(StageKind.JURISDICTION_ANALYSIS),
      "Enhancement": ctx.output(StageKind.CASE_ENHANCEMENT),
      "Precedent analysis": ctx.output(StageKind.OPINION_ANALYSIS),
      "Complexity": ctx.output(StageKind.COMPLEXITY_SCORE),
    }
    return StageResult(normalize_prediction(await self._complete(StageKind.OUTCOME_PREDICTION, prompts.PREDICTION_SYSTEM, sections)))

  async def supplementary_analysis(self, ctx: PipelineContext) -> StageResult:
    sections = {"Intake": ctx.output(StageKind.INTAKE_ANALYSIS), "Prediction": ctx.output(StageKind.OUTCOME_PREDICTION), "Jurisdiction": ctx.output(StageKind.JURISDICTION_ANALYSIS)}
    return StageResult(await self._complete(StageKind.SUPPLEMENTARY_ANALYSIS, prompts.SUPPLEMENTARY_SYSTEM, sections))

  async def final_persist(self, ctx: PipelineContext) -> StageResult:
    persisted = ["complexity", "prediction"]
    await self._cases_repo.save_analysis(ctx.case.id, "complexity", ctx.output(StageKind.COMPLEXITY_SCORE))
    await self._cases_repo.save_analysis(ctx.case.id, "prediction", ctx.output(StageKind.OUTCOME_PREDICTION))
    supplementary = ctx.output(StageKind.SUPPLEMENTARY_ANALYSIS)
    if supplementary:
      await self._cases_repo.save_analysis(ctx.case.id, "supplementary", supplementary)
      persisted.append("supplementary")
    return StageResult({"persisted": persisted})
