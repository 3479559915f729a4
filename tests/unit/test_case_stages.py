from __future__ import annotations

import pytest

from alegi.cases.models import CaseDocumentRecord, CaseRecord
from alegi.core.errors import ExternalServiceError, PipelineStageFailure, TransientExternalError
from alegi.pipeline.contracts import PipelineContext, StageKind
from alegi.pipeline.stages import CaseStages, build_case_law_queries
from tests.fakes import FakeCaseLawSource, FakeLLM, FakeOpinionFetcher, InMemoryCasesRepo, canned_llm_responses

S = StageKind


def _stages(cases_repo: InMemoryCasesRepo, **overrides) -> CaseStages:
  options = {"llm": FakeLLM(canned_llm_responses()), "cases_repo": cases_repo, "case_law_sources": [FakeCaseLawSource("opinions")], "model_for": lambda stage: "gpt-4o-mini"}
  options.update(overrides)
  return CaseStages(**options)


def _analyzed_context(case: CaseRecord) -> PipelineContext:
  responses = canned_llm_responses()
  return PipelineContext(
    case=case,
    outputs={
      S.INTAKE_ANALYSIS.value: responses["intake analysis"],
      S.JURISDICTION_ANALYSIS.value: responses["jurisdiction analysis"],
      S.CASE_ENHANCEMENT.value: responses["case enhancement"],
    },
  )


@pytest.fixture
def case() -> CaseRecord:
  return CaseRecord(id="case-1", user_id="user-1", case_type="Employment", case_narrative="Fired after reporting fraud.")


def test_case_law_queries_combine_claims_and_refined_terms(case: CaseRecord) -> None:
  queries = build_case_law_queries(_analyzed_context(case))
  assert queries == ["Employment wrongful termination retaliation", "whistleblower retaliation California"]


@pytest.mark.anyio
async def test_search_tolerates_failures_while_one_sub_query_succeeds(cases_repo: InMemoryCasesRepo, case: CaseRecord) -> None:
  """A sub-query that succeeds with zero hits still makes the stage usable."""
  broken = FakeCaseLawSource("dockets", error=TransientExternalError("courtlistener", "502"))
  empty = FakeCaseLawSource("opinions", hits=[])
  result = await _stages(cases_repo, case_law_sources=[empty, broken]).case_law_search(_analyzed_context(case))

  assert result.output["cases"] == []
  assert result.output["total_found"] == 0
  assert {failure["source"] for failure in result.output["failed_sources"]} == {"dockets"}
  assert len(empty.queries) == 2


@pytest.mark.anyio
async def test_search_deduplicates_hits_across_sources(cases_repo: InMemoryCasesRepo, case: CaseRecord) -> None:
  hit = {"case_name": "Smith v. Acme", "url": "/opinion/1/", "opinion_id": 1}
  sources = [FakeCaseLawSource("opinions", [hit]), FakeCaseLawSource("dockets", [hit, {"case_name": "Doe v. Widgets", "url": "/opinion/2/"}])]
  result = await _stages(cases_repo, case_law_sources=sources).case_law_search(_analyzed_context(case))
  assert [item["url"] for item in result.output["cases"]] == ["/opinion/1/", "/opinion/2/"]


@pytest.mark.anyio
async def test_search_fails_when_every_sub_query_fails(cases_repo: InMemoryCasesRepo, case: CaseRecord) -> None:
  sources = [FakeCaseLawSource("opinions", error=TransientExternalError("courtlistener", "timeout"))]
  with pytest.raises(PipelineStageFailure, match="All case-law sources failed") as raised:
    await _stages(cases_repo, case_law_sources=sources).case_law_search(_analyzed_context(case))
  assert raised.value.stage == "case_law_search"
  assert len(raised.value.detail["failures"]) == 2


@pytest.mark.anyio
async def test_search_without_terms_fails(cases_repo: InMemoryCasesRepo) -> None:
  bare = PipelineContext(case=CaseRecord(id="case-2", user_id="user-1"))
  with pytest.raises(PipelineStageFailure, match="No search terms"):
    await _stages(cases_repo).case_law_search(bare)


@pytest.mark.anyio
async def test_opinion_analysis_without_precedents_skips_the_model(cases_repo: InMemoryCasesRepo, case: CaseRecord) -> None:
  llm = FakeLLM()
  ctx = _analyzed_context(case)
  ctx.merge(S.CASE_LAW_SEARCH, {"cases": []})
  result = await _stages(cases_repo, llm=llm).opinion_analysis(ctx)
  assert result.output["opinions_analyzed"] == 0
  assert llm.calls == []


@pytest.mark.anyio
async def test_opinion_analysis_falls_back_to_snippets(cases_repo: InMemoryCasesRepo, case: CaseRecord) -> None:
  llm = FakeLLM(canned_llm_responses())
  ctx = _analyzed_context(case)
  ctx.merge(S.CASE_LAW_SEARCH, {"cases": [{"case_name": "A", "opinion_id": 1, "snippet": "short"}, {"case_name": "B", "opinion_id": 2, "snippet": "brief"}]})
  result = await _stages(cases_repo, llm=llm, opinion_fetcher=FakeOpinionFetcher({"1": "full opinion text"})).opinion_analysis(ctx)
  assert result.output["opinions_analyzed"] == 2
  prompt = llm.calls[0]["prompt"]
  assert "full opinion text" in prompt
  assert "brief" in prompt


@pytest.mark.anyio
async def test_extract_documents_uses_stored_text_and_requires_an_extractor(cases_repo: InMemoryCasesRepo, case: CaseRecord) -> None:
  stored = CaseDocumentRecord(id="d1", case_id=case.id, file_name="Complaint.pdf", extracted_text="The plaintiff alleges")
  ctx = PipelineContext(case=case, documents=[stored])
  result = await _stages(cases_repo).extract_documents(ctx)
  assert result.output["documents"][0]["document_type"] == "complaint"
  assert "The plaintiff alleges" in result.output["document_text"]

  remote = CaseDocumentRecord(id="d2", case_id=case.id, file_name="motion.pdf", file_url="https://files.example/motion.pdf")
  with pytest.raises(ExternalServiceError):
    await _stages(cases_repo).extract_documents(PipelineContext(case=case, documents=[remote]))


@pytest.mark.anyio
async def test_intake_requires_some_text(cases_repo: InMemoryCasesRepo) -> None:
  ctx = PipelineContext(case=CaseRecord(id="case-3", user_id="user-1"))
  with pytest.raises(PipelineStageFailure, match="no narrative"):
    await _stages(cases_repo).intake_analysis(ctx)


@pytest.mark.anyio
async def test_intake_uses_the_stage_model(cases_repo: InMemoryCasesRepo, case: CaseRecord) -> None:
  llm = FakeLLM(canned_llm_responses())
  stages = _stages(cases_repo, llm=llm, model_for=lambda stage: f"model-for-{stage}")
  result = await stages.intake_analysis(PipelineContext(case=case))
  assert result.output["case_type"] == "Employment"
  assert llm.calls[0]["model"] == "model-for-intake_analysis"
  assert llm.calls[0]["operation"] == "intake analysis"


@pytest.mark.anyio
async def test_persist_intake_writes_back_case_type(cases_repo: InMemoryCasesRepo, case: CaseRecord) -> None:
  cases_repo.add_case(CaseRecord(id=case.id, user_id=case.user_id))
  ctx = _analyzed_context(case)
  await _stages(cases_repo).persist_intake(ctx)
  assert cases_repo.cases[case.id].case_type == "Employment"
  assert cases_repo.analyses[(case.id, "intake")]["legal_claims"] == ["wrongful termination", "retaliation"]


@pytest.mark.anyio
async def test_final_persist_skips_missing_supplementary(cases_repo: InMemoryCasesRepo, case: CaseRecord) -> None:
  ctx = _analyzed_context(case)
  ctx.merge(S.COMPLEXITY_SCORE, {"complexity_score": 40})
  ctx.merge(S.OUTCOME_PREDICTION, {"outcome_prediction_score": 60})
  result = await _stages(cases_repo).final_persist(ctx)
  assert result.output == {"persisted": ["complexity", "prediction"]}
  assert (case.id, "supplementary") not in cases_repo.analyses
