"""System instructions and prompt assembly for the model-backed stages."""

from __future__ import annotations

import json
from typing import Any

_JSON_ONLY = "Respond with a single JSON object and nothing else."

INTAKE_SYSTEM = (
  "You are a litigation intake analyst. Extract the case type, parties, key dates, legal claims, damages sought, key facts and open questions "
  "from the narrative and documents. Use keys: case_type, parties, key_dates, legal_claims, damages_sought, key_facts, missing_information. " + _JSON_ONLY
)
JURISDICTION_SYSTEM = (
  "You are a US jurisdiction analyst. Determine the likely court, venue, governing law and any procedural constraints. "
  "Use keys: jurisdiction, court, court_id, governing_law, venue_notes, statute_of_limitations. " + _JSON_ONLY
)
ENHANCEMENT_SYSTEM = (
  "You are a senior litigator. Refine the intake into causes of action with their elements, relevant statutes, evidence gaps and strategy notes. "
  "Use keys: cause_of_action, elements, statutes, evidence_gaps, strategy_notes, search_terms. " + _JSON_ONLY
)
OPINION_SYSTEM = (
  "You compare a case against court opinions. Summarize how each opinion bears on the case and what it suggests about likely outcomes. "
  "Use keys: insights (list of {case_name, relevance, holding, impact}), overall_trend. " + _JSON_ONLY
)
COMPLEXITY_SYSTEM = "Score how complex this case is to litigate from 0 to 100. Use keys: complexity_score, factors, rationale. " + _JSON_ONLY
PREDICTION_SYSTEM = (
  "Predict the outcome of this case. Scores are 0-100, estimated_timeline is in months, risk_level and prediction_confidence are low, medium or high, "
  "ranges are objects with min and max. " + _JSON_ONLY
)
SUPPLEMENTARY_SYSTEM = (
  "Provide supplementary guidance for the case team: judge and opposing counsel considerations, settlement versus trial trade-offs and recommended next steps. "
  "Use keys: judge_considerations, opposing_counsel, settlement_vs_trial, next_steps. " + _JSON_ONLY
)


def build_prompt(sections: dict[str, Any], *, max_chars: int = 24000) -> str:
  """Render named context sections as JSON blocks, truncating the total size."""
  parts: list[str] = []
  for title, value in sections.items():
    if value in (None, "", [], {}):
      continue
    body = value if isinstance(value, str) else json.dumps(value, ensure_ascii=False, default=str)
    parts.append(f"## {title}\n{body}")
  prompt = "\n\n".join(parts)
  return prompt[:max_chars]
