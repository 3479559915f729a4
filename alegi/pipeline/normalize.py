"""Coerce model output into the bounded shapes the case record stores."""

from __future__ import annotations

import logging
import math
from typing import Any

logger = logging.getLogger(__name__)

_LEVELS = ("low", "medium", "high")

# field -> (default, minimum, maximum)
_PREDICTION_NUMBERS: dict[str, tuple[float, float, float]] = {
  "outcome_prediction_score": (50, 0, 100),
  "settlement_probability": (50, 0, 100),
  "case_strength_score": (50, 0, 100),
  "estimated_timeline": (12, 1, 60),
  "estimated_financial_outcome": (0, 0, 10_000_000),
  "litigation_cost_estimate": (0, 0, 1_000_000),
  "jurisdiction_score": (50, 0, 100),
  "case_type_score": (50, 0, 100),
  "precedent_score": (50, 0, 100),
  "procedural_score": (50, 0, 100),
  "confidence_prediction_percentage": (50, 0, 100),
  "plaintiff_success": (50, 0, 100),
  "appeal_after_trial": (20, 0, 100),
  "risk_score": (50, 0, 100),
  "witness_score": (50, 0, 100),
  "primary_fact_strength_analysis": (50, 0, 100),
  "average_time_resolution": (12, 1, 60),
}
_PREDICTION_RANGES = ("financial_outcome_range", "litigation_cost_range", "resolution_time_range")
_PREDICTION_LISTS = ("prior_similar_rulings", "precedent_cases", "fact_strength_analysis", "real_time_law_changes", "analyzed_cases", "similar_cases")
_PREDICTION_TEXT: dict[str, str] = {
  "average_time_resolution_type": "months",
  "judge_analysis": "Analysis not available",
  "lawyer_analysis": "Analysis not available",
  "settlement_trial_analysis": "Analysis not available",
  "recommended_settlement_window": "Not specified",
  "primary_strategy": "Not specified",
  "alternative_approach": "Not specified",
  "additional_facts_recommendations": "No additional recommendations",
}


def clamp_number(value: Any, default: float, minimum: float, maximum: float) -> float:
  try:
    number = float(value)
  except (TypeError, ValueError):
    return default
  if math.isnan(number) or math.isinf(number):
    return default
  return max(minimum, min(maximum, number))


def normalize_level(value: Any, default: str = "medium") -> str:
  if isinstance(value, str) and value.strip().lower() in _LEVELS:
    return value.strip().lower()
  return default


def normalize_range(value: Any) -> dict[str, float]:
  if isinstance(value, dict) and "min" in value and "max" in value:
    low = clamp_number(value["min"], 0, 0, 10_000_000)
    high = clamp_number(value["max"], 100_000, 0, 10_000_000)
    return {"min": min(low, high), "max": max(low, high)}
  return {"min": 0, "max": 100_000}


def normalize_prediction(raw: Any) -> dict[str, Any]:
  """Every numeric field clamped, levels restricted to low|medium|high, ranges as {min, max}."""
  source = raw if isinstance(raw, dict) else {}
  if not isinstance(raw, dict):
    logger.warning("Prediction output was not an object; using defaults")

  normalized: dict[str, Any] = {name: clamp_number(source.get(name), *bounds) for name, bounds in _PREDICTION_NUMBERS.items()}
  normalized["risk_level"] = normalize_level(source.get("risk_level"))
  normalized["prediction_confidence"] = normalize_level(source.get("prediction_confidence"))
  normalized.update({name: normalize_range(source.get(name)) for name in _PREDICTION_RANGES})
  normalized.update({name: list(source[name]) if isinstance(source.get(name), list) else [] for name in _PREDICTION_LISTS})
  normalized.update({name: str(source.get(name) or default) for name, default in _PREDICTION_TEXT.items()})
  return normalized


def normalize_complexity(raw: dict[str, Any]) -> dict[str, Any]:
  score = clamp_number(raw.get("complexity_score", raw.get("score")), 50, 0, 100)
  factors = raw.get("factors")
  return {"complexity_score": score, "factors": list(factors) if isinstance(factors, list) else [], "rationale": str(raw.get("rationale") or "")}
