"""ORM table exports; importing this package registers every table on Base.metadata."""

from .cases import Case, CaseAnalysis, CaseDocument, CaseProcessingStage, ProcessingError
from .jobs import QueueJob
from .rate_windows import RateWindow

__all__ = ["Case", "CaseAnalysis", "CaseDocument", "CaseProcessingStage", "ProcessingError", "QueueJob", "RateWindow"]
