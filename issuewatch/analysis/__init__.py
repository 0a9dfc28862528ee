"""Question classification, issue lifecycle and batch analysis."""

from .classifier import QuestionClassifier
from .evaluator import ReplyEvaluator
from .lifecycle import ALLOWED_TRANSITIONS, InvalidTransitionError, IssueLifecycleEngine
from .sentiment import SentimentAggregator
from .service import AnalysisResult, AnalysisService
from .tags import TagCache, TagDeduplicator

__all__ = [
    "ALLOWED_TRANSITIONS",
    "AnalysisResult",
    "AnalysisService",
    "InvalidTransitionError",
    "IssueLifecycleEngine",
    "QuestionClassifier",
    "ReplyEvaluator",
    "SentimentAggregator",
    "TagCache",
    "TagDeduplicator",
]
