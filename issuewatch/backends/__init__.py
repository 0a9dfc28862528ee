"""Interchangeable AI backends behind one capability interface."""

from .base import AIBackend
from .errors import (
    AllBackendsExhaustedError,
    BackendError,
    BackendResponseError,
    BackendTimeoutError,
    BackendUnavailableError,
)
from .factory import FALLBACK_ORDER, build_orchestrator, create_backend
from .orchestrator import BackendOrchestrator
from .providers import ProviderCredentials, ProviderRegistry
from .schemas import (
    QuestionAnalysis,
    ReplyEvaluation,
    SentimentAnalysis,
    SynthesizedAnswer,
    TagSimilarity,
)

__all__ = [
    "AIBackend",
    "AllBackendsExhaustedError",
    "BackendError",
    "BackendOrchestrator",
    "BackendResponseError",
    "BackendTimeoutError",
    "BackendUnavailableError",
    "FALLBACK_ORDER",
    "ProviderCredentials",
    "ProviderRegistry",
    "QuestionAnalysis",
    "ReplyEvaluation",
    "SentimentAnalysis",
    "SynthesizedAnswer",
    "TagSimilarity",
    "build_orchestrator",
    "create_backend",
]
