"""Assemble the pipeline services from settings and a repository."""

from __future__ import annotations

from typing import Optional

from .analysis.classifier import QuestionClassifier
from .analysis.lifecycle import IssueLifecycleEngine
from .analysis.service import AnalysisService
from .autoreply.gate import AutoReplyGate
from .autoreply.sender import LoggingReplySender, ReplySender, WebhookReplySender
from .backends.factory import build_orchestrator
from .backends.orchestrator import BackendOrchestrator
from .knowledge.embeddings import EmbeddingService, build_embedding_service
from .knowledge.retrieval import KnowledgeRetrievalEngine
from .repository import MonitorRepository
from .settings import MonitorSettings


def build_lifecycle(repository: MonitorRepository, settings: MonitorSettings) -> IssueLifecycleEngine:
    return IssueLifecycleEngine(
        repository,
        timeout_minutes=settings.issue_timeout_minutes,
        reply_threshold=settings.reply_threshold,
    )


def build_analysis_service(
    repository: MonitorRepository,
    settings: MonitorSettings,
    orchestrator: Optional[BackendOrchestrator] = None,
) -> AnalysisService:
    return AnalysisService(
        repository,
        orchestrator or build_orchestrator(settings),
        fallback=settings.analysis_fallback,
        lifecycle=build_lifecycle(repository, settings),
    )


def build_retrieval_engine(
    repository: MonitorRepository,
    settings: MonitorSettings,
    orchestrator: Optional[BackendOrchestrator] = None,
    embeddings: Optional[EmbeddingService] = None,
) -> KnowledgeRetrievalEngine:
    return KnowledgeRetrievalEngine(
        repository,
        embeddings or build_embedding_service(settings),
        orchestrator or build_orchestrator(settings),
        similarity_threshold=settings.similarity_threshold,
        result_limit=settings.result_limit,
        confidence_threshold=settings.confidence_threshold,
    )


def build_reply_sender(settings: MonitorSettings) -> ReplySender:
    if settings.reply_webhook_url:
        return WebhookReplySender(settings.reply_webhook_url)
    return LoggingReplySender()


def build_gate(
    repository: MonitorRepository,
    settings: MonitorSettings,
    *,
    orchestrator: Optional[BackendOrchestrator] = None,
    embeddings: Optional[EmbeddingService] = None,
    sender: Optional[ReplySender] = None,
) -> AutoReplyGate:
    orchestrator = orchestrator or build_orchestrator(settings)
    return AutoReplyGate(
        repository,
        QuestionClassifier(orchestrator, fallback=False),
        build_retrieval_engine(repository, settings, orchestrator, embeddings),
        build_lifecycle(repository, settings),
        sender or build_reply_sender(settings),
        settings,
    )
