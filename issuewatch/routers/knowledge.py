"""Knowledge search test and embedding maintenance routes."""

from fastapi import APIRouter, Depends, Request

from ..backends.orchestrator import BackendOrchestrator
from ..knowledge.embeddings import EmbeddingService, embed_all_entries, embedding_coverage
from ..repository import MonitorRepository
from ..schemas import (
    EmbeddingCoverageOut,
    EmbeddingStatsOut,
    EmbedRequest,
    KnowledgeAnswerOut,
    KnowledgeSearchRequest,
)
from ..services import build_retrieval_engine
from ..settings import MonitorSettings
from .deps import (
    get_embedding_service,
    get_orchestrator,
    get_repository,
    get_settings,
    limiter,
    translate_errors,
)

router = APIRouter(prefix="/api/knowledge", tags=["knowledge"])


@router.post("/search", response_model=KnowledgeAnswerOut)
@limiter.limit("30/minute")
def search(
    request: Request,
    payload: KnowledgeSearchRequest,
    repository: MonitorRepository = Depends(get_repository),
    settings: MonitorSettings = Depends(get_settings),
    orchestrator: BackendOrchestrator = Depends(get_orchestrator),
    embeddings: EmbeddingService = Depends(get_embedding_service),
):
    """Operator search test; every attempt is written to the auto-reply log."""
    engine = build_retrieval_engine(repository, settings, orchestrator, embeddings)
    with translate_errors():
        answer = engine.search_knowledge(payload.query, payload.conversation_id)
    return KnowledgeAnswerOut(**answer.as_dict())


@router.post("/embed", response_model=EmbeddingStatsOut)
def embed(
    payload: EmbedRequest,
    repository: MonitorRepository = Depends(get_repository),
    settings: MonitorSettings = Depends(get_settings),
    embeddings: EmbeddingService = Depends(get_embedding_service),
):
    stats = embed_all_entries(
        repository,
        embeddings,
        force=payload.force,
        batch_size=settings.embedding_batch_size,
    )
    return EmbeddingStatsOut(success=stats.success, failed=stats.failed, skipped=stats.skipped)


@router.get("/coverage", response_model=EmbeddingCoverageOut)
def coverage(repository: MonitorRepository = Depends(get_repository)):
    return EmbeddingCoverageOut(**embedding_coverage(repository))
