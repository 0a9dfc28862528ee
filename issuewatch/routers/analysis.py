"""Batch analysis routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from ..backends.orchestrator import BackendOrchestrator
from ..repository import MonitorRepository
from ..schemas import AnalysisRunRequest, AnalysisRunResponse
from ..services import build_analysis_service
from ..settings import MonitorSettings
from .deps import get_orchestrator, get_repository, get_settings, translate_errors

router = APIRouter(prefix="/api/analysis", tags=["analysis"])


@router.post("/run", response_model=AnalysisRunResponse)
def run_analysis(
    payload: AnalysisRunRequest,
    repository: MonitorRepository = Depends(get_repository),
    settings: MonitorSettings = Depends(get_settings),
    orchestrator: BackendOrchestrator = Depends(get_orchestrator),
):
    """Analyse stored messages, optionally limited to a conversation and time window."""
    service = build_analysis_service(repository, settings, orchestrator)
    with translate_errors():
        result = service.run_analysis(payload.conversation_id, payload.since)
    return AnalysisRunResponse(**result.as_dict())
