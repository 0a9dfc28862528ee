"""Inbound message events from channel ingestion."""

from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, Depends

from ..autoreply.sender import ReplySender
from ..backends.orchestrator import BackendOrchestrator
from ..knowledge.embeddings import EmbeddingService
from ..repository import MonitorRepository
from ..schemas import InboundEventIn, InboundOutcomeOut
from ..services import build_gate
from ..settings import MonitorSettings
from .deps import (
    get_embedding_service,
    get_orchestrator,
    get_reply_sender,
    get_repository,
    get_settings,
    translate_errors,
)

router = APIRouter(prefix="/api", tags=["events"])


@router.post("/events", response_model=InboundOutcomeOut)
def handle_event(
    payload: InboundEventIn,
    repository: MonitorRepository = Depends(get_repository),
    settings: MonitorSettings = Depends(get_settings),
    orchestrator: BackendOrchestrator = Depends(get_orchestrator),
    embeddings: EmbeddingService = Depends(get_embedding_service),
    sender: ReplySender = Depends(get_reply_sender),
):
    gate = build_gate(
        repository, settings, orchestrator=orchestrator, embeddings=embeddings, sender=sender
    )
    with translate_errors():
        outcome = gate.handle_inbound_message(payload.to_event())
    return InboundOutcomeOut(**asdict(outcome))
