"""Issue read and manual status routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from ..repository import MonitorRepository
from ..schemas import IssueOut, IssueStatusUpdate
from ..services import build_lifecycle
from ..settings import MonitorSettings
from .deps import get_repository, get_settings, translate_errors

router = APIRouter(prefix="/api/issues", tags=["issues"])


def _issue_out(repository: MonitorRepository, issue) -> IssueOut:
    tags = [tag.name for tag in repository.list_issue_tags(issue.id)]
    return IssueOut.from_issue(issue, tags)


@router.get("/{issue_id}", response_model=IssueOut)
def get_issue(
    issue_id: int,
    repository: MonitorRepository = Depends(get_repository),
    settings: MonitorSettings = Depends(get_settings),
):
    """Return the issue, timing it out first if its deadline has passed."""
    lifecycle = build_lifecycle(repository, settings)
    with translate_errors():
        issue = lifecycle.get_issue(issue_id)
    return _issue_out(repository, issue)


@router.put("/{issue_id}/status", response_model=IssueOut)
def update_status(
    issue_id: int,
    payload: IssueStatusUpdate,
    repository: MonitorRepository = Depends(get_repository),
    settings: MonitorSettings = Depends(get_settings),
):
    lifecycle = build_lifecycle(repository, settings)
    with translate_errors():
        issue = lifecycle.update_status(issue_id, payload.status)
    return _issue_out(repository, issue)
