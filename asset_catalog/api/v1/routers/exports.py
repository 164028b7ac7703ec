"""REST endpoints for export sessions — /api/v1/exports."""

from __future__ import annotations

import logging
from typing import Annotated, Optional

from fastapi import APIRouter, Query, status

from asset_catalog.api.v1.dependencies import AssetTypeDep, OrchestratorDep, ServicesDep
from asset_catalog.api.v1.models.exports import (
    ExportRequest,
    ProgressResponse,
    SessionListResponse,
    SessionResponse,
    SessionStartedResponse,
    StartSessionRequest,
    SummaryResponse,
    TypeExportResponse,
)
from asset_catalog.core.errors import NotFoundError
from asset_catalog.models.schema import SessionStatus
from asset_catalog.storage.keys import EXPORT_SUMMARY_KEY

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/exports", tags=["exports"])


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


@router.post("/sessions", response_model=SessionStartedResponse, status_code=status.HTTP_201_CREATED)
async def start_session(
    orchestrator: OrchestratorDep,
    body: Optional[StartSessionRequest] = None,
) -> SessionStartedResponse:
    types = body.parsed_types() if body else None
    session_id = await orchestrator.start_session(types)
    return SessionStartedResponse(session_id=session_id)


@router.get("/sessions", response_model=SessionListResponse)
async def list_sessions(
    orchestrator: OrchestratorDep,
    limit: Annotated[Optional[int], Query(ge=1, le=100, description="Maximum sessions to return")] = None,
) -> SessionListResponse:
    items = await orchestrator.list_sessions(limit)
    return SessionListResponse(items=items, count=len(items))


@router.get("/sessions/{session_id}", response_model=SessionResponse)
async def get_session(session_id: str, orchestrator: OrchestratorDep) -> SessionResponse:
    session = await orchestrator.get_session(session_id)
    if session is None:
        raise NotFoundError("Export session", session_id)
    return session


@router.post("/cancel", response_model=SessionResponse)
async def cancel_session(orchestrator: OrchestratorDep) -> SessionResponse:
    session = await orchestrator.cancel_session()
    if session is None:
        raise NotFoundError("Export session", "running")
    return session


@router.get("/progress", response_model=ProgressResponse)
async def get_progress(orchestrator: OrchestratorDep) -> ProgressResponse:
    session = orchestrator.get_progress()
    return ProgressResponse(
        active=session is not None and session.status == SessionStatus.RUNNING,
        session=session,
    )


# ---------------------------------------------------------------------------
# Runs
# ---------------------------------------------------------------------------


@router.post("/run", response_model=SessionStartedResponse, status_code=status.HTTP_202_ACCEPTED)
async def run_full_export(
    orchestrator: OrchestratorDep,
    body: Optional[ExportRequest] = None,
) -> SessionStartedResponse:
    """Start a full export in the background; poll ``/progress`` for status."""
    force_refresh = body.force_refresh if body else False
    session_id = await orchestrator.start_export_all(force_refresh)
    logger.info("Full export requested (session %s, force_refresh=%s)", session_id, force_refresh)
    return SessionStartedResponse(session_id=session_id)


@router.post("/types/{asset_type}", response_model=TypeExportResponse)
async def export_asset_type(
    asset_type: AssetTypeDep,
    orchestrator: OrchestratorDep,
    body: Optional[ExportRequest] = None,
) -> TypeExportResponse:
    """Export one type inside the current session, opening one if needed."""
    result = await orchestrator.export_type_progressive(asset_type, body.force_refresh if body else False)
    return TypeExportResponse(
        session_id=result.session_id,
        asset_type=asset_type,
        stats=result.stats,
        session_completed=result.session_completed,
    )


@router.get("/summary", response_model=SummaryResponse)
async def get_last_summary(services: ServicesDep) -> SummaryResponse:
    data = await services.store.get(EXPORT_SUMMARY_KEY)
    if data is None:
        raise NotFoundError("Export summary", "latest")
    return SummaryResponse.model_validate(data)
