"""
Scopes API
==========

Command/query surface of the weave for one scope (a city, a region, a
beat). Everything goes through WeaveService; no Cypher here.

Commands:
- POST /api/scopes/{scope}/signals           reconcile one candidate
- POST /api/scopes/{scope}/phases/{phase}    run a phase (409 if busy/not enabled)
- POST /api/scopes/{scope}/reset             administrative lock reset
- POST /api/scopes/{scope}/stop              request a stop at the next checkpoint
- POST /api/scopes/findings/{id}/dismiss

Queries:
- GET /api/scopes/{scope}                    status + phase_enabled table
- GET /api/scopes/{scope}/findings?status=
- GET /api/scopes/{scope}/budget
- GET /api/scopes/{scope}/stories
- GET /api/scopes/stories/{story_id}
"""
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query
from pydantic import BaseModel

from models.domain import FindingStatus, Phase
from weave.errors import NotFoundError, PhaseNotEnabledError, ScopeBusyError
from weave.service import WeaveService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/scopes", tags=["Scopes"])

_service: Optional[WeaveService] = None


async def get_weave_service() -> WeaveService:
    """
    Shared WeaveService over Neo4j, created on first use.

    Tests override this dependency with an in-memory service.
    """
    global _service
    if _service is None:
        from config import create_neo4j_service, create_weave_service

        _service = create_weave_service(await create_neo4j_service())
        logger.info("✅ WeaveService initialized for API")
    return _service


# =============================================================================
# Response Models
# =============================================================================

class ScopeStatusResponse(BaseModel):
    scope: str
    status: str
    run_seq: int = 0
    stop_requested: bool = False
    updated_at: Optional[str] = None
    phase_enabled: Dict[str, bool]


class IntakeResponse(BaseModel):
    """Outcome of one candidate. Exactly one of outcome/deferred/rejected applies."""
    outcome: Optional[Dict[str, Any]] = None
    deferred: bool = False
    rejected: bool = False


class PhaseRunResponse(BaseModel):
    scope: str
    phase: str
    status: str
    run_seq: int = 0
    stopped: bool = False
    details: Dict[str, Any] = {}


class FindingResponse(BaseModel):
    id: str
    scope: str
    finding_type: str
    target_id: str
    description: str = ""
    severity: str
    status: str
    created_at: Optional[str] = None
    resolved_at: Optional[str] = None


class BudgetResponse(BaseModel):
    scope: str
    run_seq: int
    limit_cents: int
    spent_cents: int
    calls: int
    remaining_cents: Optional[int] = None
    unlimited: bool
    updated_at: Optional[str] = None


class StorySummary(BaseModel):
    id: str
    tension_id: str
    headline: str
    arc: str
    status: str
    energy: float
    signal_count: int = 0
    type_diversity: int = 0
    source_domain_count: int = 0
    synthesis_pending: bool = True
    needs_refinement: bool = False
    lede: Optional[str] = None


class StoryDetail(StorySummary):
    scope: str
    summary: str = ""
    narrative: Optional[str] = None
    tension_ids: List[str] = []
    signals: List[Dict[str, Any]] = []
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    last_synthesized_at: Optional[str] = None


def _parse_phase(phase: str) -> Phase:
    try:
        return Phase.parse(phase)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Unknown phase '{phase}'")


# =============================================================================
# Commands
# =============================================================================

@router.post("/{scope}/signals", response_model=IntakeResponse)
async def submit_signal(
    scope: str,
    payload: Dict[str, Any] = Body(..., description="Candidate signal payload"),
    service: WeaveService = Depends(get_weave_service),
):
    """
    Reconcile one candidate signal into the scope.

    A candidate whose embedding is missing or cannot be looked up is
    deferred to the next SCRAPE; a malformed payload is rejected.
    """
    report = await service.reconciler.reconcile_batch([payload], scope)
    if report.outcomes:
        return IntakeResponse(outcome=report.outcomes[0].to_dict())
    if report.deferred:
        return IntakeResponse(deferred=True)
    raise HTTPException(status_code=422, detail="Malformed candidate payload")


@router.post("/{scope}/phases/{phase}", response_model=PhaseRunResponse)
async def run_phase(
    scope: str,
    phase: str,
    candidates: Optional[List[Dict[str, Any]]] = Body(None),
    service: WeaveService = Depends(get_weave_service),
):
    """Run one phase (or full_run). Fails fast with 409 when the scope is busy."""
    parsed = _parse_phase(phase)
    try:
        report = await service.run_phase(scope, parsed, candidates=candidates)
    except (ScopeBusyError, PhaseNotEnabledError) as e:
        raise HTTPException(status_code=409, detail=str(e))
    return PhaseRunResponse(**report.to_dict())


@router.post("/{scope}/reset", response_model=ScopeStatusResponse)
async def reset_scope(scope: str, service: WeaveService = Depends(get_weave_service)):
    """Administrative override: force the scope back to idle."""
    await service.reset_scope_lock(scope)
    return ScopeStatusResponse(**await service.get_scope_status(scope))


@router.post("/{scope}/stop", response_model=ScopeStatusResponse)
async def stop_scope(scope: str, service: WeaveService = Depends(get_weave_service)):
    try:
        await service.request_stop(scope)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return ScopeStatusResponse(**await service.get_scope_status(scope))


@router.post("/findings/{finding_id}/dismiss", response_model=FindingResponse)
async def dismiss_finding(finding_id: str, service: WeaveService = Depends(get_weave_service)):
    try:
        finding = await service.dismiss_finding(finding_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return FindingResponse(**finding.to_dict())


# =============================================================================
# Queries
# =============================================================================

@router.get("/stories/{story_id}", response_model=StoryDetail)
async def get_story(story_id: str, service: WeaveService = Depends(get_weave_service)):
    try:
        detail = await service.get_story_detail(story_id)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Story not found")
    return StoryDetail(**detail)


@router.get("/{scope}", response_model=ScopeStatusResponse)
async def get_scope_status(scope: str, service: WeaveService = Depends(get_weave_service)):
    return ScopeStatusResponse(**await service.get_scope_status(scope))


@router.get("/{scope}/findings", response_model=List[FindingResponse])
async def list_findings(
    scope: str,
    status: Optional[str] = Query(None, description="open, dismissed or resolved"),
    service: WeaveService = Depends(get_weave_service),
):
    try:
        parsed = FindingStatus(status) if status else None
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Unknown finding status '{status}'")
    findings = await service.list_findings(scope, parsed)
    return [FindingResponse(**f.to_dict()) for f in findings]


@router.get("/{scope}/budget", response_model=BudgetResponse)
async def get_budget(
    scope: str,
    run_seq: Optional[int] = Query(None, ge=0),
    service: WeaveService = Depends(get_weave_service),
):
    ledger = await service.get_budget(scope, run_seq)
    if ledger is None:
        raise HTTPException(status_code=404, detail="No budget ledger for scope")
    return BudgetResponse(**ledger.to_dict())


@router.get("/{scope}/stories", response_model=List[StorySummary])
async def list_stories(scope: str, service: WeaveService = Depends(get_weave_service)):
    """Stories in the scope, highest energy first."""
    stories = await service.list_stories(scope)
    return [StorySummary(**s.to_dict()) for s in stories]
