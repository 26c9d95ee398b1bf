"""
Dashboard lead endpoints — list, detail, create, edit (including pipeline moves).
Every request is scoped to one company via the X-Company-ID header.
"""
import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query
from fastapi.responses import JSONResponse
from sqlalchemy import select, func, desc
from sqlalchemy.ext.asyncio import AsyncSession

from jobflow.database import get_db
from jobflow.errors import LeadNotFoundError
from jobflow.models.company import Company
from jobflow.models.lead import Lead
from jobflow.schemas.api_responses import (
    LeadDetailResponse,
    LeadListResponse,
    LeadOut,
    PipelineErrorOut,
    PipelineErrorResponse,
)
from jobflow.schemas.lead_requests import LeadCreateRequest, LeadUpdateRequest
from jobflow.services.lead_editing import EditResult, create_lead_from_ui, edit_lead
from jobflow.services.pipeline import allowed_transitions, parse_status, status_label

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/leads", tags=["leads"])


async def get_company(
    x_company_id: Optional[str] = Header(default=None, alias="X-Company-ID"),
    db: AsyncSession = Depends(get_db),
) -> Company:
    """Resolve the company scope for a dashboard request."""
    if not x_company_id:
        raise HTTPException(status_code=400, detail="Missing X-Company-ID header")
    try:
        company_id = uuid.UUID(x_company_id)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid X-Company-ID header")

    company = await db.get(Company, company_id)
    if not company or not company.is_active:
        raise HTTPException(status_code=404, detail="Company not found")
    return company


def _detail(lead: Lead) -> LeadDetailResponse:
    return LeadDetailResponse(
        lead=LeadOut.from_lead(lead),
        status_label=status_label(lead),
        allowed_transitions=allowed_transitions(lead.status),
    )


def _error_response(result: EditResult) -> JSONResponse:
    error = result.error
    body = PipelineErrorResponse(error=PipelineErrorOut(**error.to_dict()))
    return JSONResponse(status_code=422, content=body.model_dump())


def _parse_lead_id(lead_id: str) -> uuid.UUID:
    try:
        return uuid.UUID(lead_id)
    except ValueError:
        raise HTTPException(status_code=404, detail="Lead not found")


@router.get("", response_model=LeadListResponse)
async def list_leads(
    page: int = Query(default=1, ge=1),
    per_page: int = Query(default=50, ge=1, le=200),
    status: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    company: Company = Depends(get_company),
):
    """Company leads, newest first."""
    query = select(Lead).where(Lead.company_id == company.id)

    if status:
        parsed = parse_status(status)
        if parsed is None:
            raise HTTPException(status_code=400, detail=f"Unknown status '{status}'")
        query = query.where(Lead.status == parsed.value)

    count_query = select(func.count()).select_from(query.subquery())
    total = (await db.execute(count_query)).scalar() or 0

    query = query.order_by(desc(Lead.created_at)).offset((page - 1) * per_page).limit(per_page)
    leads = (await db.execute(query)).scalars().all()

    return LeadListResponse(
        leads=[LeadOut.from_lead(lead) for lead in leads],
        total=total,
        page=page,
        pages=max(1, (total + per_page - 1) // per_page),
    )


@router.get("/{lead_id}", response_model=LeadDetailResponse)
async def get_lead(
    lead_id: str,
    db: AsyncSession = Depends(get_db),
    company: Company = Depends(get_company),
):
    lead = await db.get(Lead, _parse_lead_id(lead_id))
    if not lead or lead.company_id != company.id:
        raise HTTPException(status_code=404, detail="Lead not found")
    return _detail(lead)


@router.post("", response_model=LeadDetailResponse, status_code=201)
async def create_lead(
    payload: LeadCreateRequest,
    db: AsyncSession = Depends(get_db),
    company: Company = Depends(get_company),
):
    result = await create_lead_from_ui(db, company, payload)
    if not result.ok:
        return _error_response(result)
    return _detail(result.lead)


@router.put("/{lead_id}", response_model=LeadDetailResponse)
async def update_lead(
    lead_id: str,
    payload: LeadUpdateRequest,
    db: AsyncSession = Depends(get_db),
    company: Company = Depends(get_company),
):
    """Edit fields and/or move the lead through the pipeline."""
    try:
        result = await edit_lead(db, company, _parse_lead_id(lead_id), payload)
    except LeadNotFoundError:
        raise HTTPException(status_code=404, detail="Lead not found")
    if not result.ok:
        return _error_response(result)
    return _detail(result.lead)
