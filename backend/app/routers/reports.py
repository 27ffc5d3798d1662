"""User-facing report endpoints. Staff processing lives in the admin router."""

from fastapi import APIRouter, Depends, Query

from app.models.admin import CreateReportBody
from app.models.user import Actor
from app.services import report_service
from app.services.auth_service import get_current_actor

router = APIRouter(prefix="/api/reports", tags=["reports"])


@router.post("", status_code=201)
async def create_report(body: CreateReportBody, actor: Actor = Depends(get_current_actor)):
    return await report_service.create_report(actor, body)


@router.get("/mine")
async def my_reports(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    actor: Actor = Depends(get_current_actor),
):
    return await report_service.list_user_reports(actor, page, limit)


@router.get("/{report_id}")
async def get_report(report_id: str, actor: Actor = Depends(get_current_actor)):
    return await report_service.get_report(actor, report_id)
