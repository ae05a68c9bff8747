"""
Internal endpoints for scheduled/cron operations.

Protected by X-Internal-Secret header.
Call from the external scheduler (hourly for both outreach passes).
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.core.deps import (
    ClientFactory,
    get_client_factory,
    get_db,
    verify_internal_secret,
)
from app.schemas.outreach import OutreachRunResult
from app.services import outreach_queue_service, outreach_runner

router = APIRouter(
    prefix="/internal/scheduled",
    tags=["internal"],
    dependencies=[Depends(verify_internal_secret)],
)


@router.post("/sms-outreach", response_model=OutreachRunResult)
async def sms_outreach(
    db: Session = Depends(get_db),
    client_factory: ClientFactory = Depends(get_client_factory),
):
    """Hourly SMS pass over every active CRM account."""
    return await outreach_runner.run_sms_outreach(db, client_factory=client_factory)


@router.post("/email-outreach", response_model=OutreachRunResult)
async def email_outreach(
    db: Session = Depends(get_db),
    client_factory: ClientFactory = Depends(get_client_factory),
):
    """Hourly email pass over every active CRM account."""
    return await outreach_runner.run_email_outreach(db, client_factory=client_factory)


@router.get("/queue-stats")
def queue_stats(user_id: str | None = None, db: Session = Depends(get_db)):
    """Outreach queue counts per channel and status."""
    return outreach_queue_service.queue_stats(db, user_id)
