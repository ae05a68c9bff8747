"""Job handler registry."""

from __future__ import annotations

from typing import Awaitable, Callable, Mapping

from app.db.enums import JobType
from app.jobs.handlers import dispositions, outreach

JobHandler = Callable[[object, object], Awaitable[None]]

JOB_HANDLERS: Mapping[str, JobHandler] = {
    JobType.DISPOSITION_BROADCAST.value: dispositions.process_disposition_broadcast,
    JobType.SMS_OUTREACH_RUN.value: outreach.process_sms_outreach_run,
    JobType.EMAIL_OUTREACH_RUN.value: outreach.process_email_outreach_run,
}


def resolve_job_handler(job_type: str) -> JobHandler:
    handler = JOB_HANDLERS.get(job_type)
    if not handler:
        raise ValueError(f"Unknown job type: {job_type}")
    return handler
