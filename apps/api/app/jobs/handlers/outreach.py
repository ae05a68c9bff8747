"""Scheduled outreach run job handlers."""

from __future__ import annotations

import logging

from app.services import outreach_runner

logger = logging.getLogger(__name__)


async def process_sms_outreach_run(db, job) -> None:
    result = await outreach_runner.run_sms_outreach(db)
    logger.info("SMS outreach job %s: %s", job.id, result.message)


async def process_email_outreach_run(db, job) -> None:
    result = await outreach_runner.run_email_outreach(db)
    logger.info("Email outreach job %s: %s", job.id, result.message)
