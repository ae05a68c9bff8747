"""Job-related enums."""

from enum import Enum


class JobType(str, Enum):
    """Types of background jobs."""

    DISPOSITION_BROADCAST = "disposition_broadcast"
    SMS_OUTREACH_RUN = "sms_outreach_run"
    EMAIL_OUTREACH_RUN = "email_outreach_run"


class JobStatus(str, Enum):
    """Status of background jobs."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
