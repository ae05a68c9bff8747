"""Error taxonomy shared by the outreach runner, CRM client and conversation engine."""


class OutreachError(Exception):
    """Base exception for outreach errors."""

    pass


class TransientNetworkError(OutreachError):
    """Timeout, connection failure, 5xx or vendor throttling; safe to try on a later run."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class PermanentRejection(OutreachError):
    """4xx from the CRM (invalid recipient, bad payload); never retried."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class QuotaExceeded(OutreachError):
    """Rate limiter denied the operation for this account and kind."""

    def __init__(self, location_id: str, kind: str):
        super().__init__(f"Quota exceeded for {kind} on location {location_id}")
        self.location_id = location_id
        self.kind = kind


class TokenUnavailable(OutreachError):
    """No active CRM integration for the user, or token refresh failed."""

    pass


class IneligibleContact(OutreachError):
    """Contact must not receive an automated reply (AI disabled, opted out, exhausted)."""

    def __init__(self, contact_id: str, reason: str):
        super().__init__(f"Contact {contact_id} is not eligible: {reason}")
        self.contact_id = contact_id
        self.reason = reason
