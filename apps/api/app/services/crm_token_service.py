"""CRM OAuth token storage and refresh.

Tokens are stored encrypted on `CrmIntegration`. A token that expires within
CRM_TOKEN_REFRESH_MARGIN_SECONDS is refreshed through the CRM OAuth endpoint
before use. Concurrent refreshes are resolved with a conditional update on
`token_version`; the loser re-reads the winner's token.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

import httpx
from sqlalchemy import update
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.encryption import decrypt_token, encrypt_token
from app.core.structured_logging import build_log_context
from app.db.models import CrmIntegration
from app.services.outreach_errors import TokenUnavailable
from app.utils.datetime_parsing import ensure_utc, utc_now

logger = logging.getLogger(__name__)


@dataclass
class TokenResult:
    """A usable access token for one CRM location."""

    token: str
    location_id: str
    user_id: str
    campaign_email: str | None = None


def get_active_integration(db: Session, user_id: str) -> CrmIntegration | None:
    return (
        db.query(CrmIntegration)
        .filter(CrmIntegration.user_id == user_id, CrmIntegration.is_active.is_(True))
        .order_by(CrmIntegration.created_at.desc())
        .first()
    )


def list_active_integrations(db: Session) -> list[CrmIntegration]:
    """Active integrations in a stable order for runner passes."""
    return (
        db.query(CrmIntegration)
        .filter(CrmIntegration.is_active.is_(True))
        .order_by(CrmIntegration.created_at)
        .all()
    )


def connect_integration(
    db: Session,
    *,
    user_id: str,
    location_id: str,
    access_token: str,
    refresh_token: str | None,
    expires_in: int | None,
    campaign_email: str | None = None,
    now: datetime | None = None,
) -> CrmIntegration:
    """Store a new connection and deactivate any previous one for the user."""
    now = now or utc_now()
    db.query(CrmIntegration).filter(
        CrmIntegration.user_id == user_id,
        CrmIntegration.is_active.is_(True),
    ).update({CrmIntegration.is_active: False}, synchronize_session=False)

    integration = CrmIntegration(
        user_id=user_id,
        location_id=location_id,
        access_token_encrypted=encrypt_token(access_token),
        refresh_token_encrypted=encrypt_token(refresh_token) if refresh_token else None,
        expires_at=now + timedelta(seconds=expires_in) if expires_in else None,
        is_active=True,
        campaign_email=campaign_email,
    )
    db.add(integration)
    db.commit()
    db.refresh(integration)
    logger.info(
        "CRM integration connected",
        extra=build_log_context(user_id=user_id, location_id=location_id),
    )
    return integration


def _needs_refresh(integration: CrmIntegration, now: datetime) -> bool:
    expires_at = ensure_utc(integration.expires_at)
    if expires_at is None:
        return False
    margin = timedelta(seconds=settings.CRM_TOKEN_REFRESH_MARGIN_SECONDS)
    return expires_at - margin <= now


def _to_result(integration: CrmIntegration) -> TokenResult:
    return TokenResult(
        token=decrypt_token(integration.access_token_encrypted),
        location_id=integration.location_id,
        user_id=integration.user_id,
        campaign_email=integration.campaign_email,
    )


async def refresh_access_token(
    db: Session,
    integration: CrmIntegration,
    *,
    now: datetime | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> bool:
    """
    Exchange the stored refresh token for a new access token.

    Returns True when the integration now holds a fresh token (refreshed here
    or concurrently by another process), False when the refresh failed.
    """
    now = now or utc_now()
    refresh_token = decrypt_token(integration.refresh_token_encrypted)
    if not refresh_token:
        logger.warning(
            "CRM token expired with no refresh token",
            extra=build_log_context(user_id=integration.user_id),
        )
        return False

    data = {
        "client_id": settings.CRM_CLIENT_ID,
        "client_secret": settings.CRM_CLIENT_SECRET,
        "grant_type": "refresh_token",
        "refresh_token": refresh_token,
        "user_type": "Location",
    }
    try:
        async with httpx.AsyncClient(
            timeout=httpx.Timeout(settings.CRM_TIMEOUT_SECONDS), transport=transport
        ) as client:
            resp = await client.post(
                f"{settings.CRM_BASE_URL}/oauth/token",
                data=data,
                headers={"Accept": "application/json"},
            )
    except httpx.RequestError as exc:
        logger.warning(
            "CRM token refresh request failed: %s",
            type(exc).__name__,
            extra=build_log_context(user_id=integration.user_id),
        )
        return False

    if resp.status_code != 200:
        logger.warning(
            "CRM token refresh returned %s",
            resp.status_code,
            extra=build_log_context(user_id=integration.user_id),
        )
        return False

    body = resp.json()
    access_token = body.get("access_token")
    if not access_token:
        logger.warning("CRM token refresh response missing access_token")
        return False

    read_version = integration.token_version
    values = {
        "access_token_encrypted": encrypt_token(access_token),
        "refresh_token_encrypted": encrypt_token(body.get("refresh_token") or refresh_token),
        "expires_at": now + timedelta(seconds=int(body.get("expires_in") or 86400)),
        "token_version": read_version + 1,
        "updated_at": now,
    }
    result = db.execute(
        update(CrmIntegration)
        .where(
            CrmIntegration.id == integration.id,
            CrmIntegration.token_version == read_version,
        )
        .values(**values)
    )
    db.commit()
    db.refresh(integration)

    if result.rowcount == 0:
        logger.info(
            "CRM token refreshed concurrently, using stored token",
            extra=build_log_context(user_id=integration.user_id),
        )
        return not _needs_refresh(integration, now)

    logger.info(
        "CRM token refreshed",
        extra=build_log_context(user_id=integration.user_id, location_id=integration.location_id),
    )
    return True


async def get_valid_token(
    db: Session,
    user_id: str,
    *,
    now: datetime | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> TokenResult | None:
    """
    Get a usable token for the user's active integration.

    Returns None when there is no active integration or the refresh fails.
    """
    now = now or utc_now()
    integration = get_active_integration(db, user_id)
    if not integration:
        return None

    if _needs_refresh(integration, now):
        refreshed = await refresh_access_token(db, integration, now=now, transport=transport)
        if not refreshed:
            return None

    return _to_result(integration)


async def require_valid_token(
    db: Session,
    user_id: str,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> TokenResult:
    result = await get_valid_token(db, user_id, transport=transport)
    if result is None:
        raise TokenUnavailable(f"No usable CRM token for user {user_id}")
    return result


def get_integration_by_location(db: Session, location_id: str) -> CrmIntegration | None:
    """Active integration for a CRM location (webhooks identify accounts by location)."""
    return (
        db.query(CrmIntegration)
        .filter(
            CrmIntegration.location_id == location_id,
            CrmIntegration.is_active.is_(True),
        )
        .order_by(CrmIntegration.created_at.desc())
        .first()
    )


async def require_token_for_location(
    db: Session,
    location_id: str,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> TokenResult:
    """Token for the account that owns a CRM location; raises TokenUnavailable."""
    integration = get_integration_by_location(db, location_id)
    if not integration:
        raise TokenUnavailable(f"No active CRM integration for location {location_id}")
    return await require_valid_token(db, integration.user_id, transport=transport)
