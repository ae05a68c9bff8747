"""FastAPI dependencies for shared-secret checks, database access and collaborators."""

import hmac
from typing import Callable, Generator

from fastapi import Header, HTTPException
from sqlalchemy.orm import Session

from app.core.config import settings
from app.db.session import SessionLocal
from app.services.ai_provider import AIProvider, get_provider
from app.services.conversation_tools import ConversationTools
from app.services.crm_client import CrmClient
from app.services.crm_token_service import TokenResult
from app.services.property_services import (
    get_address_validator,
    get_search_alert_service,
    get_valuation_lookup,
)

ClientFactory = Callable[[TokenResult], CrmClient]
ToolsFactory = Callable[[CrmClient], ConversationTools]


def get_db() -> Generator[Session, None, None]:
    """
    Database session dependency.

    Yields a database session and ensures it's closed after the request.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _check_secret(provided: str | None, expected: str, name: str) -> None:
    if not expected:
        raise HTTPException(status_code=501, detail=f"{name} not configured")
    if not provided or not hmac.compare_digest(provided.encode(), expected.encode()):
        raise HTTPException(status_code=403, detail=f"Invalid {name.lower().replace('_', ' ')}")


def verify_internal_secret(x_internal_secret: str | None = Header(default=None)) -> None:
    """Scheduler calls carry X-Internal-Secret."""
    _check_secret(x_internal_secret, settings.INTERNAL_SECRET, "INTERNAL_SECRET")


def verify_webhook_secret(x_webhook_secret: str | None = Header(default=None)) -> None:
    """CRM workflow webhooks carry X-Webhook-Secret."""
    _check_secret(x_webhook_secret, settings.WEBHOOK_SECRET, "WEBHOOK_SECRET")


def get_client_factory() -> ClientFactory:
    def factory(token: TokenResult) -> CrmClient:
        return CrmClient(token.token, token.location_id)

    return factory


def get_ai_provider() -> AIProvider | None:
    return get_provider()


def get_tools_factory() -> ToolsFactory:
    def factory(crm: CrmClient) -> ConversationTools:
        return ConversationTools(
            crm,
            get_address_validator(),
            get_valuation_lookup(),
            get_search_alert_service(),
        )

    return factory
