"""Property collaborators used by conversation tools.

- AddressValidator: Google Geocoding API
- ValuationLookup: Bridge Zestimates API
- SearchAlertService: kvCORE saved-search alerts

Each collaborator is an abstract base so deployments and tests can swap the
vendor. Vendor failures return None instead of raising; the conversation
reply then says the lookup did not work.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

import httpx

from app.core.config import settings
from app.utils.normalization import normalize_state

logger = logging.getLogger(__name__)

HTTPX_TIMEOUT = httpx.Timeout(10.0, connect=5.0)


@dataclass
class ValidatedAddress:
    street: str
    city: str
    state: str
    zip: str
    lat: float | None = None
    lng: float | None = None
    formatted: str = ""


@dataclass
class Valuation:
    estimated_value: float
    sqft: int | None = None
    beds: float | None = None
    baths: float | None = None
    year_built: int | None = None


@dataclass
class BuyerSearch:
    cities: list[str]
    state: str
    max_price: float
    min_price: float | None = None
    beds: float | None = None
    baths: float | None = None
    property_types: list[str] = field(default_factory=lambda: ["Single Family", "Condo"])


class AddressValidator(ABC):
    @abstractmethod
    async def validate(self, address_text: str) -> ValidatedAddress | None:
        pass


class ValuationLookup(ABC):
    @abstractmethod
    async def get_valuation(
        self,
        street: str,
        city: str,
        state: str,
        zip_code: str,
        lat: float | None = None,
        lng: float | None = None,
    ) -> Valuation | None:
        pass


class SearchAlertService(ABC):
    @abstractmethod
    async def save_search(
        self, *, name: str, email: str | None, phone: str | None, search: BuyerSearch
    ) -> bool:
        pass


class GoogleAddressValidator(AddressValidator):
    """Standardize free-text addresses with the Google Geocoding API."""

    url = "https://maps.googleapis.com/maps/api/geocode/json"

    def __init__(self, api_key: str, transport: httpx.AsyncBaseTransport | None = None):
        self.api_key = api_key
        self._transport = transport

    async def validate(self, address_text: str) -> ValidatedAddress | None:
        if not self.api_key or not address_text.strip():
            return None
        try:
            async with httpx.AsyncClient(timeout=HTTPX_TIMEOUT, transport=self._transport) as client:
                resp = await client.get(self.url, params={"address": address_text, "key": self.api_key})
        except httpx.RequestError as exc:
            logger.warning("Geocoding request failed: %s", type(exc).__name__)
            return None

        if resp.status_code != 200:
            logger.warning("Geocoding returned %s", resp.status_code)
            return None
        data = resp.json()
        results = data.get("results") or []
        if data.get("status") != "OK" or not results:
            return None

        best = results[0]
        parts: dict[str, dict[str, Any]] = {}
        for component in best.get("address_components", []):
            for kind in component.get("types", []):
                parts.setdefault(kind, component)

        def long_name(kind: str) -> str:
            return parts.get(kind, {}).get("long_name", "")

        street = " ".join(p for p in (long_name("street_number"), long_name("route")) if p)
        raw_state = parts.get("administrative_area_level_1", {}).get("short_name", "")
        try:
            state = normalize_state(raw_state) or ""
        except ValueError:
            state = raw_state
        location = best.get("geometry", {}).get("location", {})
        if not street:
            return None
        return ValidatedAddress(
            street=street,
            city=long_name("locality") or long_name("sublocality"),
            state=state,
            zip=long_name("postal_code"),
            lat=location.get("lat"),
            lng=location.get("lng"),
            formatted=best.get("formatted_address", ""),
        )


class BridgeValuationLookup(ValuationLookup):
    """Zestimate lookup through the Bridge data API."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.bridgedataoutput.com/api/v2",
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key
        self.base_url = base_url
        self._transport = transport

    async def get_valuation(
        self,
        street: str,
        city: str,
        state: str,
        zip_code: str,
        lat: float | None = None,
        lng: float | None = None,
    ) -> Valuation | None:
        if not self.api_key:
            return None
        params = {"address": street, "city": city, "state": state, "zipcode": zip_code, "limit": 5}
        try:
            async with httpx.AsyncClient(timeout=HTTPX_TIMEOUT, transport=self._transport) as client:
                resp = await client.get(
                    f"{self.base_url}/zestimates_v2/zestimates",
                    params=params,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                )
        except httpx.RequestError as exc:
            logger.warning("Valuation request failed: %s", type(exc).__name__)
            return None

        if resp.status_code != 200:
            logger.warning("Valuation lookup returned %s", resp.status_code)
            return None

        bundle = [b for b in resp.json().get("bundle") or [] if b.get("zestimate")]
        if not bundle:
            return None
        # Main house (no unit number) first, then the newest estimate
        bundle.sort(key=lambda b: b.get("timestamp") or "", reverse=True)
        bundle.sort(key=lambda b: bool(b.get("unitNumber")))
        best = bundle[0]
        return Valuation(
            estimated_value=float(best["zestimate"]),
            sqft=best.get("livingArea"),
            beds=best.get("bedrooms"),
            baths=best.get("bathrooms"),
            year_built=best.get("yearBuilt"),
        )


class KvCoreSearchAlertService(SearchAlertService):
    """Create a buyer contact in kvCORE and attach a daily saved-search alert."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.kvcore.com/v2",
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key
        self.base_url = base_url
        self._transport = transport

    async def save_search(
        self, *, name: str, email: str | None, phone: str | None, search: BuyerSearch
    ) -> bool:
        if not self.api_key:
            return False
        first, _, last = (name or "Buyer").partition(" ")
        headers = {"Authorization": f"Bearer {self.api_key}", "Accept": "application/json"}
        contact_body = {
            "first_name": first or "Buyer",
            "last_name": last or "Lead",
            "email": email,
            "cell_phone_1": phone,
            "deal_type": "buyer",
            "source": "AI Chat",
            "hashtags": ["#fbbuyerleads"],
        }
        alert_body = {
            "number": 1,
            "areas": [{"type": "city", "name": city} for city in search.cities],
            "types": search.property_types,
            "beds": search.beds,
            "baths": search.baths,
            "min_price": search.min_price,
            "max_price": search.max_price,
            "frequency": "daily",
        }
        try:
            async with httpx.AsyncClient(timeout=HTTPX_TIMEOUT, transport=self._transport) as client:
                resp = await client.post(
                    f"{self.base_url}/public/contacts", json=contact_body, headers=headers
                )
                if resp.status_code >= 400:
                    logger.warning("kvCORE contact create returned %s", resp.status_code)
                    return False
                body = resp.json()
                kv_contact_id = body.get("id") or body.get("data", {}).get("id")
                if not kv_contact_id:
                    return False
                resp = await client.post(
                    f"{self.base_url}/public/contact/{kv_contact_id}/searchalert",
                    json=alert_body,
                    headers=headers,
                )
        except httpx.RequestError as exc:
            logger.warning("kvCORE request failed: %s", type(exc).__name__)
            return False
        return resp.status_code < 400


def get_address_validator() -> AddressValidator:
    return GoogleAddressValidator(settings.GOOGLE_MAPS_API_KEY)


def get_valuation_lookup() -> ValuationLookup:
    return BridgeValuationLookup(settings.BRIDGE_API_KEY, settings.BRIDGE_BASE_URL)


def get_search_alert_service() -> SearchAlertService:
    return KvCoreSearchAlertService(settings.KVCORE_API_KEY, settings.KVCORE_BASE_URL)
