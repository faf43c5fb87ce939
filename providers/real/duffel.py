"""Duffel offers provider: real API integration.

Uses the Duffel Air API (offer requests, offers, seat maps, orders).
Credentials come from settings; every transport failure is classified into
``OfferExpired`` or ``ProviderUnavailable`` before it leaves this module.
"""
import asyncio
import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

import httpx

from booking.models import AncillaryCatalog, Offer, PassengerCounts, PassengerType, SeatMap, SliceQuery
from core.config import settings
from core.errors import OfferExpired, ProviderUnavailable
from providers.base import BaseOffersProvider
from providers.normalize import ancillaries_from_wire, offer_from_wire, seat_maps_from_wire

logger = logging.getLogger(__name__)

_WIRE_TYPES = {
    PassengerType.ADULT: "adult",
    PassengerType.CHILD: "child",
    PassengerType.INFANT_WITH_SEAT: "child",
    PassengerType.INFANT_WITHOUT_SEAT: "infant_without_seat",
}

# Offer lookups that fail with these mean the offer is gone, not that Duffel is down.
_GONE_STATUSES = {404, 410, 422}


class DuffelOffersProvider(BaseOffersProvider):
    name = "duffel"

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: float = 30.0,
        max_retries: int = 3,
    ):
        self._api_key = api_key if api_key is not None else settings.duffel_api_key
        self._base_url = (base_url or settings.duffel_base_url).rstrip("/")
        self._timeout = timeout
        self._max_retries = max_retries

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_key}",
            "Duffel-Version": settings.duffel_version,
            "Accept": "application/json",
            "Content-Type": "application/json",
        }

    async def _request(self, method: str, path: str, offer_id: Optional[str] = None, **kwargs) -> Any:
        """Authenticated request with retry on 429. Returns the ``data`` member."""
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                for attempt in range(self._max_retries + 1):
                    resp = await client.request(
                        method, f"{self._base_url}{path}", headers=self._headers(), **kwargs
                    )
                    if resp.status_code == 429 and attempt < self._max_retries:
                        retry_after = int(resp.headers.get("retry-after", 2 ** attempt))
                        logger.warning("Duffel 429, retrying after %ds (attempt %d)", retry_after, attempt + 1)
                        await asyncio.sleep(retry_after)
                        continue
                    if offer_id is not None and resp.status_code in _GONE_STATUSES:
                        logger.info("Duffel reports offer %s unavailable (HTTP %d)", offer_id, resp.status_code)
                        raise OfferExpired(offer_id)
                    resp.raise_for_status()
                    return resp.json().get("data")
        except httpx.HTTPStatusError as exc:
            detail = _error_message(exc.response)
            logger.warning("Duffel %s %s failed with HTTP %d: %s", method, path, exc.response.status_code, detail)
            raise ProviderUnavailable(self.name, detail) from exc
        except httpx.HTTPError as exc:
            logger.warning("Duffel %s %s failed: %s", method, path, exc)
            raise ProviderUnavailable(self.name, str(exc) or type(exc).__name__) from exc
        raise ProviderUnavailable(self.name, "rate limited")

    async def search_offers(
        self,
        slices: Sequence[SliceQuery],
        passengers: PassengerCounts,
        cabin_class: str = "economy",
    ) -> List[Offer]:
        request = await self._request("POST", "/air/offer_requests", params={"return_offers": "false"}, json={
            "data": {
                "slices": [
                    {"origin": s.origin, "destination": s.destination, "departure_date": s.departure_date}
                    for s in slices
                ],
                "passengers": [{"type": _WIRE_TYPES[t]} for t in passengers.passenger_types()],
                "cabin_class": cabin_class,
                "max_connections": 1,
            }
        })
        data = await self._request("GET", "/air/offers", params={
            "offer_request_id": request["id"],
            "sort": "total_amount",
            "limit": 50,
        })

        offers = []
        for raw in data or []:
            try:
                offers.append(offer_from_wire(raw))
            except (KeyError, ValueError) as exc:
                logger.warning("Skipping malformed Duffel offer %s: %s", raw.get("id"), exc)
        return offers

    async def get_offer(self, offer_id: str) -> Offer:
        data = await self._request("GET", f"/air/offers/{offer_id}", offer_id=offer_id)
        return offer_from_wire(data)

    async def get_seat_map(self, offer_id: str) -> List[SeatMap]:
        offer = await self.get_offer(offer_id)
        data = await self._request("GET", "/air/seat_maps", offer_id=offer_id, params={"offer_id": offer_id})
        return seat_maps_from_wire(data or [], offer)

    async def get_ancillary_services(self, offer_id: str) -> AncillaryCatalog:
        data = await self._request(
            "GET", f"/air/offers/{offer_id}", offer_id=offer_id,
            params={"return_available_services": "true"},
        )
        return ancillaries_from_wire(data or {})

    async def create_order(
        self,
        offer_id: str,
        passengers: Sequence[Dict[str, Any]],
        services: Sequence[Dict[str, Any]],
        amount: Decimal,
        currency: str,
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "selected_offers": [offer_id],
            "passengers": list(passengers),
            "type": "instant",
            "payments": [{"type": "balance", "amount": str(amount), "currency": currency.upper()}],
        }
        if services:
            body["services"] = [{"id": s["id"], "quantity": s.get("quantity", 1)} for s in services]

        order = await self._request("POST", "/air/orders", json={"data": body})
        logger.info("Duffel order %s created for offer %s", order.get("id"), offer_id)
        return {
            "id": order["id"],
            "booking_reference": order.get("booking_reference"),
            "total_amount": order.get("total_amount"),
            "currency": order.get("total_currency", currency),
        }


def _error_message(resp: httpx.Response) -> str:
    try:
        errors = resp.json().get("errors") or []
    except ValueError:
        errors = []
    if errors and errors[0].get("message"):
        return errors[0]["message"]
    return f"HTTP {resp.status_code}"
