"""Offer Cache: the last search and its results, held per booking session."""
from typing import Dict, List, Optional

from booking import serialization as ser
from booking.models import Offer, SearchCriteria
from core.session_store import SessionStore

CRITERIA_KEY = "search_criteria"
RESULTS_KEY = "search_results"


class OfferCache:
    def __init__(self, session_id: str, store: SessionStore):
        self.session_id = session_id
        self.store = store
        self.criteria: Optional[SearchCriteria] = None
        self._offers: Dict[str, Offer] = {}

    @classmethod
    async def load(cls, session_id: str, store: SessionStore) -> "OfferCache":
        cache = cls(session_id, store)
        raw = await store.load(session_id)
        if CRITERIA_KEY in raw:
            cache.criteria = ser.criteria_from_dict(ser.loads(raw[CRITERIA_KEY]))
        if RESULTS_KEY in raw:
            for data in ser.loads(raw[RESULTS_KEY]):
                offer = ser.offer_from_dict(data)
                cache._offers[offer.id] = offer
        return cache

    @property
    def slice_count(self) -> int:
        return len(self.criteria.slices) if self.criteria else 0

    async def replace(self, criteria: SearchCriteria, offers: List[Offer]) -> None:
        self.criteria = criteria
        self._offers = {offer.id: offer for offer in offers}
        await self.store.save_many(self.session_id, {
            CRITERIA_KEY: ser.dumps(ser.criteria_to_dict(criteria)),
            RESULTS_KEY: ser.dumps([ser.offer_to_dict(o) for o in offers]),
        })

    async def put(self, offer: Offer) -> None:
        """Replace a cached offer wholesale, e.g. with the re-verified one."""
        self._offers[offer.id] = offer
        await self.store.save(
            self.session_id, RESULTS_KEY,
            ser.dumps([ser.offer_to_dict(o) for o in self._offers.values()]),
        )

    def get(self, offer_id: str) -> Optional[Offer]:
        return self._offers.get(offer_id)

    def offers(self) -> List[Offer]:
        return list(self._offers.values())
