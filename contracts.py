"""Inbound contract every flight supplier adapter fulfils.

`SupplierAdapter` covers what all suppliers can do. Pricing, booking and seat
selection are opt-in capabilities: an adapter declares them by also deriving
from `Priceable`, `Bookable` or `SeatMapCapable`, and callers check with
`isinstance` instead of catching "not implemented" errors.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

from models import (
    BookingResult,
    HealthProbeResult,
    NormalizedOffer,
    Passenger,
    PricingResult,
    SearchOutcome,
    SearchRequest,
    SeatMapResult,
)


class SupplierAdapter(ABC):

    @property
    @abstractmethod
    def supplier_code(self) -> str:
        """Stable identifier, also the prefix of every offer id."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Display name."""

    @abstractmethod
    def search_outcome(self, request: SearchRequest) -> SearchOutcome:
        """Search and report Ok(offers) or Err(reason). Never raises."""

    def search(self, request: SearchRequest) -> List[NormalizedOffer]:
        """Offers for the request; an empty list when the supplier failed."""
        return list(self.search_outcome(request).offers)

    @abstractmethod
    def get_offer_details(self, offer_id: str) -> Optional[NormalizedOffer]:
        """Rebuild a previously returned offer, or None once it has expired."""

    @abstractmethod
    def test_connection(self) -> HealthProbeResult:
        """Probe the provider and update health state."""

    @abstractmethod
    def is_available(self) -> bool:
        """Active and healthy. Reads local state only."""

    @abstractmethod
    def get_seat_map(self, offer_id: str) -> SeatMapResult:
        """Seat map for an offer, or an unsupported result."""


class Priceable(ABC):

    @abstractmethod
    def price_offer(self, offer: NormalizedOffer) -> PricingResult:
        """Confirm the live price of an offer before booking."""


class Bookable(ABC):

    @abstractmethod
    def book(self, offer: NormalizedOffer, passengers: Sequence[Passenger]) -> BookingResult:
        """Create an order with the provider.

        Not idempotent: every call reaches the provider. Raises a
        `SupplierError` subclass on failure.
        """


class SeatMapCapable(ABC):
    """Marker for adapters whose `get_seat_map` returns real seat data."""
