"""Local flight inventory exposed as a supplier.

Lets operator-owned flights show up next to external results. Prices are
derived from the flight's base fare. The inventory stays the source of truth
for the flight itself; the offer cache only keeps the search context
(passengers, cabin, currency) so a detail lookup prices the offer the same way.
"""

from __future__ import annotations

import sqlite3
from datetime import date
from typing import List, Optional

from api_base import BaseSupplierAdapter
from errors import SupplierError, SupplierErrorCode
from inventory import FlightInventory, InventoryFlight, get_inventory
from models import (
    Airline,
    FareBreakdown,
    HealthProbeResult,
    Leg,
    Location,
    NormalizedOffer,
    Price,
    SearchRequest,
    Segment,
    currency_symbol,
    make_offer_id,
)


CHILD_FARE_RATIO = 0.75
INFANT_FARE_RATIO = 0.10
TAX_RATE = 0.12
SEATS_AVAILABLE = 9
DEFAULT_BAGGAGE_KG = 23


class DatabaseSupplier(BaseSupplierAdapter):
    code = "database"

    def __init__(self, settings=None, *, inventory: Optional[FlightInventory] = None, **kwargs):
        super().__init__(settings, **kwargs)
        self.inventory = inventory if inventory is not None else get_inventory()

    def fetch_offers(self, request: SearchRequest) -> List[NormalizedOffer]:
        try:
            flights = self.inventory.find_flights(
                request.origin_code,
                request.destination_code,
                request.departure_date,
                min_price=request.filter('min_price'),
                max_price=request.filter('max_price'),
                airline_id=request.filter('airline_id'),
            )
        except sqlite3.Error as e:
            raise SupplierError(f"Inventory query failed: {e}", supplier=self.supplier_code,
                                code=SupplierErrorCode.TRANSPORT) from e

        offers = []
        for flight in flights:
            offer = self.to_offer(flight, request)
            self.remember_offer(offer, {
                'adults': request.adults,
                'children': request.children,
                'infants': request.infants,
                'cabin': request.cabin,
                'currency': request.currency,
            })
            offers.append(offer)
        return offers

    def to_offer(self, flight: InventoryFlight, request: SearchRequest) -> NormalizedOffer:
        cabin = request.cabin.replace('_', ' ').title()
        currency = request.currency or 'USD'

        departure = Location(
            city=flight.origin.city,
            airport_code=flight.origin.code,
            airport_name=flight.origin.name,
            airport_id=flight.origin.id,
            country=flight.origin.country,
            date_time=flight.departure_time,
        )
        arrival = Location(
            city=flight.destination.city,
            airport_code=flight.destination.code,
            airport_name=flight.destination.name,
            airport_id=flight.destination.id,
            country=flight.destination.country,
            date_time=flight.arrival_time,
        )
        airline = Airline(
            id=flight.airline.id,
            code=flight.airline.code,
            name=flight.airline.name,
            logo=flight.airline.logo,
        )
        duration = flight.duration_minutes

        segment = Segment(
            departure=departure,
            arrival=arrival,
            airline=airline,
            flight_number=flight.flight_number,
            cabin=cabin,
            duration=duration,
            aircraft=flight.aircraft_type,
            luggage=f"{flight.default_baggage or DEFAULT_BAGGAGE_KG} KG",
            capacity=SEATS_AVAILABLE,
        )
        leg = Leg.from_segments([segment], duration, cabin)

        return NormalizedOffer(
            id=make_offer_id(self.supplier_code, flight.id, 0),
            supplier_code=self.supplier_code,
            reference_id=str(flight.id),
            price=self.price_for(flight.base_price, request, currency),
            legs=(leg,),
            validating_airline=airline,
            seats_available=SEATS_AVAILABLE,
            refundable=True,
            valid_until=flight.departure_time,
            passengers=self.passenger_counts(request),
            raw_data={'flight_id': flight.id, 'source': 'database'},
            onholdable=True,
        )

    @staticmethod
    def price_for(base: float, request: SearchRequest, currency: str = 'USD') -> Price:
        """Adults pay the base fare, children 75 %, infants 10 %, plus 12 % tax."""
        rows = (
            ('adult', 1.0, request.adults),
            ('child', CHILD_FARE_RATIO, request.children),
            ('infant', INFANT_FARE_RATIO, request.infants),
        )
        breakdown = {}
        base_total = 0.0
        for kind, ratio, count in rows:
            if count <= 0:
                continue
            fare = base * ratio
            base_total += fare * count
            breakdown[kind] = FareBreakdown(
                base_fare=round(fare, 2),
                tax=round(fare * TAX_RATE, 2),
                total_fare=round(fare * (1 + TAX_RATE), 2),
                passengers_count=count,
            )

        taxes = base_total * TAX_RATE
        return Price(
            total=round(base_total + taxes, 2),
            base_fare=round(base_total, 2),
            taxes=round(taxes, 2),
            currency=currency,
            currency_symbol=currency_symbol(currency),
            breakdown=breakdown,
            guaranteed=True,
        )

    def get_offer_details(self, offer_id: str) -> Optional[NormalizedOffer]:
        """Accepts `database_{flight_id}_0` or the bare flight id."""
        flight_id = self._flight_id(offer_id)
        if flight_id is None:
            self.log_info("Offer not found", offer_id=offer_id)
            return None

        try:
            flight = self.inventory.get_flight(flight_id)
        except sqlite3.Error as e:
            self.log_error("Failed to get offer details", offer_id=offer_id, error=str(e))
            return None

        if flight is None:
            self.log_info("Offer not found", offer_id=offer_id)
            return None

        # without a cached search context the offer is priced for one adult
        entry = self.offer_cache.get(make_offer_id(self.supplier_code, flight_id, 0)) or {}
        context = entry.get('context') or {}
        request = SearchRequest(
            origin_code=flight.origin.code,
            destination_code=flight.destination.code,
            departure_date=flight.departure_time.date() if flight.departure_time else date.today(),
            adults=int(context.get('adults', 1)),
            children=int(context.get('children', 0)),
            infants=int(context.get('infants', 0)),
            cabin=context.get('cabin') or 'economy',
            currency=context.get('currency') or 'USD',
        )
        return self.to_offer(flight, request)

    def _flight_id(self, offer_id: str) -> Optional[int]:
        text = str(offer_id)
        prefix = f"{self.supplier_code}_"
        if text.startswith(prefix):
            text = text[len(prefix):].split('_')[0]
        try:
            return int(text)
        except ValueError:
            return None

    def perform_connection_test(self) -> HealthProbeResult:
        try:
            count = self.inventory.count_flights()
        except sqlite3.Error as e:
            return HealthProbeResult(success=False, message=f"Database connection failed: {e}")
        return HealthProbeResult(success=True, message=f"Database connected. {count} flights available.")
