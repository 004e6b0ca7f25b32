"""FlightBuffer partner REST adapter.

Authenticates with a bearer API key plus an `X-API-Secret` header. Search
responses come back as `{"status": true, "data": [...]}` where every item
carries a `priceInfo` and a `serviceInfo` block; durations are "H:M" strings
and luggage looks like "30 KG/ADT".
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from api_base import BaseSupplierAdapter
from errors import ProviderRejectedError
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
    make_offer_id,
    parse_datetime,
    parse_duration_minutes,
)


NOT_REFUNDABLE = ('-', 'no', 'false', '0')

CABIN_NAMES = {
    'economy': 'Economy',
    'y': 'Economy',
    'premium economy': 'Premium Economy',
    'premium_economy': 'Premium Economy',
    'w': 'Premium Economy',
    'business': 'Business',
    'c': 'Business',
    'j': 'Business',
    'first': 'First',
    'f': 'First',
}


def normalize_cabin(value: Optional[str]) -> str:
    cabin = (value or 'Economy').strip().lower()
    return CABIN_NAMES.get(cabin, cabin.capitalize())


def clean_luggage(value: Any) -> Optional[str]:
    """'30 KG/ADT' -> '30 KG'."""
    if value is None or value == '':
        return None
    return str(value).split('/')[0].strip() or None


class FlightBufferSupplier(BaseSupplierAdapter):
    code = 'flightbuffer'

    def default_headers(self) -> Dict[str, str]:
        headers = {'Content-Type': 'application/json'}
        if self.settings.api_key:
            headers['Authorization'] = f"Bearer {self.settings.api_key}"
        if self.settings.api_secret:
            headers['X-API-Secret'] = self.settings.api_secret
        return headers

    # ------------------------------
    # Search
    # ------------------------------

    def build_search_payload(self, request: SearchRequest) -> Dict[str, Any]:
        legs = [{
            'origin': request.origin_code,
            'destination': request.destination_code,
            'departure': request.departure_date.isoformat(),
        }]
        if request.is_round_trip:
            legs.append({
                'origin': request.destination_code,
                'destination': request.origin_code,
                'departure': request.return_date.isoformat(),
            })
        return {
            'adults': request.adults,
            'children': request.children,
            'infants': request.infants,
            'cabin': request.cabin,
            'tripType': request.trip_type,
            'searcherIdentity': self.settings.searcher_identity or 'default',
            'legs': legs,
        }

    def fetch_offers(self, request: SearchRequest) -> List[NormalizedOffer]:
        payload = self.build_search_payload(request)
        self.log_info("Performing search", payload=payload)

        resp = self._send('POST', '/api/flights/search', json=payload)
        self.raise_for_response(resp, "FlightBuffer search")
        return self.parse_search_response(self._decode(resp))

    def parse_search_response(self, response: Dict[str, Any]) -> List[NormalizedOffer]:
        if not response.get('status'):
            self.log_error("Search returned unsuccessful status", message=response.get('message'))
            raise ProviderRejectedError(
                f"FlightBuffer search rejected: {response.get('message') or 'status false'}",
                supplier=self.supplier_code,
                details={'response': response},
            )

        items = response.get('data') or []
        offers = []
        for index, item in enumerate(items):
            try:
                offer = self.normalize_offer(item, index)
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                reference = item.get('flightBufferReferenceId', 'unknown') if isinstance(item, dict) else 'unknown'
                self.log_error("Failed to parse offer", error=repr(e), item=reference)
                continue
            self.remember_offer(offer, {'index': index})
            offers.append(offer)

        self.log_info("Search parsed", total_results=len(items), parsed_results=len(offers))
        return offers

    def rebuild_offer(self, offer_id: str, raw: Dict[str, Any], context: Dict[str, Any]) -> Optional[NormalizedOffer]:
        if not raw:
            return None
        return self.normalize_offer(raw, int(context.get('index') or 0))

    def fetch_offer_live(self, offer_id: str) -> Optional[NormalizedOffer]:
        reference = self._reference_from_id(offer_id)
        resp = self._send('GET', f'/api/flights/offer/{reference}')
        if not resp.ok:
            self.log_warning("Failed to get offer details", offer_id=offer_id, status=resp.status_code)
            return None

        data = self._decode(resp).get('data')
        if not data:
            return None
        return self.normalize_offer(data, 0)

    def _reference_from_id(self, offer_id: str) -> str:
        prefix = f"{self.supplier_code}_"
        if not offer_id.startswith(prefix):
            return offer_id
        reference, _, index = offer_id[len(prefix):].rpartition('_')
        return reference if reference and index.isdigit() else offer_id[len(prefix):]

    # ------------------------------
    # Normalization
    # ------------------------------

    def normalize_offer(self, item: Dict[str, Any], index: int = 0) -> NormalizedOffer:
        price_info = item.get('priceInfo') or {}
        service_info = item.get('serviceInfo') or {}

        legs = tuple(self._leg(leg) for leg in service_info.get('legs') or [])
        refundable = str(service_info.get('refundable', '-')).strip().lower()
        passengers = service_info.get('passengersCount') or {'adults': 1, 'children': 0, 'infants': 0}

        reference = str(item.get('flightBufferReferenceId') or '')
        return NormalizedOffer(
            id=make_offer_id(self.supplier_code, reference, index),
            supplier_code=self.supplier_code,
            reference_id=reference,
            price=self._price(price_info),
            legs=legs,
            validating_airline=self._airline(service_info.get('validatingAirline') or {}),
            seats_available=self._seats_available(legs),
            refundable=refundable not in NOT_REFUNDABLE,
            valid_until=parse_datetime(service_info.get('searchValidity')),
            passengers={k: int(v) for k, v in passengers.items()},
            raw_data=item,
            seller_code=item.get('sellerCode'),
            has_brands=bool(item.get('hasBrands', False)),
            onholdable=bool(item.get('onholdable', False)),
        )

    @staticmethod
    def _price(data: Dict[str, Any]) -> Price:
        currency = data.get('currency') or {}
        total = float(data.get('payable') or data.get('b2c') or 0)
        base = float(data.get('baseFare') or 0)

        breakdown = {}
        for kind, info in (data.get('breakDowns') or {}).items():
            breakdown[kind] = FareBreakdown(
                base_fare=float(info.get('baseFare') or 0),
                tax=float(info.get('tax') or 0),
                total_fare=float(info.get('totalFare') or 0),
                passengers_count=int(info.get('passengersCount') or 1),
                service_charge=float(info.get('serviceCharge') or 0),
                commission=float(info.get('commission') or 0),
            )

        return Price(
            total=total,
            base_fare=base,
            taxes=max(total - base, 0.0),
            currency=currency.get('abb') or 'USD',
            currency_symbol=currency.get('symbol') or '$',
            decimal_places=int(currency.get('decimal_places', 2)),
            breakdown=breakdown,
            guaranteed=bool(data.get('guaranteed', False)),
        )

    @staticmethod
    def _airline(data: Dict[str, Any]) -> Airline:
        return Airline(
            id=int(data.get('id') or 0),
            code=data.get('abb') or data.get('code') or '',
            name=data.get('en') or data.get('title') or data.get('name') or '',
            logo=data.get('logo'),
        )

    @staticmethod
    def _location(data: Dict[str, Any]) -> Location:
        airport = data.get('airport') or {}
        city = airport.get('city') or {}
        country = city.get('country') or {}
        return Location(
            city=data.get('city') or city.get('en') or '',
            airport_code=airport.get('abb') or '',
            airport_name=airport.get('en') or airport.get('title') or '',
            airport_id=airport.get('id'),
            terminal=data.get('terminal'),
            country=country.get('en') or country.get('title'),
            country_code=country.get('abb'),
            date_time=parse_datetime(data.get('raw_time')),
        )

    def _segment(self, data: Dict[str, Any]) -> Segment:
        operating = data.get('operatingAirline')
        return Segment(
            departure=self._location(data.get('departure') or {}),
            arrival=self._location(data.get('arrival') or {}),
            airline=self._airline(data.get('airline') or {}),
            operating_airline=self._airline(operating) if operating else None,
            flight_number=str(data.get('flight_number') or ''),
            cabin=normalize_cabin(data.get('cabin')),
            duration=parse_duration_minutes(str(data.get('duration') or '0:0'), minutes_in_hours_slot=True),
            aircraft=data.get('airplane'),
            luggage=clean_luggage(data.get('luggage')),
            booking_class=data.get('resBookDesigCode'),
            fare_basis=data.get('FareBasis'),
            capacity=int(data.get('capacity') or 0),
        )

    def _leg(self, data: Dict[str, Any]) -> Leg:
        info = data.get('info') or data
        segments = [self._segment(s) for s in data.get('segments') or []]
        first = segments[0] if segments else None
        last = segments[-1] if segments else None
        empty = Location(city='', airport_code='')

        if info.get('departure'):
            departure = self._location(info['departure'])
        else:
            departure = first.departure if first else empty
        if info.get('arrival'):
            arrival = self._location(info['arrival'])
        else:
            arrival = last.arrival if last else empty

        airline = info.get('airline')
        stops = info.get('connections')
        return Leg(
            departure=departure,
            arrival=arrival,
            duration=parse_duration_minutes(str(info.get('duration') or '0:0')),
            stops=int(stops) if stops is not None else max(0, len(segments) - 1),
            cabin=normalize_cabin(info.get('cabin')),
            segments=tuple(segments),
            airline=self._airline(airline) if airline else (first.airline if first else None),
            flight_number=info.get('flight_number') or (first.flight_number if first else None),
        )

    @staticmethod
    def _seats_available(legs) -> int:
        capacities = [s.capacity for leg in legs for s in leg.segments if s.capacity > 0]
        return min(capacities) if capacities else 0

    # ------------------------------
    # Health
    # ------------------------------

    def perform_connection_test(self) -> HealthProbeResult:
        # any HTTP answer means the partner is reachable
        resp = self._send('GET', '/api/health')
        if resp.ok:
            return HealthProbeResult(success=True, message='FlightBuffer API is reachable')
        return HealthProbeResult(success=True, message=f"API returned status {resp.status_code}")
