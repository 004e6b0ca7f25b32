"""Amadeus Self-Service Flights adapter.

Purpose
- Search flight offers, confirm their price, book them and fetch seat maps.
- Raise `SupplierError` subclasses on actionable pricing/booking failures.

Flow
- search: POST /v2/shopping/flight-offers. Every offer's raw payload is cached
  under its normalized id because pricing, booking and seat maps all need the
  exact payload Amadeus returned.
- price_offer: POST /v1/shopping/flight-offers/pricing with the raw offer.
- book: POST /v1/booking/flight-orders with the priced offer when we have one.

Settings (see config.py)
- AMADEUS_CLIENT_ID / AMADEUS_CLIENT_SECRET
- AMADEUS_API_ENV=test|production
- SIMULATE_SANDBOX_BOOKINGS

Notes
- OAuth2 tokens live in the token cache for `expires_in - 100` seconds. Any
  401 clears the token; the failed call is retried once with a fresh token.
"""

from __future__ import annotations

import re
import secrets
import threading
import uuid
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence, Tuple

import requests

from api_base import BaseSupplierAdapter, error_detail
from cache import PRICED_OFFER_PREFIX
from contracts import Bookable, Priceable, SeatMapCapable
from errors import (
    AuthenticationError,
    ConfigurationError,
    ProviderRejectedError,
    SupplierError,
    ValidationError,
)
from models import (
    Airline,
    BookingResult,
    FareBreakdown,
    HealthProbeResult,
    Leg,
    Location,
    NormalizedOffer,
    Passenger,
    Price,
    PricingResult,
    Seat,
    SeatMapResult,
    Segment,
    SegmentSeatMap,
    currency_symbol,
    make_offer_id,
    parse_datetime,
    parse_duration_minutes,
)


TOKEN_MARGIN_SECONDS = 100
OFFER_EXPIRY_MINUTES = 20
MAX_FLIGHT_OFFERS = 50
AIRLINE_INFO_TTL = 86400

# Booking errors the Amadeus test environment returns for perfectly valid orders.
SANDBOX_ERROR_CODES = {34651, 34652, 37201, 38034, 4926}

CABIN_MAP = {
    'economy': 'ECONOMY',
    'y': 'ECONOMY',
    'premium_economy': 'PREMIUM_ECONOMY',
    'premium economy': 'PREMIUM_ECONOMY',
    'w': 'PREMIUM_ECONOMY',
    'business': 'BUSINESS',
    'c': 'BUSINESS',
    'j': 'BUSINESS',
    'first': 'FIRST',
    'f': 'FIRST',
}


def map_cabin(cabin: str) -> str:
    return CABIN_MAP.get((cabin or '').strip().lower(), 'ECONOMY')


def _shift_years(today: date, years: int) -> date:
    try:
        return today.replace(year=today.year + years)
    except ValueError:
        # Feb 29 on a non-leap target year
        return today.replace(year=today.year + years, day=28)


def _shift_months(today: date, months: int) -> date:
    index = today.year * 12 + (today.month - 1) + months
    year, month = divmod(index, 12)
    return date(year, month + 1, min(today.day, 28))


def _first_pnr(data: Dict[str, Any]) -> str:
    for record in data.get('associatedRecords') or []:
        if record.get('reference'):
            return record['reference']
    return ''


class AmadeusSupplier(BaseSupplierAdapter, Priceable, Bookable, SeatMapCapable):
    """Amadeus GDS adapter (OAuth2 client credentials)."""

    code = 'amadeus'

    def __init__(self, settings=None, **kwargs):
        super().__init__(settings, **kwargs)
        self._token_lock = threading.Lock()

    @property
    def base_url(self) -> str:
        return (self.settings.base_url or 'https://test.api.amadeus.com').rstrip('/')

    @property
    def client_id(self) -> str:
        return self.settings.client_id or self.settings.api_key

    @property
    def client_secret(self) -> str:
        return self.settings.client_secret or self.settings.api_secret

    # ------------------------------
    # OAuth2
    # ------------------------------

    def access_token(self) -> str:
        """Cached bearer token; at most one fetch in flight per adapter."""
        token = self.token_cache.get(self.supplier_code)
        if token:
            return token

        with self._token_lock:
            token = self.token_cache.get(self.supplier_code)
            if token:
                return token
            token, expires_in = self.request_new_token()
            self.token_cache.put(self.supplier_code, token, expires_in - TOKEN_MARGIN_SECONDS)
            return token

    def request_new_token(self) -> Tuple[str, int]:
        if not (self.client_id and self.client_secret):
            raise ConfigurationError(
                "Amadeus API credentials not configured (need AMADEUS_CLIENT_ID and AMADEUS_CLIENT_SECRET)",
                supplier=self.supplier_code,
            )

        self.log_info("Requesting new access token", base_url=self.base_url)
        resp = self._send(
            'POST',
            '/v1/security/oauth2/token',
            data={
                'grant_type': 'client_credentials',
                'client_id': self.client_id,
                'client_secret': self.client_secret,
            },
            headers={'Content-Type': 'application/x-www-form-urlencoded'},
        )
        if not resp.ok:
            self.log_error("Failed to obtain access token", status=resp.status_code)
            raise AuthenticationError(
                f"Failed to authenticate with Amadeus API: {error_detail(resp)}",
                supplier=self.supplier_code,
                status_code=resp.status_code,
            )

        payload = self._decode(resp)
        token = payload.get('access_token')
        if not token:
            raise AuthenticationError("No access token in Amadeus response", supplier=self.supplier_code)

        expires_in = int(payload.get('expires_in') or 1799)
        self.log_info("Access token acquired", expires_in=expires_in)
        return token, expires_in

    def clear_access_token(self):
        self.token_cache.forget(self.supplier_code)

    def _request(self, method: str, path: str, headers: Optional[Dict[str, str]] = None,
                 **kwargs) -> requests.Response:
        """Authenticated request; a 401 clears the token and is retried once."""
        for attempt in range(2):
            auth = {'Authorization': f"Bearer {self.access_token()}"}
            resp = self._send(method, path, headers={**(headers or {}), **auth}, **kwargs)
            if resp.status_code != 401:
                return resp

            if attempt == 0:
                self.clear_access_token()
                self.log_warning("Access token rejected, retrying with a fresh token", path=path)
                continue
            raise AuthenticationError(
                "Authentication failed after token refresh",
                supplier=self.supplier_code,
                status_code=401,
            )
        # unreachable, the second 401 raises
        raise AuthenticationError("Authentication failed", supplier=self.supplier_code)

    # ------------------------------
    # Search
    # ------------------------------

    def build_search_payload(self, request) -> Dict[str, Any]:
        origin_destinations = [{
            'id': '1',
            'originLocationCode': request.origin_code,
            'destinationLocationCode': request.destination_code,
            'departureDateTimeRange': {'date': request.departure_date.isoformat()},
        }]
        if request.is_round_trip:
            origin_destinations.append({
                'id': '2',
                'originLocationCode': request.destination_code,
                'destinationLocationCode': request.origin_code,
                'departureDateTimeRange': {'date': request.return_date.isoformat()},
            })

        travelers = []
        for _ in range(request.adults):
            travelers.append({'id': str(len(travelers) + 1), 'travelerType': 'ADULT'})
        for _ in range(request.children):
            travelers.append({'id': str(len(travelers) + 1), 'travelerType': 'CHILD'})
        for _ in range(request.infants):
            # associated with the first adult
            travelers.append({'id': str(len(travelers) + 1), 'travelerType': 'SEATED_INFANT',
                              'associatedAdultId': '1'})

        return {
            'currencyCode': 'USD',
            'originDestinations': origin_destinations,
            'travelers': travelers,
            'sources': ['GDS'],
            'searchCriteria': {
                'maxFlightOffers': MAX_FLIGHT_OFFERS,
                'flightFilters': {
                    'cabinRestrictions': [{
                        'cabin': map_cabin(request.cabin),
                        'coverage': 'MOST_SEGMENTS',
                        'originDestinationIds': [od['id'] for od in origin_destinations],
                    }],
                },
            },
        }

    def fetch_offers(self, request) -> List[NormalizedOffer]:
        payload = self.build_search_payload(request)
        self.log_info("Performing search", origin=request.origin_code,
                      destination=request.destination_code, date=request.departure_date)

        resp = self._request('POST', '/v2/shopping/flight-offers', json=payload)
        self.raise_for_response(resp, "Amadeus search")
        return self.parse_search_response(self._decode(resp), self.passenger_counts(request))

    def parse_search_response(self, response: Dict[str, Any], passengers: Dict[str, int]) -> List[NormalizedOffer]:
        data = response.get('data') or []
        dictionaries = response.get('dictionaries') or {}
        if not data:
            self.log_info("No offers returned")
            return []

        offers = []
        for index, raw in enumerate(data):
            try:
                offer = self.normalize_offer(raw, passengers, dictionaries, index)
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                offer_id = raw.get('id', 'unknown') if isinstance(raw, dict) else 'unknown'
                self.log_error("Failed to parse offer", offer_id=offer_id, error=repr(e))
                continue
            self.remember_offer(offer, {
                'passengers': passengers,
                'index': index,
                'dictionaries': dictionaries,
                'valid_until': offer.valid_until.isoformat() if offer.valid_until else None,
            })
            offers.append(offer)

        self.log_info("Search parsed", total_results=len(data), parsed_results=len(offers))
        return offers

    def rebuild_offer(self, offer_id: str, raw: Dict[str, Any], context: Dict[str, Any]) -> Optional[NormalizedOffer]:
        if not raw:
            return None
        return self.normalize_offer(
            raw,
            context.get('passengers') or {},
            context.get('dictionaries') or {},
            int(context.get('index') or 0),
            valid_until=parse_datetime(context.get('valid_until')),
        )

    def normalize_offer(self, raw: Dict[str, Any], passengers: Dict[str, int],
                        dictionaries: Dict[str, Any], index: int = 0,
                        valid_until: Optional[datetime] = None) -> NormalizedOffer:
        fare_details = self._fare_details_by_segment(raw)
        legs = tuple(self._normalize_itinerary(it, dictionaries, fare_details) for it in raw.get('itineraries') or [])

        validating_code = (raw.get('validatingAirlineCodes') or [''])[0]
        validating = self._airline(validating_code, dictionaries)

        if valid_until is None:
            valid_until = parse_datetime(raw.get('lastTicketingDate')) or \
                datetime.now() + timedelta(minutes=OFFER_EXPIRY_MINUTES)

        return NormalizedOffer(
            id=make_offer_id(self.supplier_code, raw.get('id', index), index),
            supplier_code=self.supplier_code,
            reference_id=str(raw.get('id', '')),
            price=self._price(raw),
            legs=legs,
            validating_airline=validating,
            seats_available=int(raw.get('numberOfBookableSeats') or 9),
            refundable=self._is_refundable(raw),
            valid_until=valid_until,
            passengers=dict(passengers),
            raw_data=raw,
            has_brands=bool(raw.get('fareRules')),
            onholdable=False,
        )

    def _price(self, raw: Dict[str, Any], guaranteed: bool = False) -> Price:
        price = raw.get('price') or {}
        total = float(price.get('grandTotal') or price.get('total') or 0)
        base = float(price.get('base') or 0)
        currency = price.get('currency') or 'USD'

        taxes = sum(float(fee.get('amount') or 0) for fee in price.get('fees') or [])
        if taxes == 0:
            taxes = total - base

        return Price(
            total=total,
            base_fare=base,
            taxes=round(taxes, 2),
            currency=currency,
            currency_symbol=currency_symbol(currency),
            breakdown=self._breakdown(raw),
            guaranteed=guaranteed,
        )

    @staticmethod
    def _breakdown(raw: Dict[str, Any]) -> Dict[str, FareBreakdown]:
        by_type: Dict[str, Dict[str, Any]] = {}
        for tp in raw.get('travelerPricings') or []:
            kind = (tp.get('travelerType') or 'adult').lower()
            if kind in ('seated_infant', 'held_infant'):
                kind = 'infant'
            entry = by_type.setdefault(kind, {'count': 0, 'price': tp.get('price') or {}})
            entry['count'] += 1

        out = {}
        for kind, entry in by_type.items():
            total = float(entry['price'].get('total') or 0)
            base = float(entry['price'].get('base') or 0)
            out[kind] = FareBreakdown(
                base_fare=round(base, 2),
                tax=round(total - base, 2),
                total_fare=round(total, 2),
                passengers_count=entry['count'],
            )
        return out

    @staticmethod
    def _is_refundable(raw: Dict[str, Any]) -> bool:
        for tp in raw.get('travelerPricings') or []:
            for detail in tp.get('fareDetailsBySegment') or []:
                for amenity in detail.get('amenities') or []:
                    if amenity.get('amenityType') == 'REFUND' and amenity.get('isChargeable') is False:
                        return True
        return False

    @staticmethod
    def _fare_details_by_segment(raw: Dict[str, Any]) -> Dict[str, Dict[str, Any]]:
        """First traveler's fare details keyed by segment id."""
        pricings = raw.get('travelerPricings') or []
        if not pricings:
            return {}
        return {str(d.get('segmentId')): d for d in pricings[0].get('fareDetailsBySegment') or []}

    @staticmethod
    def _airline(code: str, dictionaries: Dict[str, Any]) -> Airline:
        return Airline(code=code, name=(dictionaries.get('carriers') or {}).get(code, code))

    @staticmethod
    def _location(point: Dict[str, Any], dictionaries: Dict[str, Any]) -> Location:
        code = point.get('iataCode') or ''
        info = (dictionaries.get('locations') or {}).get(code) or {}
        return Location(
            city=info.get('cityCode') or '',
            airport_code=code,
            airport_name=code,
            terminal=point.get('terminal'),
            country=info.get('countryCode'),
            country_code=info.get('countryCode'),
            date_time=parse_datetime(point.get('at')),
        )

    def _normalize_itinerary(self, itinerary: Dict[str, Any], dictionaries: Dict[str, Any],
                             fare_details: Dict[str, Dict[str, Any]]) -> Leg:
        segments = [self._normalize_segment(s, dictionaries, fare_details) for s in itinerary.get('segments') or []]
        return Leg.from_segments(segments, parse_duration_minutes(itinerary.get('duration') or 'PT0H0M'))

    def _normalize_segment(self, segment: Dict[str, Any], dictionaries: Dict[str, Any],
                           fare_details: Dict[str, Dict[str, Any]]) -> Segment:
        carrier = segment.get('carrierCode') or ''
        operating_code = (segment.get('operating') or {}).get('carrierCode')
        aircraft_code = (segment.get('aircraft') or {}).get('code') or ''
        aircraft = (dictionaries.get('aircraft') or {}).get(aircraft_code, aircraft_code)

        detail = fare_details.get(str(segment.get('id'))) or {}
        cabin = detail.get('cabin') or segment.get('cabin') or 'ECONOMY'

        bags = detail.get('includedCheckedBags') or {}
        luggage = None
        if bags.get('weight'):
            luggage = f"{bags['weight']} {bags.get('weightUnit') or 'KG'}"
        elif bags.get('quantity') is not None:
            luggage = f"{bags['quantity']} PC"

        return Segment(
            departure=self._location(segment.get('departure') or {}, dictionaries),
            arrival=self._location(segment.get('arrival') or {}, dictionaries),
            airline=self._airline(carrier, dictionaries),
            operating_airline=self._airline(operating_code, dictionaries) if operating_code else None,
            flight_number=str(segment.get('number') or ''),
            cabin=cabin.replace('_', ' ').title(),
            duration=parse_duration_minutes(segment.get('duration') or 'PT0H0M'),
            aircraft=aircraft or None,
            luggage=luggage,
            booking_class=detail.get('class') or segment.get('class'),
            fare_basis=detail.get('fareBasis'),
            capacity=9,
        )

    # ------------------------------
    # Pricing
    # ------------------------------

    def price_offer(self, offer: NormalizedOffer) -> PricingResult:
        raw = offer.raw_data
        if not raw:
            raise ValidationError("Cannot price: missing raw offer data", supplier=self.supplier_code)

        payload = {'data': {'type': 'flight-offers-pricing', 'flightOffers': [raw]}}
        self.log_info("Pricing flight offer", offer_id=offer.id)

        resp = self._request('POST', '/v1/shopping/flight-offers/pricing', json=payload,
                             headers={'X-HTTP-Method-Override': 'GET'})
        if not resp.ok:
            self.log_error("Pricing failed", offer_id=offer.id, status=resp.status_code,
                           error=error_detail(resp))
        self.raise_for_response(resp, "Amadeus pricing")

        priced_offers = (self._decode(resp).get('data') or {}).get('flightOffers') or []
        if not priced_offers:
            raise ProviderRejectedError("No priced offers returned from Amadeus", supplier=self.supplier_code)

        priced = priced_offers[0]
        self.offer_cache.put_priced(offer.id, priced)
        price = self._price(priced, guaranteed=True)
        self.log_info("Offer priced", offer_id=offer.id, total=price.total, currency=price.currency)

        return PricingResult(
            offer_id=offer.id,
            price=price,
            priced_payload=priced,
            cache_key=PRICED_OFFER_PREFIX + offer.id,
        )

    # ------------------------------
    # Booking
    # ------------------------------

    def book(self, offer: NormalizedOffer, passengers: Sequence[Passenger]) -> BookingResult:
        raw = self.offer_cache.get_priced(offer.id) or offer.raw_data
        if not raw:
            raise ValidationError("Cannot book: missing raw offer data from Amadeus", supplier=self.supplier_code)
        passengers = [p if isinstance(p, Passenger) else Passenger.from_dict(p) for p in passengers]
        if not passengers:
            raise ValidationError("Cannot book: at least one passenger is required", supplier=self.supplier_code)

        payload = {
            'data': {
                'type': 'flight-order',
                'flightOffers': [raw],
                'travelers': self.build_travelers(passengers),
                'remarks': {'general': [{'subType': 'GENERAL_MISCELLANEOUS', 'text': 'ONLINE BOOKING'}]},
                'contacts': [self._contact(passengers[0], 'booking@example.com')],
            }
        }
        self.log_info("Creating flight order", offer_id=offer.id, travelers_count=len(passengers))

        resp = self._request('POST', '/v1/booking/flight-orders', json=payload)
        if not resp.ok:
            return self._booking_failure(resp)

        data = self._decode(resp).get('data') or {}
        order_id = data.get('id') or ''
        pnr = _first_pnr(data)
        self.log_info("Flight order created", order_id=order_id, pnr=pnr)

        return BookingResult(
            pnr=pnr or order_id,
            order_id=order_id,
            status='confirmed',
            raw_response=data,
        )

    def _booking_failure(self, resp: requests.Response) -> BookingResult:
        """Simulate a sandbox-only failure when allowed, otherwise raise."""
        try:
            body = resp.json()
        except ValueError:
            body = {}
        errors = body.get('errors') if isinstance(body, dict) else None
        first = errors[0] if isinstance(errors, list) and errors else {}
        try:
            error_code = int(first.get('code') or 0)
        except (TypeError, ValueError):
            error_code = 0
        detail = error_detail(resp)

        self.log_error("Booking failed", error_code=error_code, error=detail, status=resp.status_code)

        if error_code in SANDBOX_ERROR_CODES:
            if not self.settings.is_production and self.settings.simulate_sandbox_bookings:
                self.log_warning("Sandbox limitation, simulating successful booking", real_error=detail)
                return BookingResult(
                    pnr='TST' + uuid.uuid4().hex[:3].upper(),
                    order_id='eJzTd9f3M' + secrets.token_hex(6).upper(),
                    status='confirmed',
                    simulated=True,
                    note='This is a test booking. In production with real credentials, '
                         'this would create an actual reservation.',
                )
            raise ProviderRejectedError(
                f"Amadeus Booking Failed: {detail}",
                supplier=self.supplier_code,
                status_code=resp.status_code,
                details={'error_code': error_code},
            )

        self.raise_for_response(resp, "Amadeus booking")
        raise ProviderRejectedError(f"Amadeus Booking Failed: {detail}", supplier=self.supplier_code,
                                    status_code=resp.status_code)

    def book_with_pricing(self, offer: NormalizedOffer, passengers: Sequence[Passenger]) -> BookingResult:
        """Price first, then book the priced offer. Books directly if pricing fails."""
        try:
            pricing = self.price_offer(offer)
        except SupplierError as e:
            self.log_warning("Pricing failed, attempting direct booking", error=e.message)
            return self.book(offer, passengers)

        result = self.book(offer, passengers)
        return BookingResult(
            pnr=result.pnr,
            order_id=result.order_id,
            status=result.status,
            raw_response=result.raw_response,
            ticket_number=result.ticket_number,
            simulated=result.simulated,
            note=result.note,
            confirmed_price=pricing.price,
        )

    def build_travelers(self, passengers: Sequence[Passenger]) -> List[Dict[str, Any]]:
        travelers = []
        for index, p in enumerate(passengers):
            first, last = p.split_name('FIRSTNAME', 'LASTNAME')
            nationality = p.nationality or 'US'
            travelers.append({
                'id': str(index + 1),
                'dateOfBirth': self._date_for(p.date_of_birth, p.passenger_type),
                'name': {'firstName': first.upper(), 'lastName': last.upper()},
                'gender': self._gender(p.gender),
                'contact': self._contact(p, 'guest@example.com'),
                'documents': [{
                    'documentType': 'PASSPORT',
                    'birthPlace': nationality,
                    'issuanceLocation': nationality,
                    'issuanceDate': '2015-01-01',
                    'number': p.passport_number or 'UNKNOWN',
                    'expiryDate': self._date_for(p.passport_expiry, 'expiry'),
                    'issuanceCountry': nationality,
                    'validityCountry': nationality,
                    'nationality': nationality,
                    'holder': True,
                }],
            })
        return travelers

    @staticmethod
    def _contact(p: Passenger, default_email: str) -> Dict[str, Any]:
        return {
            'emailAddress': p.email or default_email,
            'phones': [{
                'deviceType': 'MOBILE',
                'countryCallingCode': '1',
                'number': re.sub(r'\D', '', p.phone or '') or '5551234567',
            }],
        }

    @staticmethod
    def _gender(value: Optional[str]) -> str:
        g = (value or '').strip().upper()
        if g in ('F', 'FEMALE'):
            return 'FEMALE'
        return 'MALE'

    def _date_for(self, value: Optional[str], kind: str, today: Optional[date] = None) -> str:
        """YYYY-MM-DD for Amadeus; implausible or missing values get a default."""
        today = today or date.today()
        if value:
            parsed = parse_datetime(value)
            if parsed is None:
                self.log_warning("Failed to parse date", date=value, type=kind)
            else:
                d = parsed.date()
                if kind == 'expiry':
                    if d > today and d.year < 2100:
                        return d.isoformat()
                elif d <= today and d.year > 1900:
                    return d.isoformat()

        if kind == 'infant':
            return _shift_months(today, -6).isoformat()
        if kind == 'child':
            return _shift_years(today, -8).isoformat()
        if kind == 'expiry':
            return _shift_years(today, 5).isoformat()
        return _shift_years(today, -30).isoformat()

    # ------------------------------
    # Seat maps
    # ------------------------------

    def get_seat_map(self, offer_id: str) -> SeatMapResult:
        self.log_info("Getting seat map", offer_id=offer_id)
        offer = self.get_offer_details(offer_id)
        if offer is None:
            return SeatMapResult.failure('Offer not found. Please search again.')
        if not offer.raw_data:
            return SeatMapResult.failure('Raw offer data not available for seat map.')

        try:
            resp = self._request('POST', '/v1/shopping/seatmaps', json={'data': [offer.raw_data]})
        except SupplierError as e:
            self.log_error("Seat map request failed", error=e.message)
            return SeatMapResult.failure(f"Failed to retrieve seat map: {e.message}")

        if not resp.ok:
            detail = error_detail(resp)
            self.log_warning("Seat map failed", error=detail, status=resp.status_code)
            if resp.status_code == 404:
                return SeatMapResult.failure('Seat map not available for this flight.')
            return SeatMapResult.failure(detail)

        body = self._decode(resp)
        maps = tuple(self._parse_seat_map(item) for item in body.get('data') or [])
        result = SeatMapResult(success=True, seat_maps=maps, dictionaries=body.get('dictionaries') or {})
        self.log_info("Seat map retrieved", offer_id=offer_id, segments=len(maps), total_seats=result.total_seats)
        return result

    @staticmethod
    def _parse_seat_map(item: Dict[str, Any]) -> SegmentSeatMap:
        seats = []
        for deck in item.get('decks') or []:
            for seat in deck.get('seats') or []:
                number = seat.get('number') or ''
                cabin = (seat.get('cabin') or '').lower()
                codes = set(seat.get('characteristicsCodes') or [])
                pricing = seat.get('travelerPricing') or []
                first_pricing = pricing[0] if pricing else {}

                if 'business' in cabin:
                    seat_class = 'business'
                elif 'first' in cabin:
                    seat_class = 'first'
                elif 'premium' in cabin:
                    seat_class = 'premium_economy'
                else:
                    seat_class = 'economy'

                if codes & {'W', 'WINDOW'}:
                    position = 'window'
                elif codes & {'A', 'AISLE'}:
                    position = 'aisle'
                else:
                    position = 'middle'

                price = first_pricing.get('price') or {}
                row = (seat.get('coordinates') or {}).get('x')
                seats.append(Seat(
                    seat_number=number,
                    row=str(row) if row is not None else re.sub(r'\D', '', number),
                    column=re.sub(r'\d', '', number),
                    is_available=first_pricing.get('seatAvailabilityStatus') == 'AVAILABLE',
                    seat_class=seat_class,
                    position=position,
                    price_amount=(price.get('total') or '0') if pricing else None,
                    price_currency=(price.get('currency') or 'USD') if pricing else None,
                    characteristics=tuple(a.get('code') or a.get('description') or ''
                                          for a in seat.get('amenities') or []),
                    has_extra_legroom=bool(codes & {'LEGROOM', 'E'}),
                    is_exit_row=bool(codes & {'EXIT', 'X'}),
                ))

        return SegmentSeatMap(
            segment_id=str(item.get('segmentId') or ''),
            aircraft=(item.get('aircraft') or {}).get('code') or 'Unknown',
            departure=(item.get('departure') or {}).get('iataCode') or '',
            arrival=(item.get('arrival') or {}).get('iataCode') or '',
            seats=tuple(seats),
        )

    # ------------------------------
    # Order management / reference data
    # ------------------------------

    def get_flight_order(self, order_id: str) -> Dict[str, Any]:
        self.log_info("Retrieving flight order", order_id=order_id)
        resp = self._request('GET', f'/v1/booking/flight-orders/{order_id}')
        self.raise_for_response(resp, "Amadeus order retrieval")

        data = self._decode(resp).get('data') or {}
        return {
            'order_id': data.get('id') or order_id,
            'pnr': _first_pnr(data),
            'type': data.get('type') or 'flight-order',
            'travelers': data.get('travelers') or [],
            'flight_offers': data.get('flightOffers') or [],
            'contacts': data.get('contacts') or [],
            'ticketing_agreement': data.get('ticketingAgreement'),
            'raw': data,
        }

    def cancel_flight_order(self, order_id: str) -> bool:
        """DELETE the order. Not every order can be cancelled; airlines decide."""
        self.log_info("Cancelling flight order", order_id=order_id)
        resp = self._request('DELETE', f'/v1/booking/flight-orders/{order_id}')
        if resp.status_code == 204:
            self.log_info("Flight order cancelled", order_id=order_id)
            return True
        self.raise_for_response(resp, "Amadeus order cancellation")
        return True

    def get_airline_info(self, airline_code: str) -> Dict[str, Any]:
        key = f"amadeus_airline_{airline_code.upper()}"
        cached = self.cache.get(key)
        if cached:
            return cached

        fallback = {'success': False, 'code': airline_code, 'name': airline_code}
        resp = self._request('GET', '/v1/reference-data/airlines', params={'airlineCodes': airline_code})
        if not resp.ok:
            self.log_warning("Airline lookup failed", code=airline_code, status=resp.status_code)
            return fallback

        data = self._decode(resp).get('data') or []
        if not data:
            return fallback

        airline = data[0]
        result = {
            'success': True,
            'code': airline.get('iataCode') or airline_code,
            'icao_code': airline.get('icaoCode'),
            'name': airline.get('businessName') or airline.get('commonName') or airline_code,
            'common_name': airline.get('commonName'),
        }
        self.cache.put(key, result, AIRLINE_INFO_TTL)
        return result

    def search_locations(self, keyword: str, sub_type: str = 'AIRPORT,CITY', limit: int = 5) -> List[Dict[str, Any]]:
        if not keyword:
            return []

        resp = self._request('GET', '/v1/reference-data/locations', params={
            'keyword': keyword,
            'subType': sub_type,
            'page[limit]': min(limit, 10),
            'view': 'LIGHT',
        })
        if not resp.ok:
            self.log_warning("Location search failed", keyword=keyword, error=error_detail(resp))
            return []

        locations = []
        for loc in self._decode(resp).get('data') or []:
            address = loc.get('address') or {}
            locations.append({
                'iata_code': loc.get('iataCode') or '',
                'name': loc.get('name') or '',
                'type': loc.get('subType') or 'AIRPORT',
                'city': address.get('cityName') or loc.get('name') or '',
                'city_code': address.get('cityCode') or loc.get('iataCode') or '',
                'country': address.get('countryName') or '',
                'country_code': address.get('countryCode') or '',
                'detailed_name': loc.get('detailedName') or '',
            })
        return locations

    # ------------------------------
    # Health
    # ------------------------------

    def perform_connection_test(self) -> HealthProbeResult:
        if not (self.client_id and self.client_secret):
            return HealthProbeResult(
                success=False,
                message='Amadeus API credentials not configured. '
                        'Set AMADEUS_CLIENT_ID and AMADEUS_CLIENT_SECRET in config.env.',
            )
        self.clear_access_token()
        self.request_new_token()
        return HealthProbeResult(
            success=True,
            message='Amadeus API connection successful - OAuth2 authentication verified',
        )
