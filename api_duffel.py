"""Duffel NDC aggregator adapter.

Static bearer token (DUFFEL_ACCESS_TOKEN) plus the `Duffel-Version` header.
Offers are created by POSTing an offer request with `return_offers=true`;
orders are paid from the account balance when the offer demands instant
payment and placed on hold otherwise.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence

from api_base import BaseSupplierAdapter, error_detail
from contracts import Bookable
from errors import OfferExpiredError, ProviderRejectedError, ValidationError
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
    Segment,
    currency_symbol,
    make_offer_id,
    parse_date,
    parse_datetime,
    parse_duration_minutes,
)


API_VERSION = 'v2'
OFFER_EXPIRY_MINUTES = 30

CABIN_MAP = {
    'economy': 'economy',
    'y': 'economy',
    'premium_economy': 'premium_economy',
    'premium economy': 'premium_economy',
    'w': 'premium_economy',
    'business': 'business',
    'c': 'business',
    'j': 'business',
    'first': 'first',
    'f': 'first',
}

PASSENGER_TYPES = {
    'adult': 'adult',
    'child': 'child',
    'infant': 'infant_without_seat',
}

_COUNT_KEYS = {'adult': 'adults', 'child': 'children', 'infant_without_seat': 'infants'}


class DuffelSupplier(BaseSupplierAdapter, Bookable):
    code = 'duffel'

    @property
    def base_url(self) -> str:
        return (self.settings.base_url or 'https://api.duffel.com').rstrip('/')

    def default_headers(self) -> Dict[str, str]:
        headers = {
            'Content-Type': 'application/json',
            'Duffel-Version': API_VERSION,
            'Accept-Encoding': 'gzip',
        }
        if self.settings.api_key:
            headers['Authorization'] = f"Bearer {self.settings.api_key}"
        return headers

    # ------------------------------
    # Search
    # ------------------------------

    def build_search_payload(self, request) -> Dict[str, Any]:
        slices = [{
            'origin': request.origin_code,
            'destination': request.destination_code,
            'departure_date': request.departure_date.isoformat(),
        }]
        if request.is_round_trip:
            slices.append({
                'origin': request.destination_code,
                'destination': request.origin_code,
                'departure_date': request.return_date.isoformat(),
            })

        passengers = (
            [{'type': 'adult'}] * request.adults
            + [{'type': 'child'}] * request.children
            + [{'type': 'infant_without_seat'}] * request.infants
        )
        return {
            'slices': slices,
            'passengers': [dict(p) for p in passengers],
            'cabin_class': CABIN_MAP.get(request.cabin.lower(), 'economy'),
        }

    def fetch_offers(self, request) -> List[NormalizedOffer]:
        payload = self.build_search_payload(request)
        self.log_info("Performing search", origin=request.origin_code,
                      destination=request.destination_code, date=request.departure_date)

        resp = self._send('POST', '/air/offer_requests', params={'return_offers': 'true'}, json={'data': payload})
        self.raise_for_response(resp, "Duffel search")

        offers_raw = (self._decode(resp).get('data') or {}).get('offers') or []
        if not offers_raw:
            self.log_info("No offers returned")
            return []

        passengers = self.passenger_counts(request)
        offers = []
        for index, raw in enumerate(offers_raw):
            try:
                offer = self.normalize_offer(raw, passengers, index)
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                offer_id = raw.get('id', 'unknown') if isinstance(raw, dict) else 'unknown'
                self.log_error("Failed to parse offer", offer_id=offer_id, error=repr(e))
                continue
            self.remember_offer(offer, {
                'passengers': passengers,
                'index': index,
                'valid_until': offer.valid_until.isoformat() if offer.valid_until else None,
            })
            offers.append(offer)

        self.log_info("Search parsed", total_results=len(offers_raw), parsed_results=len(offers))
        return offers

    def rebuild_offer(self, offer_id: str, raw: Dict[str, Any], context: Dict[str, Any]) -> Optional[NormalizedOffer]:
        if not raw:
            return None
        return self.normalize_offer(
            raw,
            context.get('passengers') or {},
            int(context.get('index') or 0),
            valid_until=parse_datetime(context.get('valid_until')),
        )

    def fetch_offer_live(self, offer_id: str) -> Optional[NormalizedOffer]:
        reference = self._reference_from_id(offer_id)
        resp = self._send('GET', f'/air/offers/{reference}')
        if not resp.ok:
            self.log_warning("Failed to get offer details", offer_id=offer_id, status=resp.status_code)
            return None

        raw = self._decode(resp).get('data')
        if not raw:
            return None

        counts = {'adults': 0, 'children': 0, 'infants': 0}
        for p in raw.get('passengers') or []:
            key = _COUNT_KEYS.get(p.get('type'), 'adults')
            counts[key] += 1
        return self.normalize_offer(raw, counts, 0)

    def _reference_from_id(self, offer_id: str) -> str:
        """`duffel_off_123_0` -> `off_123`; bare references pass through."""
        prefix = f"{self.supplier_code}_"
        if not offer_id.startswith(prefix):
            return offer_id
        reference, _, index = offer_id[len(prefix):].rpartition('_')
        return reference if reference and index.isdigit() else offer_id[len(prefix):]

    def normalize_offer(self, raw: Dict[str, Any], passengers: Dict[str, int], index: int = 0,
                        valid_until: Optional[datetime] = None) -> NormalizedOffer:
        owner = raw.get('owner') or {}
        validating = Airline(
            code=owner.get('iata_code') or '',
            name=owner.get('name') or '',
            logo=owner.get('logo_symbol_url') or owner.get('logo_lockup_url'),
        )

        total = float(raw.get('total_amount') or 0)
        base = float(raw.get('base_amount') or 0)
        taxes = float(raw.get('tax_amount') or 0)
        currency = raw.get('total_currency') or raw.get('base_currency') or 'USD'

        refund = (raw.get('conditions') or {}).get('refund_before_departure') or {}
        instant = (raw.get('payment_requirements') or {}).get('requires_instant_payment', True)

        if valid_until is None:
            valid_until = parse_datetime(raw.get('expires_at')) or \
                datetime.now() + timedelta(minutes=OFFER_EXPIRY_MINUTES)

        reference = raw.get('id') or ''
        return NormalizedOffer(
            id=make_offer_id(self.supplier_code, reference, index),
            supplier_code=self.supplier_code,
            reference_id=reference,
            price=Price(
                total=total,
                base_fare=base,
                taxes=taxes,
                currency=currency,
                currency_symbol=currency_symbol(currency),
                breakdown=self._breakdown(raw, total, base, taxes),
            ),
            legs=tuple(self._normalize_slice(s) for s in raw.get('slices') or []),
            validating_airline=validating,
            seats_available=9,
            refundable=bool(refund.get('allowed', False)),
            valid_until=valid_until,
            passengers=dict(passengers),
            raw_data=raw,
            onholdable=not instant,
        )

    @staticmethod
    def _breakdown(raw: Dict[str, Any], total: float, base: float, taxes: float) -> Dict[str, FareBreakdown]:
        """Duffel prices the whole offer; split it evenly per passenger."""
        by_type: Dict[str, int] = {}
        for p in raw.get('passengers') or []:
            kind = p.get('type') or 'adult'
            by_type[kind] = by_type.get(kind, 0) + 1

        count = sum(by_type.values()) or 1
        return {
            kind: FareBreakdown(
                base_fare=round(base / count, 2),
                tax=round(taxes / count, 2),
                total_fare=round(total / count, 2),
                passengers_count=n,
            )
            for kind, n in by_type.items()
        }

    @staticmethod
    def _location(place: Dict[str, Any], when: Optional[str], terminal: Optional[str]) -> Location:
        city = place.get('city') or {}
        return Location(
            city=place.get('city_name') or city.get('name') or '',
            airport_code=place.get('iata_code') or '',
            airport_name=place.get('name') or '',
            terminal=terminal,
            country=city.get('iata_country_code') or place.get('iata_country_code'),
            country_code=place.get('iata_country_code'),
            date_time=parse_datetime(when),
        )

    @staticmethod
    def _carrier(carrier: Dict[str, Any]) -> Airline:
        return Airline(
            code=carrier.get('iata_code') or '',
            name=carrier.get('name') or '',
            logo=carrier.get('logo_symbol_url'),
        )

    def _normalize_slice(self, data: Dict[str, Any]) -> Leg:
        raw_segments = data.get('segments') or []
        segments = [self._normalize_segment(s) for s in raw_segments]
        cabin = None
        if raw_segments:
            first_pax = (raw_segments[0].get('passengers') or [{}])[0]
            if first_pax.get('cabin_class'):
                cabin = first_pax['cabin_class'].replace('_', ' ').capitalize()
        return Leg.from_segments(segments, parse_duration_minutes(data.get('duration') or 'PT0H0M'),
                                 cabin or 'Economy')

    def _normalize_segment(self, data: Dict[str, Any]) -> Segment:
        first_pax = (data.get('passengers') or [{}])[0]
        cabin = (first_pax.get('cabin_class') or 'economy').replace('_', ' ').capitalize()

        luggage = None
        for bag in first_pax.get('baggages') or []:
            if bag.get('type') == 'checked' and (bag.get('quantity') or 0) > 0:
                luggage = f"{bag['quantity']} checked bag(s)"
                break

        operating = data.get('operating_carrier')
        return Segment(
            departure=self._location(data.get('origin') or {}, data.get('departing_at'), data.get('origin_terminal')),
            arrival=self._location(data.get('destination') or {}, data.get('arriving_at'),
                                   data.get('destination_terminal')),
            airline=self._carrier(data.get('marketing_carrier') or {}),
            operating_airline=self._carrier(operating) if operating else None,
            flight_number=str(data.get('marketing_carrier_flight_number') or ''),
            cabin=cabin,
            duration=parse_duration_minutes(data.get('duration') or 'PT0H0M'),
            aircraft=(data.get('aircraft') or {}).get('name'),
            luggage=luggage,
            booking_class=first_pax.get('fare_basis_code'),
            fare_basis=first_pax.get('fare_basis_code'),
            capacity=9,
        )

    # ------------------------------
    # Booking
    # ------------------------------

    def book(self, offer: NormalizedOffer, passengers: Sequence[Passenger]) -> BookingResult:
        passengers = [p if isinstance(p, Passenger) else Passenger.from_dict(p) for p in passengers]
        payload = self.build_booking_payload(offer, passengers)
        self.log_info("Creating order", offer_id=offer.id, type=payload['type'], passengers=len(passengers))

        resp = self._send('POST', '/air/orders', json={'data': payload})
        if not resp.ok:
            self._raise_booking_error(resp)

        data = self._decode(resp).get('data') or {}
        documents = data.get('documents') or []
        return BookingResult(
            pnr=data.get('booking_reference') or 'PENDING',
            order_id=data.get('id') or '',
            status='confirmed',
            ticket_number=documents[0].get('unique_identifier') if documents else None,
            raw_response=data,
        )

    def _raise_booking_error(self, resp):
        try:
            body = resp.json()
        except ValueError:
            body = {}
        errors = body.get('errors') if isinstance(body, dict) else None
        first = errors[0] if isinstance(errors, list) and errors else {}
        message = first.get('message') or error_detail(resp)
        field = (first.get('source') or {}).get('field')

        self.log_error("Booking failed", status=resp.status_code, error=message, field=field)

        lowered = message.lower()
        if field == 'selected_offers' or 'expired' in lowered or 'no longer available' in lowered:
            raise OfferExpiredError(
                'This flight offer has expired. Please search again to find current availability.',
                supplier=self.supplier_code,
                status_code=resp.status_code,
                details={'error': message},
            )
        if resp.status_code in (401, 403, 404, 422) or resp.status_code >= 500:
            self.raise_for_response(resp, "Duffel booking")
        raise ProviderRejectedError(f"Duffel Booking Failed: {message}", supplier=self.supplier_code,
                                    status_code=resp.status_code)

    def build_booking_payload(self, offer: NormalizedOffer, passengers: Sequence[Passenger]) -> Dict[str, Any]:
        mapped = self.map_passengers(offer, passengers)
        instant = (offer.raw_data.get('payment_requirements') or {}).get('requires_instant_payment', False)

        if instant:
            return {
                'type': 'instant',
                'selected_offers': [offer.reference_id],
                'passengers': mapped,
                'payments': [{
                    'type': 'balance',
                    'amount': f"{offer.price.total:.2f}",
                    'currency': offer.price.currency,
                }],
            }

        # hold orders auto-cancel once the hold expires unpaid
        return {
            'type': 'hold',
            'selected_offers': [offer.reference_id],
            'passengers': mapped,
        }

    def map_passengers(self, offer: NormalizedOffer, passengers: Sequence[Passenger]) -> List[Dict[str, Any]]:
        """Assign each passenger the next unused offer passenger id of its type."""
        slots: Dict[str, List[str]] = {}
        for op in offer.raw_data.get('passengers') or []:
            slots.setdefault(op.get('type') or 'adult', []).append(op['id'])

        mapped = []
        for index, p in enumerate(passengers):
            kind = PASSENGER_TYPES.get(p.passenger_type, 'adult')
            if not slots.get(kind):
                raise ValidationError(f"Not enough slots for passenger type: {kind}", supplier=self.supplier_code)

            born_on = self._birth_date(p.date_of_birth)
            entry = {
                'id': slots[kind].pop(0),
                'given_name': p.first_name or p.name or 'Test',
                'family_name': p.last_name or 'Passenger',
                'born_on': born_on.isoformat() if born_on else '1990-01-15',
                'gender': p.gender.strip().lower()[0] if p.gender and p.gender.strip() else 'm',
                'title': p.title or 'mr',
            }
            # only the first passenger carries contact details
            if index == 0:
                entry['email'] = p.email or 'test@example.com'
                entry['phone_number'] = p.phone or '+441234567890'
            mapped.append(entry)
        return mapped

    def _birth_date(self, value: Optional[str]) -> Optional[date]:
        if not value:
            return None
        try:
            return parse_date(value)
        except ValueError:
            self.log_warning("Failed to parse birth date", date=value)
            return None

    # ------------------------------
    # Health
    # ------------------------------

    def perform_connection_test(self) -> HealthProbeResult:
        resp = self._send('GET', '/air/airlines', params={'limit': 1})
        if resp.ok:
            return HealthProbeResult(success=True, message='Duffel API connection successful')
        return HealthProbeResult(success=False, message=f"Duffel API error: {error_detail(resp)}")
