"""
Canonical flight offer model.

Every supplier adapter translates its provider's wire format into these types,
so the rest of the application only ever sees one shape of offer.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Tuple

from errors import SupplierErrorCode


CURRENCY_SYMBOLS = {
    'USD': '$',
    'EUR': '€',
    'GBP': '£',
    'JPY': '¥',
    'CHF': 'CHF',
    'AUD': '$',
    'CAD': '$',
    'NZD': '$',
    'SGD': '$',
    'HKD': '$',
    'AED': 'AED',
    'SAR': 'SAR',
    'IQD': 'IQD',
}

_HOURS_RE = re.compile(r'(\d+)H')
_MINUTES_RE = re.compile(r'(\d+)M')
_DAYS_RE = re.compile(r'P(\d+)D')


def currency_symbol(currency: str) -> str:
    code = (currency or '').upper()
    return CURRENCY_SYMBOLS.get(code, code)


def parse_duration_minutes(value: Optional[str], minutes_in_hours_slot: bool = False) -> int:
    """Convert a provider duration into whole minutes.

    Handles ISO-8601 durations ("PT9H10M", "PT45M", "P1DT2H") and the
    "H:M" form some partner APIs use. Unparseable input yields 0.

    With `minutes_in_hours_slot`, an "H:M" value over 24 hours is read as
    total minutes ("195:0" is 195). Only single segments come in that form.
    """
    text = (value or '').strip().upper()
    if not text:
        return 0

    if ':' in text:
        hours, _, minutes = text.partition(':')
        try:
            h, m = int(hours or 0), int(minutes or 0)
        except ValueError:
            return 0
        if minutes_in_hours_slot and h > 24:
            return h
        return h * 60 + m

    if not text.startswith('P'):
        try:
            return int(text)
        except ValueError:
            return 0

    # Only look for M after the T designator, P1M would otherwise read as minutes.
    _, _, time_part = text.partition('T')
    minutes = 0
    days = _DAYS_RE.search(text)
    if days:
        minutes += int(days.group(1)) * 24 * 60
    hours = _HOURS_RE.search(time_part)
    if hours:
        minutes += int(hours.group(1)) * 60
    mins = _MINUTES_RE.search(time_part)
    if mins:
        minutes += int(mins.group(1))
    return minutes


def format_duration(minutes: int) -> str:
    hours, mins = divmod(max(0, int(minutes)), 60)
    if hours and mins:
        return f"{hours}h {mins}m"
    if hours:
        return f"{hours}h"
    return f"{mins}m"


def parse_datetime(value: Any) -> Optional[datetime]:
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    try:
        return datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    except ValueError:
        return None


def parse_date(value: Any) -> Optional[date]:
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def make_offer_id(supplier_code: str, reference_id: Any, index: int) -> str:
    """Globally unique offer id: ``{supplier}_{referenceId}_{index}``."""
    return f"{supplier_code}_{reference_id}_{index}"


# ============================================================================
# SEARCH REQUEST
# ============================================================================

@dataclass(frozen=True)
class SearchRequest:
    """One search query. Immutable, never persisted."""
    origin_code: str
    destination_code: str
    departure_date: date
    return_date: Optional[date] = None
    adults: int = 1
    children: int = 0
    infants: int = 0
    cabin: str = 'economy'
    trip_type: str = 'oneWay'
    currency: str = 'USD'
    language: str = 'EN'
    filters: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, 'origin_code', (self.origin_code or '').strip().upper())
        object.__setattr__(self, 'destination_code', (self.destination_code or '').strip().upper())
        object.__setattr__(self, 'cabin', (self.cabin or 'economy').strip().lower())
        if min(self.adults, self.children, self.infants) < 0:
            raise ValueError("Passenger counts cannot be negative")
        if self.total_passengers == 0:
            raise ValueError("At least one passenger is required")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SearchRequest':
        """Build a request from loosely-named API input (from/to, date, ...)."""
        return_date = parse_date(data.get('return_date'))
        trip_type = data.get('trip_type') or data.get('tripType') or ('roundTrip' if return_date else 'oneWay')
        return cls(
            origin_code=data.get('from') or data.get('origin') or '',
            destination_code=data.get('to') or data.get('destination') or '',
            departure_date=parse_date(data.get('date') or data.get('departure_date')) or date.today(),
            return_date=return_date,
            adults=int(data.get('adults', 1)),
            children=int(data.get('children', 0)),
            infants=int(data.get('infants', 0)),
            cabin=data.get('cabin') or 'economy',
            trip_type=trip_type,
            currency=data.get('currency') or 'USD',
            language=(data.get('language') or data.get('lang') or 'EN').upper(),
            filters={
                'min_price': data.get('min_price'),
                'max_price': data.get('max_price'),
                'airline_id': data.get('airline_id'),
                'stops': data.get('stops'),
            },
        )

    @property
    def total_passengers(self) -> int:
        return self.adults + self.children + self.infants

    @property
    def is_round_trip(self) -> bool:
        return self.trip_type == 'roundTrip' and self.return_date is not None

    def filter(self, name: str, default: Any = None) -> Any:
        value = self.filters.get(name)
        return default if value in (None, '') else value

    def to_dict(self) -> Dict[str, Any]:
        return {
            'origin': self.origin_code,
            'destination': self.destination_code,
            'departure_date': self.departure_date.isoformat(),
            'return_date': self.return_date.isoformat() if self.return_date else None,
            'adults': self.adults,
            'children': self.children,
            'infants': self.infants,
            'cabin': self.cabin,
            'trip_type': self.trip_type,
            'currency': self.currency,
            'language': self.language,
            'filters': dict(self.filters),
        }


# ============================================================================
# PRICE
# ============================================================================

@dataclass(frozen=True)
class FareBreakdown:
    """Price for one passenger of a given type."""
    base_fare: float
    tax: float
    total_fare: float
    passengers_count: int
    service_charge: float = 0.0
    commission: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'base_fare': self.base_fare,
            'tax': self.tax,
            'service_charge': self.service_charge,
            'total_fare': self.total_fare,
            'commission': self.commission,
            'payable': self.total_fare,
            'passengers_count': self.passengers_count,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'FareBreakdown':
        return cls(
            base_fare=float(data.get('base_fare') or 0),
            tax=float(data.get('tax') or 0),
            total_fare=float(data.get('total_fare') or 0),
            passengers_count=int(data.get('passengers_count') or 0),
            service_charge=float(data.get('service_charge') or 0),
            commission=float(data.get('commission') or 0),
        )


@dataclass(frozen=True)
class Price:
    total: float
    base_fare: float
    taxes: float
    currency: str = 'USD'
    currency_symbol: str = '$'
    decimal_places: int = 2
    breakdown: Dict[str, FareBreakdown] = field(default_factory=dict)
    guaranteed: bool = False

    @property
    def formatted(self) -> str:
        return f"{self.currency_symbol}{self.total:,.{self.decimal_places}f}"

    def breakdown_total(self) -> float:
        return round(sum(b.total_fare * b.passengers_count for b in self.breakdown.values()), self.decimal_places)

    def is_consistent(self, tolerance: float = 0.01) -> bool:
        """total == base + taxes, and the breakdown (if any) adds up to total."""
        if abs(self.total - (self.base_fare + self.taxes)) > tolerance:
            return False
        if self.breakdown:
            passengers = sum(b.passengers_count for b in self.breakdown.values())
            # per-passenger amounts are rounded, allow one unit per passenger
            allowed = max(tolerance, tolerance * passengers)
            if abs(self.breakdown_total() - self.total) > allowed:
                return False
        return True

    def to_dict(self) -> Dict[str, Any]:
        places = self.decimal_places
        return {
            'total': round(self.total, places),
            'base_fare': round(self.base_fare, places),
            'taxes': round(self.taxes, places),
            'currency': self.currency,
            'currency_symbol': self.currency_symbol,
            'decimal_places': places,
            'breakdown': {k: v.to_dict() for k, v in self.breakdown.items()},
            'guaranteed': self.guaranteed,
            'formatted': self.formatted,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Price':
        return cls(
            total=float(data.get('total') or 0),
            base_fare=float(data.get('base_fare') or 0),
            taxes=float(data.get('taxes') or 0),
            currency=data.get('currency') or 'USD',
            currency_symbol=data.get('currency_symbol') or currency_symbol(data.get('currency') or 'USD'),
            decimal_places=int(data.get('decimal_places', 2)),
            breakdown={k: FareBreakdown.from_dict(v) for k, v in (data.get('breakdown') or {}).items()},
            guaranteed=bool(data.get('guaranteed', False)),
        )


# ============================================================================
# ITINERARY
# ============================================================================

@dataclass(frozen=True)
class Location:
    city: str
    airport_code: str
    airport_name: str = ''
    terminal: Optional[str] = None
    country: Optional[str] = None
    country_code: Optional[str] = None
    date_time: Optional[datetime] = None
    airport_id: Optional[int] = None

    @property
    def time(self) -> Optional[str]:
        return self.date_time.strftime('%H:%M') if self.date_time else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'city': self.city,
            'airport_code': self.airport_code,
            'airport_name': self.airport_name,
            'airport_id': self.airport_id,
            'terminal': self.terminal,
            'country': self.country,
            'country_code': self.country_code,
            'date_time': _iso(self.date_time),
            'time': self.time,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Location':
        return cls(
            city=data.get('city') or '',
            airport_code=data.get('airport_code') or '',
            airport_name=data.get('airport_name') or '',
            terminal=data.get('terminal'),
            country=data.get('country'),
            country_code=data.get('country_code'),
            date_time=parse_datetime(data.get('date_time')),
            airport_id=data.get('airport_id'),
        )


@dataclass(frozen=True)
class Airline:
    code: str
    name: str
    id: int = 0
    logo: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {'id': self.id, 'code': self.code, 'name': self.name, 'logo': self.logo}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Airline':
        return cls(
            code=data.get('code') or '',
            name=data.get('name') or '',
            id=int(data.get('id') or 0),
            logo=data.get('logo'),
        )


@dataclass(frozen=True)
class Segment:
    """One physical, flight-numbered hop."""
    departure: Location
    arrival: Location
    airline: Airline
    flight_number: str
    cabin: str
    duration: int
    operating_airline: Optional[Airline] = None
    aircraft: Optional[str] = None
    luggage: Optional[str] = None
    booking_class: Optional[str] = None
    fare_basis: Optional[str] = None
    capacity: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'departure': self.departure.to_dict(),
            'arrival': self.arrival.to_dict(),
            'airline': self.airline.to_dict(),
            'operating_airline': self.operating_airline.to_dict() if self.operating_airline else None,
            'flight_number': self.flight_number,
            'cabin': self.cabin,
            'duration': self.duration,
            'duration_formatted': format_duration(self.duration),
            'aircraft': self.aircraft,
            'luggage': self.luggage,
            'booking_class': self.booking_class,
            'fare_basis': self.fare_basis,
            'capacity': self.capacity,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Segment':
        operating = data.get('operating_airline')
        return cls(
            departure=Location.from_dict(data.get('departure') or {}),
            arrival=Location.from_dict(data.get('arrival') or {}),
            airline=Airline.from_dict(data.get('airline') or {}),
            flight_number=data.get('flight_number') or '',
            cabin=data.get('cabin') or 'Economy',
            duration=int(data.get('duration') or 0),
            operating_airline=Airline.from_dict(operating) if operating else None,
            aircraft=data.get('aircraft'),
            luggage=data.get('luggage'),
            booking_class=data.get('booking_class'),
            fare_basis=data.get('fare_basis'),
            capacity=int(data.get('capacity') or 0),
        )


@dataclass(frozen=True)
class Leg:
    """One directional flight (outbound or return)."""
    departure: Location
    arrival: Location
    duration: int
    stops: int
    cabin: str
    segments: Tuple[Segment, ...] = ()
    airline: Optional[Airline] = None
    flight_number: Optional[str] = None

    @classmethod
    def from_segments(cls, segments: List[Segment], duration: int, cabin: Optional[str] = None) -> 'Leg':
        """Build a leg whose endpoints are its first departure and last arrival."""
        empty = Location(city='', airport_code='')
        first = segments[0] if segments else None
        last = segments[-1] if segments else None
        return cls(
            departure=first.departure if first else empty,
            arrival=last.arrival if last else empty,
            duration=duration,
            stops=max(0, len(segments) - 1),
            cabin=cabin or (first.cabin if first else 'Economy'),
            segments=tuple(segments),
            airline=first.airline if first else None,
            flight_number=first.flight_number if first else None,
        )

    @property
    def formatted_duration(self) -> str:
        return format_duration(self.duration)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'departure': self.departure.to_dict(),
            'arrival': self.arrival.to_dict(),
            'duration': self.duration,
            'duration_formatted': self.formatted_duration,
            'stops': self.stops,
            'cabin': self.cabin,
            'airline': self.airline.to_dict() if self.airline else None,
            'flight_number': self.flight_number,
            'segments': [s.to_dict() for s in self.segments],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Leg':
        airline = data.get('airline')
        return cls(
            departure=Location.from_dict(data.get('departure') or {}),
            arrival=Location.from_dict(data.get('arrival') or {}),
            duration=int(data.get('duration') or 0),
            stops=int(data.get('stops') or 0),
            cabin=data.get('cabin') or 'Economy',
            segments=tuple(Segment.from_dict(s) for s in data.get('segments') or []),
            airline=Airline.from_dict(airline) if airline else None,
            flight_number=data.get('flight_number'),
        )


@dataclass(frozen=True)
class NormalizedOffer:
    """One bookable itinerary + price from one supplier.

    `raw_data` is the provider's unmodified payload. It is needed to price and
    book with GDS/NDC suppliers and is left out of `to_dict()` by default.
    """
    id: str
    supplier_code: str
    reference_id: str
    price: Price
    legs: Tuple[Leg, ...]
    validating_airline: Airline
    seats_available: int
    refundable: bool
    valid_until: Optional[datetime]
    passengers: Dict[str, int] = field(default_factory=dict)
    raw_data: Dict[str, Any] = field(default_factory=dict, repr=False)
    seller_code: Optional[str] = None
    has_brands: bool = False
    onholdable: bool = False

    @property
    def first_leg(self) -> Optional[Leg]:
        return self.legs[0] if self.legs else None

    def to_dict(self, include_raw: bool = False) -> Dict[str, Any]:
        out = {
            'id': self.id,
            'supplier_code': self.supplier_code,
            'reference_id': self.reference_id,
            'price': self.price.to_dict(),
            'legs': [leg.to_dict() for leg in self.legs],
            'validating_airline': self.validating_airline.to_dict(),
            'seats_available': self.seats_available,
            'refundable': self.refundable,
            'valid_until': _iso(self.valid_until),
            'passengers': dict(self.passengers),
            'seller_code': self.seller_code,
            'has_brands': self.has_brands,
            'onholdable': self.onholdable,
        }
        if include_raw:
            out['raw_data'] = self.raw_data
        return out

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'NormalizedOffer':
        return cls(
            id=data['id'],
            supplier_code=data.get('supplier_code') or '',
            reference_id=str(data.get('reference_id') or ''),
            price=Price.from_dict(data.get('price') or {}),
            legs=tuple(Leg.from_dict(leg) for leg in data.get('legs') or []),
            validating_airline=Airline.from_dict(data.get('validating_airline') or {}),
            seats_available=int(data.get('seats_available') or 0),
            refundable=bool(data.get('refundable')),
            valid_until=parse_datetime(data.get('valid_until')),
            passengers=dict(data.get('passengers') or {}),
            raw_data=dict(data.get('raw_data') or {}),
            seller_code=data.get('seller_code'),
            has_brands=bool(data.get('has_brands')),
            onholdable=bool(data.get('onholdable')),
        )

    def summary(self) -> Dict[str, Any]:
        """Flat view of the outbound leg for list displays."""
        leg = self.first_leg
        segment = leg.segments[0] if leg and leg.segments else None
        return {
            'id': self.id,
            'price': self.price.formatted,
            'airline': self.validating_airline.name,
            'airline_code': self.validating_airline.code,
            'origin': leg.departure.airport_code if leg else None,
            'origin_city': leg.departure.city if leg else None,
            'destination': leg.arrival.airport_code if leg else None,
            'destination_city': leg.arrival.city if leg else None,
            'departure_datetime': _iso(leg.departure.date_time) if leg else None,
            'arrival_datetime': _iso(leg.arrival.date_time) if leg else None,
            'flight_number': segment.flight_number if segment else None,
            'duration': leg.formatted_duration if leg else None,
            'stops': leg.stops if leg else 0,
            'cabin': leg.cabin if leg else None,
            'aircraft': segment.aircraft if segment else None,
            'luggage': segment.luggage if segment else None,
            'booking_class': segment.booking_class if segment else None,
        }


# ============================================================================
# BOOKING / PRICING / SEAT MAP RESULTS
# ============================================================================

@dataclass(frozen=True)
class Passenger:
    """Internal passenger record handed to `book`.

    Document fields are often incomplete at booking time; adapters apply
    their own defaults.
    """
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    name: Optional[str] = None
    passenger_type: str = 'adult'
    date_of_birth: Optional[str] = None
    gender: Optional[str] = None
    title: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    passport_number: Optional[str] = None
    passport_expiry: Optional[str] = None
    nationality: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Passenger':
        return cls(
            first_name=data.get('first_name'),
            last_name=data.get('last_name'),
            name=data.get('name'),
            passenger_type=(data.get('passenger_type') or 'adult').lower(),
            date_of_birth=data.get('date_of_birth'),
            gender=data.get('gender'),
            title=data.get('title'),
            email=data.get('email'),
            phone=data.get('phone') or data.get('phone_number'),
            passport_number=data.get('passport_number'),
            passport_expiry=data.get('passport_expiry'),
            nationality=data.get('nationality'),
        )

    def split_name(self, default_first: str, default_last: str) -> Tuple[str, str]:
        """Return (first, last), falling back to splitting `name`."""
        first, last = self.first_name, self.last_name
        if first and last:
            return first, last
        parts = (self.name or '').split()
        if not first:
            first = parts[0] if parts else default_first
        if not last:
            last = parts[-1] if len(parts) > 1 else default_last
        return first, last


@dataclass(frozen=True)
class PricingResult:
    offer_id: str
    price: Price
    priced_payload: Dict[str, Any] = field(default_factory=dict, repr=False)
    cache_key: Optional[str] = None


@dataclass(frozen=True)
class BookingResult:
    pnr: str
    order_id: str
    status: str
    raw_response: Dict[str, Any] = field(default_factory=dict, repr=False)
    ticket_number: Optional[str] = None
    simulated: bool = False
    note: Optional[str] = None
    confirmed_price: Optional[Price] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'pnr': self.pnr,
            'order_id': self.order_id,
            'ticket_number': self.ticket_number,
            'status': self.status,
            'simulated': self.simulated,
            'note': self.note,
            'confirmed_price': self.confirmed_price.to_dict() if self.confirmed_price else None,
            'raw_response': self.raw_response,
        }


@dataclass(frozen=True)
class Seat:
    seat_number: str
    row: str
    column: str
    is_available: bool
    seat_class: str = 'economy'
    position: str = 'middle'
    price_amount: Optional[str] = None
    price_currency: Optional[str] = None
    characteristics: Tuple[str, ...] = ()
    has_extra_legroom: bool = False
    is_exit_row: bool = False


@dataclass(frozen=True)
class SegmentSeatMap:
    segment_id: str
    aircraft: str
    departure: str
    arrival: str
    seats: Tuple[Seat, ...] = ()


@dataclass(frozen=True)
class SeatMapResult:
    success: bool
    seat_maps: Tuple[SegmentSeatMap, ...] = ()
    error: Optional[str] = None
    supported: bool = True
    dictionaries: Dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def unsupported(cls, supplier_code: str) -> 'SeatMapResult':
        return cls(
            success=False,
            error=f"Seat selection is not supported by this supplier ({supplier_code})",
            supported=False,
        )

    @classmethod
    def failure(cls, error: str) -> 'SeatMapResult':
        return cls(success=False, error=error)

    @property
    def total_seats(self) -> int:
        return sum(len(m.seats) for m in self.seat_maps)


@dataclass(frozen=True)
class HealthProbeResult:
    success: bool
    message: str
    latency_ms: int = 0


@dataclass(frozen=True)
class SearchOutcome:
    """Result of one supplier search: Ok(offers) or Err(reason).

    Lets callers tell "no offers found" from "provider unreachable" without
    inspecting exception text.
    """
    supplier_code: str
    offers: Tuple[NormalizedOffer, ...] = ()
    error: Optional[str] = None
    error_code: Optional[SupplierErrorCode] = None
    from_cache: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, supplier_code: str, offers: List[NormalizedOffer], from_cache: bool = False) -> 'SearchOutcome':
        return cls(supplier_code=supplier_code, offers=tuple(offers), from_cache=from_cache)

    @classmethod
    def failure(cls, supplier_code: str, error: str,
                error_code: Optional[SupplierErrorCode] = None) -> 'SearchOutcome':
        return cls(supplier_code=supplier_code, error=error, error_code=error_code)
