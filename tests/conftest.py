"""Shared fixtures: fake HTTP session, controllable clock, in-memory stores."""

from __future__ import annotations

import json
from dataclasses import replace
from datetime import date, datetime, timedelta

import pytest

from cache import MemoryCache
from config import resolve_settings
from inventory import FlightInventory
from models import Airline, Leg, Location, NormalizedOffer, Price, Segment, make_offer_id
from supplier_store import SupplierStore


class FakeResponse:
    """Just enough of requests.Response for the adapters."""

    def __init__(self, status_code=200, payload=None, text=None):
        self.status_code = status_code
        self._payload = payload
        if text is not None:
            self.text = text
        elif payload is not None:
            self.text = json.dumps(payload)
        else:
            self.text = ''
        self.content = self.text.encode()

    @property
    def ok(self):
        return self.status_code < 400

    def json(self):
        if self._payload is None:
            raise ValueError("No JSON body")
        return self._payload


class FakeSession:
    """
    Stand-in for requests.Session.

    Responses are served from a queue in call order; an exception instance in
    the queue is raised instead. A `handler(method, url, kwargs)` callable can
    be used instead of a queue for routing by URL.
    """

    def __init__(self, responses=None, handler=None):
        self.headers = {}
        self.verify = True
        self.responses = list(responses or [])
        self.handler = handler
        self.calls = []

    def request(self, method, url, **kwargs):
        self.calls.append({'method': method, 'url': url, **kwargs})
        if self.handler is not None:
            result = self.handler(method, url, kwargs)
        else:
            if not self.responses:
                raise AssertionError(f"Unexpected request: {method} {url}")
            result = self.responses.pop(0)
        if isinstance(result, Exception):
            raise result
        return result

    def calls_to(self, fragment):
        return [c for c in self.calls if fragment in c['url']]


class FakeClock:
    def __init__(self, start=1_000_000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def memory_cache(clock):
    return MemoryCache(clock=clock)


@pytest.fixture
def no_sleep(monkeypatch):
    """Skip the fixed retry delay."""
    import api_base
    sleeps = []
    monkeypatch.setattr(api_base.time, 'sleep', lambda s: sleeps.append(s))
    return sleeps


@pytest.fixture
def settings_for():
    def make(code, **overrides):
        base = {'base_url': f'https://{code}.test', 'retry_times': 1, 'retry_delay_ms': 0}
        base.update(overrides)
        return resolve_settings(code, base, driver=code)
    return make


@pytest.fixture
def store():
    s = SupplierStore(':memory:')
    yield s
    s.close()


@pytest.fixture
def inventory():
    inv = FlightInventory(':memory:')
    yield inv
    inv.close()


@pytest.fixture
def seeded_inventory(inventory):
    """One 100.00 flight BGW -> DXB on 2026-03-15."""
    airline = inventory.add_airline('IA', 'Iraqi Airways')
    bgw = inventory.add_airport('BGW', 'Baghdad International', 'Baghdad', 'Iraq')
    dxb = inventory.add_airport('DXB', 'Dubai International', 'Dubai', 'United Arab Emirates')
    inventory.add_flight(
        airline_id=airline,
        flight_number='IA123',
        origin_airport_id=bgw,
        destination_airport_id=dxb,
        departure_time=datetime(2026, 3, 15, 8, 30),
        arrival_time=datetime(2026, 3, 15, 11, 45),
        base_price=100.0,
        aircraft_type='A320',
    )
    return inventory


@pytest.fixture
def travel_date():
    return date(2026, 3, 15)


def make_offer(supplier='dummy', ref='1', total=100.0, departure=None, airline='IA',
               flight_number='IA123', origin='BGW', destination='DXB', stops=0, duration=195,
               refundable=True, index=0):
    """A small, internally consistent offer for merge/sort/cache tests."""
    departure = departure or datetime(2026, 3, 15, 8, 30)
    carrier = Airline(code=airline, name=f"{airline} Airlines")
    segment = Segment(
        departure=Location(city=origin, airport_code=origin, date_time=departure),
        arrival=Location(city=destination, airport_code=destination,
                         date_time=departure + timedelta(minutes=duration)),
        airline=carrier,
        flight_number=flight_number,
        cabin='Economy',
        duration=duration,
        capacity=9,
    )
    leg = Leg.from_segments([segment], duration)
    if stops:
        leg = replace(leg, stops=stops)
    base = round(total / 1.12, 2)
    return NormalizedOffer(
        id=make_offer_id(supplier, ref, index),
        supplier_code=supplier,
        reference_id=str(ref),
        price=Price(total=total, base_fare=base, taxes=round(total - base, 2)),
        legs=(leg,),
        validating_airline=carrier,
        seats_available=9,
        refundable=refundable,
        valid_until=departure,
        passengers={'adults': 1, 'children': 0, 'infants': 0},
        raw_data={'ref': str(ref)},
    )
