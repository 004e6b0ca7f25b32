from datetime import date, datetime

import pytest

from api_flightbuffer import FlightBufferSupplier, clean_luggage, normalize_cabin
from errors import SupplierErrorCode
from models import SearchRequest

from conftest import FakeResponse, FakeSession


def airport(code, name, city, country, country_code):
    return {'abb': code, 'en': name, 'id': 10,
            'city': {'en': city, 'country': {'en': country, 'abb': country_code}}}


def segment(number, capacity, dep, arr, dep_time, arr_time, duration):
    return {
        'departure': {'airport': dep, 'raw_time': dep_time},
        'arrival': {'airport': arr, 'raw_time': arr_time},
        'airline': {'abb': 'IA', 'en': 'Iraqi Airways', 'id': 3, 'logo': 'ia.png'},
        'flight_number': number,
        'cabin': 'economy',
        'duration': duration,
        'airplane': 'Boeing 737',
        'luggage': '30 KG/ADT',
        'resBookDesigCode': 'Y',
        'FareBasis': 'YOW',
        'capacity': capacity,
    }


BGW = airport('BGW', 'Baghdad International', 'Baghdad', 'Iraq', 'IQ')
EBL = airport('EBL', 'Erbil International', 'Erbil', 'Iraq', 'IQ')
IST = airport('IST', 'Istanbul Airport', 'Istanbul', 'Turkey', 'TR')


def item(reference='FB-1', refundable='-', capacities=(7, 4)):
    return {
        'flightBufferReferenceId': reference,
        'sellerCode': 'S1',
        'hasBrands': True,
        'onholdable': True,
        'priceInfo': {
            'payable': '250.00',
            'b2c': '260.00',
            'baseFare': '200.00',
            'currency': {'abb': 'IQD', 'symbol': 'IQD ', 'decimal_places': 0},
            'breakDowns': {
                'adult': {'baseFare': 200, 'tax': 50, 'totalFare': 250, 'passengersCount': 1},
            },
        },
        'serviceInfo': {
            'refundable': refundable,
            'searchValidity': '2026-03-14T20:00:00',
            'passengersCount': {'adults': 1, 'children': 0, 'infants': 0},
            'validatingAirline': {'abb': 'IA', 'en': 'Iraqi Airways'},
            'legs': [{
                'info': {
                    'departure': {'airport': BGW, 'raw_time': '2026-03-15T06:00:00'},
                    'arrival': {'airport': IST, 'raw_time': '2026-03-15T11:30:00'},
                    'duration': '5:30',
                    'connections': 1,
                    'cabin': 'economy',
                },
                'segments': [
                    segment('IA201', capacities[0], BGW, EBL, '2026-03-15T06:00:00', '2026-03-15T07:00:00', '1:0'),
                    segment('IA505', capacities[1], EBL, IST, '2026-03-15T08:30:00', '2026-03-15T11:30:00', '3:0'),
                ],
            }],
        },
    }


@pytest.fixture
def make_fb(settings_for, memory_cache, no_sleep):
    def make(*responses, **overrides):
        values = {'api_key': 'fbkey', 'api_secret': 'fbsecret'}
        values.update(overrides)
        return FlightBufferSupplier(settings_for('flightbuffer', **values), cache=memory_cache,
                                    session=FakeSession(responses))
    return make


@pytest.fixture
def request_():
    return SearchRequest('BGW', 'IST', date(2026, 3, 15))


def test_helpers():
    assert clean_luggage('30 KG/ADT') == '30 KG'
    assert clean_luggage('') is None
    assert normalize_cabin('c') == 'Business'
    assert normalize_cabin(None) == 'Economy'


def test_headers(make_fb):
    headers = make_fb().session.headers
    assert headers['Authorization'] == 'Bearer fbkey'
    assert headers['X-API-Secret'] == 'fbsecret'


def test_round_trip_payload(make_fb):
    request = SearchRequest('BGW', 'IST', date(2026, 3, 15), return_date=date(2026, 3, 20), children=1)
    payload = make_fb(searcher_identity='agency-7').build_search_payload(request)

    assert payload['tripType'] == 'roundTrip'
    assert payload['searcherIdentity'] == 'agency-7'
    assert payload['children'] == 1
    assert payload['legs'] == [
        {'origin': 'BGW', 'destination': 'IST', 'departure': '2026-03-15'},
        {'origin': 'IST', 'destination': 'BGW', 'departure': '2026-03-20'},
    ]


def test_default_searcher_identity(make_fb, request_):
    assert make_fb().build_search_payload(request_)['searcherIdentity'] == 'default'


def test_search_normalizes_items(make_fb, request_):
    fb = make_fb(FakeResponse(200, {'status': True, 'data': [item()]}))

    offers = fb.search(request_)

    assert fb.session.calls[0]['url'] == 'https://flightbuffer.test/api/flights/search'
    offer = offers[0]
    assert offer.id == 'flightbuffer_FB-1_0'
    assert offer.price.total == 250.0
    assert offer.price.taxes == 50.0
    assert offer.price.currency == 'IQD'
    assert offer.price.decimal_places == 0
    assert offer.price.is_consistent()
    assert offer.refundable is False
    assert offer.seats_available == 4
    assert offer.onholdable
    assert offer.seller_code == 'S1'
    assert offer.valid_until == datetime(2026, 3, 14, 20, 0)

    leg = offer.first_leg
    assert leg.duration == 330
    assert leg.stops == 1
    assert leg.departure.country_code == 'IQ'
    assert leg.arrival.city == 'Istanbul'
    assert [s.duration for s in leg.segments] == [60, 180]
    assert leg.segments[0].luggage == '30 KG'
    assert leg.segments[1].departure.airport_code == 'EBL'


def test_long_leg_duration_is_hours_and_minutes(make_fb):
    raw = item()
    raw['serviceInfo']['legs'][0]['info']['duration'] = '26:30'
    raw['serviceInfo']['legs'][0]['segments'][1]['duration'] = '195:0'

    leg = make_fb().normalize_offer(raw).first_leg

    assert leg.duration == 1590
    assert leg.segments[1].duration == 195


def test_refundable_and_unknown_capacity(make_fb, request_):
    fb = make_fb(FakeResponse(200, {'status': True, 'data': [item(refundable='Yes', capacities=(0, 0))]}))
    offer = fb.search(request_)[0]
    assert offer.refundable
    assert offer.seats_available == 0


def test_payable_falls_back_to_b2c(make_fb):
    raw = item()
    del raw['priceInfo']['payable']
    assert make_fb().normalize_offer(raw).price.total == 260.0


def test_status_false_is_err_outcome(make_fb, request_):
    fb = make_fb(FakeResponse(200, {'status': False, 'message': 'Invalid route'}))

    outcome = fb.search_outcome(request_)

    assert not outcome.ok
    assert outcome.error_code is SupplierErrorCode.PROVIDER_REJECTED
    assert 'Invalid route' in outcome.error


def test_unparseable_item_is_skipped(make_fb, request_):
    broken = item('FB-2')
    broken['priceInfo']['payable'] = 'n/a'
    fb = make_fb(FakeResponse(200, {'status': True, 'data': [broken, item('FB-3')]}))

    offers = fb.search(request_)

    assert [o.reference_id for o in offers] == ['FB-3']
    assert offers[0].id == 'flightbuffer_FB-3_1'


def test_non_object_item_is_skipped(make_fb, request_):
    fb = make_fb(FakeResponse(200, {'status': True, 'data': ['garbage', item('FB-3')]}))
    assert [o.id for o in fb.search(request_)] == ['flightbuffer_FB-3_1']


def test_offer_details_from_cache(make_fb, request_):
    fb = make_fb(FakeResponse(200, {'status': True, 'data': [item()]}))
    offer = fb.search(request_)[0]
    assert fb.get_offer_details(offer.id) == offer


def test_offer_details_live(make_fb):
    fb = make_fb(FakeResponse(200, {'data': item('FB-9')}))
    offer = fb.get_offer_details('flightbuffer_FB-9_4')
    assert fb.session.calls[0]['url'] == 'https://flightbuffer.test/api/flights/offer/FB-9'
    assert offer.reference_id == 'FB-9'


def test_probe_counts_any_answer_as_reachable(make_fb):
    assert make_fb(FakeResponse(200, {})).test_connection().message == 'FlightBuffer API is reachable'
    result = make_fb(FakeResponse(500)).test_connection()
    assert result.success
    assert result.message == 'API returned status 500'
