from datetime import date

import pytest

from api_duffel import DuffelSupplier
from errors import OfferExpiredError, SupplierErrorCode, ValidationError
from models import Passenger, SearchRequest

from conftest import FakeResponse, FakeSession


def duffel_offer(offer_id='off_0000A', instant=True, passenger_types=('adult', 'adult')):
    return {
        'id': offer_id,
        'total_amount': '300.50',
        'base_amount': '250.00',
        'tax_amount': '50.50',
        'total_currency': 'GBP',
        'expires_at': '2026-03-01T12:00:00Z',
        'owner': {'iata_code': 'BA', 'name': 'British Airways', 'logo_symbol_url': 'https://logo/ba.svg'},
        'conditions': {'refund_before_departure': {'allowed': True}},
        'payment_requirements': {'requires_instant_payment': instant},
        'passengers': [{'id': f'pas_{n}', 'type': kind} for n, kind in enumerate(passenger_types)],
        'slices': [{
            'duration': 'PT5H30M',
            'segments': [{
                'origin': {'iata_code': 'LHR', 'name': 'Heathrow', 'city_name': 'London',
                           'iata_country_code': 'GB'},
                'destination': {'iata_code': 'DXB', 'name': 'Dubai International',
                                'city': {'name': 'Dubai', 'iata_country_code': 'AE'}},
                'departing_at': '2026-03-15T09:00:00',
                'arriving_at': '2026-03-15T19:30:00',
                'origin_terminal': '5',
                'marketing_carrier': {'iata_code': 'BA', 'name': 'British Airways'},
                'marketing_carrier_flight_number': '107',
                'aircraft': {'name': 'Boeing 777-300ER'},
                'duration': 'PT5H30M',
                'passengers': [{
                    'cabin_class': 'premium_economy',
                    'fare_basis_code': 'WLOW',
                    'baggages': [{'type': 'carry_on', 'quantity': 1}, {'type': 'checked', 'quantity': 2}],
                }],
            }],
        }],
    }


@pytest.fixture
def make_duffel(settings_for, memory_cache, no_sleep):
    def make(*responses):
        settings = settings_for('duffel', api_key='duffel_test_token')
        return DuffelSupplier(settings, cache=memory_cache, session=FakeSession(responses))
    return make


@pytest.fixture
def request_():
    return SearchRequest('LHR', 'DXB', date(2026, 3, 15), adults=2)


def search(make_duffel, request_, *offers):
    duffel = make_duffel(FakeResponse(201, {'data': {'offers': list(offers)}}))
    return duffel, duffel.search(request_)


class TestSearch:

    def test_headers(self, make_duffel):
        headers = make_duffel().session.headers
        assert headers['Authorization'] == 'Bearer duffel_test_token'
        assert headers['Duffel-Version'] == 'v2'

    def test_payload(self, make_duffel):
        request = SearchRequest('LHR', 'DXB', date(2026, 3, 15), return_date=date(2026, 3, 20),
                                adults=1, infants=1, cabin='Premium Economy')
        payload = make_duffel().build_search_payload(request)

        assert len(payload['slices']) == 2
        assert payload['slices'][1]['origin'] == 'DXB'
        assert payload['passengers'] == [{'type': 'adult'}, {'type': 'infant_without_seat'}]
        assert payload['cabin_class'] == 'premium_economy'

    def test_request_sent_with_return_offers(self, make_duffel, request_):
        duffel, _ = search(make_duffel, request_, duffel_offer())
        call = duffel.session.calls[0]
        assert call['url'] == 'https://duffel.test/air/offer_requests'
        assert call['params'] == {'return_offers': 'true'}
        assert len(call['json']['data']['passengers']) == 2

    def test_normalizes_offer(self, make_duffel, request_):
        _, offers = search(make_duffel, request_, duffel_offer())

        offer = offers[0]
        assert offer.id == 'duffel_off_0000A_0'
        assert offer.reference_id == 'off_0000A'
        assert offer.price.total == 300.5
        assert offer.price.currency_symbol == '£'
        assert offer.price.breakdown['adult'].total_fare == 150.25
        assert offer.price.breakdown['adult'].passengers_count == 2
        assert offer.price.is_consistent()
        assert offer.refundable
        assert not offer.onholdable
        assert offer.validating_airline.name == 'British Airways'

        leg = offer.first_leg
        assert leg.cabin == 'Premium economy'
        assert leg.departure.city == 'London'
        assert leg.arrival.city == 'Dubai'
        assert leg.arrival.country == 'AE'
        segment = leg.segments[0]
        assert segment.luggage == '2 checked bag(s)'
        assert segment.fare_basis == 'WLOW'
        assert segment.departure.terminal == '5'

    def test_server_error_is_err_outcome(self, make_duffel, request_):
        duffel = make_duffel(FakeResponse(502, {'errors': [{'message': 'upstream'}]}))
        outcome = duffel.search_outcome(request_)
        assert outcome.error_code is SupplierErrorCode.TRANSPORT
        assert 'upstream' in outcome.error

    def test_malformed_entry_is_skipped(self, make_duffel, request_):
        duffel, offers = search(make_duffel, request_, 'garbage', duffel_offer())

        assert [o.reference_id for o in offers] == ['off_0000A']


class TestOfferDetails:

    def test_from_cache(self, make_duffel, request_):
        duffel, offers = search(make_duffel, request_, duffel_offer())
        assert duffel.get_offer_details(offers[0].id) == offers[0]
        assert len(duffel.session.calls) == 1

    def test_live_lookup_when_not_cached(self, make_duffel):
        duffel = make_duffel(FakeResponse(200, {'data': duffel_offer('off_live', passenger_types=('adult', 'child'))}))

        offer = duffel.get_offer_details('duffel_off_live_3')

        assert duffel.session.calls[0]['url'] == 'https://duffel.test/air/offers/off_live'
        assert offer.passengers == {'adults': 1, 'children': 1, 'infants': 0}
        assert offer.price.breakdown['child'].passengers_count == 1

    def test_live_lookup_miss(self, make_duffel):
        duffel = make_duffel(FakeResponse(404, {'errors': [{'message': 'not found'}]}))
        assert duffel.get_offer_details('duffel_off_gone_0') is None


class TestBooking:

    def test_instant_order_paid_from_balance(self, make_duffel, request_):
        duffel, offers = search(make_duffel, request_, duffel_offer(instant=True))
        duffel.session.responses.append(FakeResponse(201, {'data': {
            'id': 'ord_1', 'booking_reference': 'RZPVXV',
            'documents': [{'unique_identifier': '1252128000123'}],
        }}))

        result = duffel.book(offers[0], [Passenger(name='John Smith', email='j@example.com'),
                                         Passenger(first_name='Jane', last_name='Smith', gender='female')])

        assert result.pnr == 'RZPVXV'
        assert result.ticket_number == '1252128000123'
        body = duffel.session.calls_to('/air/orders')[0]['json']['data']
        assert body['type'] == 'instant'
        assert body['selected_offers'] == ['off_0000A']
        assert body['payments'] == [{'type': 'balance', 'amount': '300.50', 'currency': 'GBP'}]
        assert [p['id'] for p in body['passengers']] == ['pas_0', 'pas_1']
        assert body['passengers'][0]['email'] == 'j@example.com'
        assert 'email' not in body['passengers'][1]
        assert body['passengers'][1]['gender'] == 'f'

    def test_hold_order_when_payment_can_wait(self, make_duffel, request_):
        duffel, offers = search(make_duffel, request_, duffel_offer(instant=False))
        assert offers[0].onholdable

        payload = duffel.build_booking_payload(offers[0], [Passenger(name='A B'), Passenger(name='C D')])

        assert payload['type'] == 'hold'
        assert 'payments' not in payload

    def test_birth_dates(self, make_duffel, request_):
        duffel, offers = search(make_duffel, request_, duffel_offer())

        mapped = duffel.map_passengers(offers[0], [
            Passenger(name='A B', date_of_birth='1985-06-02T00:00:00'),
            Passenger(name='C D', date_of_birth='02/06/1985'),
        ])

        assert mapped[0]['born_on'] == '1985-06-02'
        assert mapped[1]['born_on'] == '1990-01-15'

    def test_passenger_without_slot(self, make_duffel, request_):
        duffel, offers = search(make_duffel, request_, duffel_offer())
        with pytest.raises(ValidationError):
            duffel.map_passengers(offers[0], [Passenger(name='Kid Smith', passenger_type='child')])

    def test_expired_offer(self, make_duffel, request_):
        duffel, offers = search(make_duffel, request_, duffel_offer())
        duffel.session.responses.append(FakeResponse(422, {'errors': [{
            'message': 'The offer is no longer available', 'source': {'field': 'selected_offers'},
        }]}))

        with pytest.raises(OfferExpiredError):
            duffel.book(offers[0], [Passenger(name='A B'), Passenger(name='C D')])

    def test_every_booking_reaches_provider(self, make_duffel, request_):
        duffel, offers = search(make_duffel, request_, duffel_offer())
        for _ in range(2):
            duffel.session.responses.append(FakeResponse(201, {'data': {'id': 'ord', 'booking_reference': 'X'}}))
            duffel.book(offers[0], [Passenger(name='A B'), Passenger(name='C D')])
        assert len(duffel.session.calls_to('/air/orders')) == 2


def test_connection_probe(make_duffel):
    assert make_duffel(FakeResponse(200, {'data': []})).test_connection().success
    result = make_duffel(FakeResponse(401, {'errors': [{'message': 'bad token'}]})).test_connection()
    assert not result.success
    assert 'bad token' in result.message
