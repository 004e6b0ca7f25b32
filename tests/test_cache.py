"""Tests for the cache backends and the offer / token caches built on them."""

import pytest

from cache import (
    OFFER_PREFIX,
    PRICED_OFFER_PREFIX,
    TOKEN_PREFIX,
    MemoryCache,
    OfferCache,
    SQLiteCache,
    TokenCache,
    make_key,
)
from conftest import FakeClock


@pytest.fixture(params=['memory', 'sqlite'])
def backend(request):
    clock = FakeClock()
    if request.param == 'memory':
        cache = MemoryCache(clock=clock)
    else:
        cache = SQLiteCache(':memory:', clock=clock)
    cache.clock = clock
    yield cache
    if request.param == 'sqlite':
        cache.close()


class TestBackends:

    def test_put_and_get(self, backend):
        backend.put('k', {'a': [1, 2]}, 60)
        assert backend.get('k') == {'a': [1, 2]}

    def test_missing_key(self, backend):
        assert backend.get('nope') is None

    def test_entry_expires_at_ttl(self, backend):
        backend.put('k', 'v', 60)
        backend.clock.advance(59)
        assert backend.get('k') == 'v'
        backend.clock.advance(1)
        assert backend.get('k') is None

    def test_forget(self, backend):
        backend.put('k', 'v', 60)
        backend.forget('k')
        assert backend.get('k') is None

    def test_clear_all(self, backend):
        backend.put('a', 1, 60)
        backend.put('b', 2, 60)
        backend.clear_all()
        assert backend.get('a') is None
        assert backend.get('b') is None

    def test_values_are_copies(self, backend):
        value = {'list': [1]}
        backend.put('k', value, 60)
        value['list'].append(2)
        got = backend.get('k')
        got['list'].append(3)
        assert backend.get('k') == {'list': [1]}


class TestSQLiteCache:

    def test_stats_and_clear_expired(self):
        clock = FakeClock()
        cache = SQLiteCache(':memory:', clock=clock)
        cache.put('short', 1, 10)
        cache.put('long', 2, 100)
        clock.advance(50)

        assert cache.get_stats() == {'total_entries': 2, 'expired_entries': 1, 'valid_entries': 1}
        assert cache.clear_expired() == 1
        assert cache.get('long') == 2
        cache.close()

    def test_persists_to_file(self, tmp_path):
        path = tmp_path / 'cache.db'
        first = SQLiteCache(str(path))
        first.put('k', 'v', 60)
        first.close()

        second = SQLiteCache(str(path))
        assert second.get('k') == 'v'
        second.close()


class TestOfferCache:

    def test_namespaces(self, memory_cache):
        offers = OfferCache(memory_cache)
        offers.put('amadeus_1_0', {'raw': 1})
        offers.put_priced('amadeus_1_0', {'priced': 1})

        assert memory_cache.get(OFFER_PREFIX + 'amadeus_1_0') == {'raw': 1}
        assert memory_cache.get(PRICED_OFFER_PREFIX + 'amadeus_1_0') == {'priced': 1}

    def test_thirty_minute_ttl(self, memory_cache, clock):
        offers = OfferCache(memory_cache)
        offers.put('x', {'raw': 1})
        clock.advance(1799)
        assert offers.get('x') == {'raw': 1}
        clock.advance(1)
        assert offers.get('x') is None

    def test_forget_drops_priced_entry(self, memory_cache):
        offers = OfferCache(memory_cache)
        offers.put('x', 1)
        offers.put_priced('x', 2)
        offers.forget('x')
        assert offers.get('x') is None
        assert offers.get_priced('x') is None


class TestTokenCache:

    def test_put_get_forget(self, memory_cache, clock):
        tokens = TokenCache(memory_cache)
        tokens.put('amadeus', 'abc', 1699)
        assert memory_cache.get(TOKEN_PREFIX + 'amadeus') == 'abc'
        clock.advance(1699)
        assert tokens.get('amadeus') is None

        tokens.put('amadeus', 'def', 100)
        tokens.forget('amadeus')
        assert tokens.get('amadeus') is None

    def test_non_positive_ttl_is_not_stored(self, memory_cache):
        tokens = TokenCache(memory_cache)
        tokens.put('amadeus', 'abc', 0)
        assert tokens.get('amadeus') is None


def test_make_key_is_order_independent():
    assert make_key('p_', {'a': 1, 'b': 2}) == make_key('p_', {'b': 2, 'a': 1})
    assert make_key('p_', {'a': 1}).startswith('p_')
