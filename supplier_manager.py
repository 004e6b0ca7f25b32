"""
Supplier registry and multi-supplier search.

The manager turns supplier codes into configured adapters, fans a search out
across every available adapter on a thread pool, and merges what comes back
into one deduplicated, sorted, limited list of offers. Offer ids carry their
supplier code as a prefix, which is how later calls find their way back to the
adapter that produced the offer.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

from api_amadeus import AmadeusSupplier
from api_database import DatabaseSupplier
from api_duffel import DuffelSupplier
from api_flightbuffer import FlightBufferSupplier
from cache import get_cache
from config import LoadedConfig, load_config, resolve_settings
from contracts import Bookable, Priceable, SupplierAdapter
from errors import ConfigurationError, SupplierError, UnsupportedOperationError
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
from supplier_store import SupplierStore


logger = logging.getLogger(__name__)

LOCAL_SUPPLIER = 'database'
SEARCH_MODES = ('local', 'external', 'hybrid')

# How often the collector wakes up to check the cancel flag.
POLL_INTERVAL = 0.25

DEFAULT_DRIVERS: Dict[str, type] = {
    'database': DatabaseSupplier,
    'flightbuffer': FlightBufferSupplier,
    'duffel': DuffelSupplier,
    'amadeus': AmadeusSupplier,
}


@dataclass
class AggregatedSearch:
    '''Merged result of one multi-supplier search.'''
    offers: List[NormalizedOffer] = field(default_factory=list)
    errors: Dict[str, str] = field(default_factory=dict)
    outcomes: List[SearchOutcome] = field(default_factory=list)
    cancelled: bool = False

    @property
    def suppliers_searched(self) -> List[str]:
        return [o.supplier_code for o in self.outcomes]

    @property
    def ok(self) -> bool:
        return not self.errors


class SupplierManager:
    """Resolves supplier adapters and runs searches across them.

    Args:
        config: loaded application config; read from config.env when omitted
        store: persisted supplier records; a SQLite store at `config.supplier_db_path` by default
        cache: cache backend handed to every adapter
        inventory: local flight inventory for the `database` driver
    """

    def __init__(self, config: Optional[LoadedConfig] = None, *, store: Optional[SupplierStore] = None,
                 cache=None, inventory=None):
        self.config = config or load_config()
        self.store = store if store is not None else SupplierStore(self.config.supplier_db_path)
        self.cache = cache if cache is not None else get_cache()
        self.inventory = inventory

        self._drivers: Dict[str, type] = dict(DEFAULT_DRIVERS)
        self._resolvers: Dict[str, Callable[[], SupplierAdapter]] = {}
        self._instances: Dict[str, SupplierAdapter] = {}
        self._lock = threading.RLock()

    # ------------------------------
    # Registry
    # ------------------------------

    def register_driver(self, name: str, adapter_class: type):
        self._drivers[name] = adapter_class

    def extend(self, name: str, resolver: Callable[[], SupplierAdapter]):
        '''Register a factory that builds the adapter for `name` itself.'''
        self._resolvers[name] = resolver
        with self._lock:
            self._instances.pop(name, None)

    def available_drivers(self) -> List[str]:
        return list(self._drivers)

    def clear_instances(self):
        with self._lock:
            self._instances.clear()

    def driver(self, name: str) -> SupplierAdapter:
        '''Get the adapter for a supplier code, creating it on first use.'''
        with self._lock:
            adapter = self._instances.get(name)
            if adapter is None:
                adapter = self._resolve(name)
                self._instances[name] = adapter
            return adapter

    def _resolve(self, name: str) -> SupplierAdapter:
        if name in self._resolvers:
            return self._resolvers[name]()

        record = self.store.get(name)
        file_config = dict(self.config.supplier_config(name))
        file_config.setdefault('search_cache_ttl', self.config.cache_ttl_minutes * 60)

        driver_name = (record.driver if record is not None else None) or file_config.get('driver') or name
        adapter_class = self._drivers.get(driver_name)
        if adapter_class is None:
            raise ConfigurationError(f"Unsupported flight supplier driver: {driver_name}", supplier=name)

        settings = resolve_settings(name, file_config, record=record, driver=driver_name)
        kwargs: Dict[str, Any] = {
            'record': record,
            'cache': self.cache,
            'store': self.store,
            'search_cache_enabled': self.config.cache_enabled,
        }
        if issubclass(adapter_class, DatabaseSupplier) and self.inventory is not None:
            kwargs['inventory'] = self.inventory

        logger.info(f"Resolved supplier {name} (driver={driver_name}, record={'yes' if record else 'no'})")
        return adapter_class(settings, **kwargs)

    def _try_driver(self, name: str) -> Optional[SupplierAdapter]:
        try:
            return self.driver(name)
        except SupplierError as e:
            logger.warning(f"Could not load supplier {name}: {e.message}")
            return None

    # ------------------------------
    # Supplier selection
    # ------------------------------

    def active_suppliers(self) -> List[SupplierAdapter]:
        """Adapters that take part in a search, in the order they are queried.

        The local inventory comes first. External suppliers come from the
        supplier records (active and healthy, highest priority first); when
        there are none, every supplier with credentials in config.env is used.
        `FLIGHT_SEARCH_MODE` narrows this to `local` or `external` only.
        """
        mode = self.config.search_mode if self.config.search_mode in SEARCH_MODES else 'hybrid'
        suppliers: List[SupplierAdapter] = []

        if mode in ('local', 'hybrid'):
            local = self._try_driver(LOCAL_SUPPLIER)
            if local is not None and local.is_available():
                suppliers.append(local)
        if mode == 'local':
            return suppliers

        external = []
        for record in self.store.available():
            if record.driver == LOCAL_SUPPLIER or record.code == LOCAL_SUPPLIER:
                continue
            adapter = self._try_driver(record.code)
            if adapter is not None and adapter.is_available():
                external.append(adapter)

        if not external:
            for name in self.config.configured_suppliers():
                adapter = self._try_driver(name)
                if adapter is not None and adapter.is_available():
                    external.append(adapter)

        return suppliers + external

    # ------------------------------
    # Search
    # ------------------------------

    def search(self, request: SearchRequest, cancel_flag: Optional[dict] = None) -> AggregatedSearch:
        """Search every active supplier in parallel and merge the results.

        Waits at most `search_timeout` seconds. Suppliers that have not
        answered by then are reported in `errors`. Setting
        `cancel_flag['cancelled'] = True` from another thread stops waiting
        and cancels the searches that have not started yet.
        """
        suppliers = self.active_suppliers()
        if not suppliers:
            logger.warning("No active suppliers available for flight search")
            return AggregatedSearch()

        logger.info(f"Searching {len(suppliers)} supplier(s): {', '.join(s.supplier_code for s in suppliers)}")
        outcomes: Dict[str, SearchOutcome] = {}
        result = AggregatedSearch()

        executor = ThreadPoolExecutor(max_workers=len(suppliers), thread_name_prefix='supplier-search')
        futures = {executor.submit(self._search_one, s, request, cancel_flag): s for s in suppliers}
        pending = set(futures)
        deadline = time.monotonic() + self.config.search_timeout
        try:
            while pending:
                if cancel_flag and cancel_flag.get('cancelled', False):
                    logger.info("Search cancelled by caller")
                    result.cancelled = True
                    break
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                done, pending = wait(pending, timeout=min(remaining, POLL_INTERVAL), return_when=FIRST_COMPLETED)
                for future in done:
                    outcome = self._collect(futures[future], future)
                    outcomes[outcome.supplier_code] = outcome
        finally:
            for future in pending:
                future.cancel()
            executor.shutdown(wait=False, cancel_futures=True)

        for future in pending:
            code = futures[future].supplier_code
            if result.cancelled:
                result.errors[code] = 'Search cancelled'
            else:
                result.errors[code] = f"No response within {self.config.search_timeout}s"
                logger.warning(f"Supplier {code} timed out")

        # merge in supplier order so deduplication keeps the higher-priority offer
        merged: List[NormalizedOffer] = []
        for supplier in suppliers:
            outcome = outcomes.get(supplier.supplier_code)
            if outcome is None:
                continue
            result.outcomes.append(outcome)
            if outcome.ok:
                merged.extend(outcome.offers)
            else:
                result.errors[outcome.supplier_code] = outcome.error

        if request.filters:
            merged = self.filter_results(merged, request.filters)
        result.offers = self.process_results(merged)
        logger.info(f"Search finished: {len(result.offers)} offer(s), {len(result.errors)} supplier error(s)")
        return result

    @staticmethod
    def _search_one(adapter: SupplierAdapter, request: SearchRequest,
                    cancel_flag: Optional[dict]) -> SearchOutcome:
        if cancel_flag and cancel_flag.get('cancelled', False):
            return SearchOutcome.failure(adapter.supplier_code, 'Search cancelled')
        return adapter.search_outcome(request)

    @staticmethod
    def _collect(adapter: SupplierAdapter, future) -> SearchOutcome:
        # search_outcome handles supplier errors; anything else is a bug in one adapter
        # and must not take the other suppliers' results down with it
        try:
            return future.result()
        except Exception as e:
            logger.exception(f"Supplier search crashed: {adapter.supplier_code}")
            return SearchOutcome.failure(adapter.supplier_code, f"Unexpected error: {e!r}")

    def search_supplier(self, code: str, request: SearchRequest) -> List[NormalizedOffer]:
        '''Search one supplier by code; an empty list when it cannot be loaded.'''
        adapter = self._try_driver(code)
        if adapter is None:
            return []
        return adapter.search(request)

    # ------------------------------
    # Merging
    # ------------------------------

    def process_results(self, offers: List[NormalizedOffer]) -> List[NormalizedOffer]:
        if self.config.deduplicate:
            offers = self.deduplicate(offers)
        offers = self.sort_results(offers, self.config.sort_by, self.config.sort_direction)
        return offers[:max(0, self.config.max_results)]

    @staticmethod
    def dedupe_key(offer: NormalizedOffer) -> str:
        '''Same route, departure time, airline and flight number means the same flight.'''
        leg = offer.first_leg
        if leg is None:
            return offer.id
        departure = leg.departure.date_time
        return '|'.join([
            leg.departure.airport_code,
            leg.arrival.airport_code,
            departure.strftime('%Y-%m-%d %H:%M:%S') if departure else '',
            offer.validating_airline.code,
            leg.flight_number or '',
        ])

    @classmethod
    def deduplicate(cls, offers: List[NormalizedOffer]) -> List[NormalizedOffer]:
        seen = set()
        unique = []
        for offer in offers:
            key = cls.dedupe_key(offer)
            if key in seen:
                continue
            seen.add(key)
            unique.append(offer)
        return unique

    @staticmethod
    def sort_results(offers: List[NormalizedOffer], sort_by: str = 'price',
                     direction: str = 'asc') -> List[NormalizedOffer]:
        def timestamp(value) -> float:
            return value.timestamp() if value else 0.0

        keys = {
            'price': lambda o: o.price.total,
            'duration': lambda o: o.first_leg.duration if o.first_leg else 0,
            'departure': lambda o: timestamp(o.first_leg.departure.date_time) if o.first_leg else 0.0,
            'arrival': lambda o: timestamp(o.first_leg.arrival.date_time) if o.first_leg else 0.0,
            'stops': lambda o: o.first_leg.stops if o.first_leg else 0,
        }
        key = keys.get(sort_by, keys['price'])
        return sorted(offers, key=key, reverse=(direction == 'desc'))

    @staticmethod
    def filter_results(offers: List[NormalizedOffer], filters: Dict[str, Any]) -> List[NormalizedOffer]:
        '''
        Apply user filters to merged offers.

        Supported keys: min_price, max_price, airline_code, max_stops (or stops),
        refundable. Empty values are ignored.
        '''
        out = list(offers)
        min_price = filters.get('min_price')
        max_price = filters.get('max_price')
        airline_code = filters.get('airline_code')
        max_stops = filters.get('max_stops', filters.get('stops'))

        if min_price:
            out = [o for o in out if o.price.total >= float(min_price)]
        if max_price:
            out = [o for o in out if o.price.total <= float(max_price)]
        if airline_code:
            out = [o for o in out if o.validating_airline.code == str(airline_code).upper()]
        if max_stops is not None and max_stops != '':
            out = [o for o in out if (o.first_leg.stops if o.first_leg else 0) <= int(max_stops)]
        if filters.get('refundable'):
            out = [o for o in out if o.refundable]
        return out

    # ------------------------------
    # Offer routing
    # ------------------------------

    def supplier_code_for(self, offer_id: str) -> str:
        '''The supplier prefix of an offer id; longest known code wins.'''
        known = set(self._drivers) | set(self._resolvers) | {r.code for r in self.store.all()}
        for code in sorted(known, key=len, reverse=True):
            if offer_id.startswith(f"{code}_"):
                return code
        return offer_id.partition('_')[0]

    def get_offer_details(self, offer_id: str) -> Optional[NormalizedOffer]:
        code = self.supplier_code_for(offer_id)
        adapter = self._try_driver(code)
        if adapter is None:
            logger.info(f"No supplier for offer {offer_id}")
            return None
        return adapter.get_offer_details(offer_id)

    def price_offer(self, offer: NormalizedOffer) -> PricingResult:
        adapter = self.driver(offer.supplier_code)
        if not isinstance(adapter, Priceable):
            raise UnsupportedOperationError(
                f"Price confirmation is not supported by this supplier ({offer.supplier_code}).",
                supplier=offer.supplier_code,
            )
        return adapter.price_offer(offer)

    def book(self, offer: NormalizedOffer, passengers: Sequence[Passenger]) -> BookingResult:
        '''Book through the offer's supplier. Every call creates a new order.'''
        adapter = self.driver(offer.supplier_code)
        if not isinstance(adapter, Bookable):
            raise UnsupportedOperationError(
                f"Booking is not implemented for this supplier ({offer.supplier_code}).",
                supplier=offer.supplier_code,
            )
        return adapter.book(offer, passengers)

    def get_seat_map(self, offer_id: str) -> SeatMapResult:
        code = self.supplier_code_for(offer_id)
        adapter = self._try_driver(code)
        if adapter is None:
            return SeatMapResult.unsupported(code)
        return adapter.get_seat_map(offer_id)

    # ------------------------------
    # Health
    # ------------------------------

    def known_suppliers(self) -> List[str]:
        codes = [LOCAL_SUPPLIER]
        for name in [r.code for r in self.store.all()] + self.config.configured_suppliers():
            if name not in codes:
                codes.append(name)
        return codes

    def test_all(self) -> Dict[str, HealthProbeResult]:
        '''Run the connection probe of every known supplier.'''
        results = {}
        for code in self.known_suppliers():
            adapter = self._try_driver(code)
            if adapter is None:
                results[code] = HealthProbeResult(success=False, message="Supplier could not be loaded")
                continue
            results[code] = adapter.test_connection()
        return results


_manager_instance = None
_manager_lock = threading.Lock()

def get_supplier_manager() -> SupplierManager:
    '''Get or create the global supplier manager.'''
    global _manager_instance
    with _manager_lock:
        if _manager_instance is None:
            _manager_instance = SupplierManager()
        return _manager_instance
