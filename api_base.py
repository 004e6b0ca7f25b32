"""Shared plumbing for supplier adapters.

`BaseSupplierAdapter` owns the things every adapter needs and nobody should
re-implement: the HTTP session (timeout, bounded retry, TLS policy), the
search-result cache, the offer cache, supplier-prefixed logging and health
tracking. Concrete adapters implement `fetch_offers` and the provider-specific
calls; `search_outcome` wraps `fetch_offers` so that `search` never raises.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Callable, Dict, List, Optional

import requests

from cache import OfferCache, SEARCH_PREFIX, TokenCache, get_cache, make_key
from config import SupplierSettings, resolve_settings
from contracts import SupplierAdapter
from errors import (
    AuthenticationError,
    ProviderRejectedError,
    SupplierError,
    SupplierErrorCode,
    TransportError,
    UnsupportedOperationError,
    ValidationError,
)
from models import (
    BookingResult,
    HealthProbeResult,
    NormalizedOffer,
    SearchOutcome,
    SearchRequest,
    SeatMapResult,
)


logger = logging.getLogger(__name__)

USER_AGENT = "FlightSupplierHub/1.0"


def _safe_resp_text(text: str, limit: int = 500) -> str:
    """Return a compact/truncated response text for error messages."""

    text = (text or "").strip()
    if len(text) > limit:
        return text[:limit] + "…(truncated)"
    return text


def error_detail(resp: requests.Response) -> str:
    """Best human-readable error from a provider response.

    Tries `errors[0].detail`, `errors[0].message`, `errors[0].title`, then a
    top-level `message`, and finally the truncated body.
    """
    try:
        payload = resp.json()
    except ValueError:
        return _safe_resp_text(resp.text) or f"HTTP {resp.status_code}"

    if isinstance(payload, dict):
        errors = payload.get("errors")
        if isinstance(errors, list) and errors and isinstance(errors[0], dict):
            first = errors[0]
            for key in ("detail", "message", "title"):
                if first.get(key):
                    return str(first[key])
        if payload.get("message"):
            return str(payload["message"])
    return _safe_resp_text(resp.text) or f"HTTP {resp.status_code}"


class BaseSupplierAdapter(SupplierAdapter):
    """Common behaviour for all suppliers.

    Args:
        settings: effective settings; resolved from config.env and defaults when omitted
        record: persisted supplier record carrying active/health flags, if any
        cache: cache backend shared by offer, token and search caches
        store: supplier store used to persist health changes of `record`
        session: a requests.Session (tests pass a fake)
        search_cache_enabled: cache whole search results for `settings.search_cache_ttl`
    """

    code = ""

    def __init__(
        self,
        settings: Optional[SupplierSettings] = None,
        *,
        record=None,
        cache=None,
        store=None,
        session: Optional[requests.Session] = None,
        search_cache_enabled: bool = False,
    ):
        self.settings = settings or resolve_settings(self.code, record=record, driver=self.code)
        self.record = record
        self.store = store
        self.cache = cache if cache is not None else get_cache()
        self.offer_cache = OfferCache(self.cache)
        self.token_cache = TokenCache(self.cache)
        self.search_cache_enabled = search_cache_enabled

        self.session = session or requests.Session()
        self.session.headers.update({
            "Accept": "application/json",
            "User-Agent": USER_AGENT,
        })
        self.session.headers.update(self.default_headers())
        self.session.verify = self.settings.verify_ssl

    # ------------------------------
    # Identity
    # ------------------------------

    @property
    def supplier_code(self) -> str:
        return self.settings.code or self.code

    @property
    def name(self) -> str:
        if self.record is not None and self.record.name:
            return self.record.name
        return self.settings.name or self.supplier_code.capitalize()

    @property
    def base_url(self) -> str:
        return self.settings.base_url.rstrip("/")

    def default_headers(self) -> Dict[str, str]:
        return {}

    # ------------------------------
    # Logging
    # ------------------------------

    def _format(self, message: str, context: Dict[str, Any]) -> str:
        text = f"[{self.supplier_code}] {message}"
        if context:
            text += " " + json.dumps(context, default=str, sort_keys=True)
        return text

    def log_info(self, message: str, **context):
        logger.info(self._format(message, context))

    def log_warning(self, message: str, **context):
        logger.warning(self._format(message, context))

    def log_error(self, message: str, **context):
        logger.error(self._format(message, context))

    # ------------------------------
    # HTTP
    # ------------------------------

    def _url(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        return f"{self.base_url}{path}"

    def _send(self, method: str, path: str, **kwargs) -> requests.Response:
        """Send one request with the configured retry policy.

        Connection errors, timeouts and 5xx responses are retried up to
        `retry_times` attempts in total with a fixed `retry_delay_ms` pause.
        4xx responses are returned immediately. When retries run out a
        transport failure raises `TransportError`; a 5xx response is returned
        to the caller as-is.
        """
        url = self._url(path)
        attempts = max(1, self.settings.retry_times)
        delay = self.settings.retry_delay_ms / 1000.0

        for attempt in range(attempts):
            last = attempt == attempts - 1
            try:
                resp = self.session.request(method, url, timeout=self.settings.timeout, **kwargs)
            except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as e:
                if not last:
                    self.log_warning(f"{method} {path} failed ({type(e).__name__}), retrying",
                                     attempt=attempt + 1)
                    time.sleep(delay)
                    continue
                raise TransportError(
                    f"{method} {path} failed after {attempts} attempt(s): {e}",
                    supplier=self.supplier_code,
                ) from e
            except requests.exceptions.RequestException as e:
                raise TransportError(f"{method} {path} failed: {e}", supplier=self.supplier_code) from e

            if resp.status_code >= 500 and not last:
                self.log_warning(f"{method} {path} returned {resp.status_code}, retrying",
                                 attempt=attempt + 1)
                time.sleep(delay)
                continue
            return resp

        # attempts >= 1, the loop always returns or raises
        raise TransportError(f"{method} {path} failed", supplier=self.supplier_code)

    def raise_for_response(self, resp: requests.Response, action: str):
        """Raise the matching `SupplierError` for a non-2xx response."""
        if resp.ok:
            return

        status = resp.status_code
        message = f"{action} failed (HTTP {status}): {error_detail(resp)}"
        kwargs = {"supplier": self.supplier_code, "status_code": status,
                  "details": {"body": _safe_resp_text(resp.text)}}

        if status in (401, 403):
            raise AuthenticationError(message, **kwargs)
        if status == 404:
            raise SupplierError(message, code=SupplierErrorCode.NOT_FOUND, **kwargs)
        if status in (400, 422):
            raise ValidationError(message, **kwargs)
        if status >= 500:
            raise TransportError(message, **kwargs)
        raise ProviderRejectedError(message, **kwargs)

    def _decode(self, resp: requests.Response) -> Dict[str, Any]:
        if not resp.content:
            return {}
        try:
            payload = resp.json()
        except ValueError as e:
            raise SupplierError(
                f"Invalid JSON from provider (HTTP {resp.status_code})",
                supplier=self.supplier_code,
                code=SupplierErrorCode.PARSE,
                status_code=resp.status_code,
                details={"body": _safe_resp_text(resp.text)},
            ) from e
        return payload if isinstance(payload, dict) else {"data": payload}

    # ------------------------------
    # Search
    # ------------------------------

    def build_cache_key(self, request: SearchRequest) -> str:
        return make_key(SEARCH_PREFIX, {
            "supplier": self.supplier_code,
            "origin": request.origin_code,
            "destination": request.destination_code,
            "departure_date": request.departure_date.isoformat(),
            "return_date": request.return_date.isoformat() if request.return_date else None,
            "adults": request.adults,
            "children": request.children,
            "infants": request.infants,
            "cabin": request.cabin,
        })

    def cached_offers(self, request: SearchRequest) -> Optional[List[NormalizedOffer]]:
        """Offers cached for an identical search, or None on a miss or when caching is off."""
        if not self.search_cache_enabled:
            return None
        cached = self.cache.get(self.build_cache_key(request))
        if cached is None:
            return None
        self.log_info("Search cache hit", offers=len(cached))
        return [NormalizedOffer.from_dict(item) for item in cached]

    def store_search(self, request: SearchRequest, offers: List[NormalizedOffer]):
        if self.search_cache_enabled:
            self.cache.put(self.build_cache_key(request), [o.to_dict(include_raw=True) for o in offers],
                           self.settings.search_cache_ttl)

    def cache_or_fetch(self, request: SearchRequest,
                       fetcher: Callable[[], List[NormalizedOffer]]) -> List[NormalizedOffer]:
        """Return cached offers for an identical search, or fetch and cache them.

        Only a fetch that returns normally is cached; a raising fetcher leaves
        the cache untouched.
        """
        cached = self.cached_offers(request)
        if cached is not None:
            return cached
        offers = fetcher()
        self.store_search(request, offers)
        return offers

    def fetch_offers(self, request: SearchRequest) -> List[NormalizedOffer]:
        """Query the provider. Raise a `SupplierError` on failure."""
        raise NotImplementedError

    def search_outcome(self, request: SearchRequest) -> SearchOutcome:
        fetched = []

        def fetch():
            fetched.append(True)
            return self.fetch_offers(request)

        try:
            offers = self.cache_or_fetch(request, fetch)
        except SupplierError as e:
            self.log_error("Search failed", error=e.message, code=e.code.value, request=request.to_dict())
            self.mark_unhealthy()
            return SearchOutcome.failure(self.supplier_code, e.message, e.code)
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            self.log_error("Search response could not be parsed", error=repr(e), request=request.to_dict())
            self.mark_unhealthy()
            return SearchOutcome.failure(self.supplier_code, f"Unexpected response: {e!r}",
                                         SupplierErrorCode.PARSE)

        from_cache = not fetched
        self.mark_healthy()
        self.log_info("Search completed", offers=len(offers), from_cache=from_cache)
        return SearchOutcome.success(self.supplier_code, offers, from_cache=from_cache)

    # ------------------------------
    # Offer cache
    # ------------------------------

    def remember_offer(self, offer: NormalizedOffer, context: Optional[Dict[str, Any]] = None):
        """Cache an offer's raw payload plus what is needed to rebuild it."""
        self.offer_cache.put(offer.id, {"raw": offer.raw_data, "context": context or {}})

    def rebuild_offer(self, offer_id: str, raw: Dict[str, Any], context: Dict[str, Any]) -> Optional[NormalizedOffer]:
        """Turn a cached raw payload back into an offer."""
        return None

    def fetch_offer_live(self, offer_id: str) -> Optional[NormalizedOffer]:
        """Fallback lookup against the provider when the cache has nothing."""
        return None

    def get_offer_details(self, offer_id: str) -> Optional[NormalizedOffer]:
        entry = self.offer_cache.get(offer_id)
        if entry is not None:
            return self.rebuild_offer(offer_id, entry.get("raw") or {}, entry.get("context") or {})

        try:
            offer = self.fetch_offer_live(offer_id)
        except SupplierError as e:
            self.log_warning("Live offer lookup failed", offer_id=offer_id, error=e.message)
            return None
        if offer is None:
            self.log_info("Offer not found or expired", offer_id=offer_id)
        return offer

    # ------------------------------
    # Health
    # ------------------------------

    def mark_healthy(self):
        if self.record is None:
            return
        self.record.mark_healthy()
        if self.store is not None:
            self.store.save(self.record)

    def mark_unhealthy(self):
        if self.record is None:
            return
        self.record.mark_unhealthy()
        if self.store is not None:
            self.store.save(self.record)

    def is_available(self) -> bool:
        if self.record is None:
            return True
        return bool(self.record.is_active and self.record.is_healthy)

    def test_connection(self) -> HealthProbeResult:
        start = time.monotonic()
        try:
            result = self.perform_connection_test()
        except (SupplierError, requests.exceptions.RequestException) as e:
            self.mark_unhealthy()
            return HealthProbeResult(
                success=False,
                message=f"Connection failed: {e}",
                latency_ms=int((time.monotonic() - start) * 1000),
            )

        if result.success:
            self.mark_healthy()
        else:
            self.mark_unhealthy()
        return HealthProbeResult(
            success=result.success,
            message=result.message,
            latency_ms=int((time.monotonic() - start) * 1000),
        )

    def perform_connection_test(self) -> HealthProbeResult:
        resp = self._send("GET", self.base_url)
        return HealthProbeResult(
            success=resp.ok,
            message="Connection successful" if resp.ok else "API returned error",
        )

    # ------------------------------
    # Optional capabilities
    # ------------------------------

    def get_seat_map(self, offer_id: str) -> SeatMapResult:
        return SeatMapResult.unsupported(self.supplier_code)

    def book(self, offer: NormalizedOffer, passengers) -> BookingResult:
        raise UnsupportedOperationError(
            f"Booking is not implemented for this supplier ({self.supplier_code}).",
            supplier=self.supplier_code,
        )

    @staticmethod
    def passenger_counts(request: SearchRequest) -> Dict[str, int]:
        return {"adults": request.adults, "children": request.children, "infants": request.infants}
