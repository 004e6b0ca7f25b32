"""Error taxonomy shared by every supplier adapter.

`search` never lets these escape (it degrades to an empty result), while
`book`, `price_offer` and the order-management calls raise them so callers can
tell a genuine failure apart from "no offers".
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional


class SupplierErrorCode(Enum):
    """Structured error codes for supplier failures."""
    TRANSPORT = "SUPPLIER_TRANSPORT"
    AUTHENTICATION = "SUPPLIER_AUTHENTICATION"
    VALIDATION = "SUPPLIER_VALIDATION"
    NOT_FOUND = "SUPPLIER_NOT_FOUND"
    PROVIDER_REJECTED = "SUPPLIER_PROVIDER_REJECTED"
    OFFER_EXPIRED = "SUPPLIER_OFFER_EXPIRED"
    UNSUPPORTED = "SUPPLIER_UNSUPPORTED"
    CONFIGURATION = "SUPPLIER_CONFIGURATION"
    PARSE = "SUPPLIER_PARSE"


class SupplierError(RuntimeError):
    """Base class for actionable supplier errors."""

    default_code = SupplierErrorCode.PROVIDER_REJECTED

    def __init__(
        self,
        message: str,
        *,
        supplier: str = "",
        code: Optional[SupplierErrorCode] = None,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.code = code or self.default_code
        self.message = message
        self.supplier = supplier
        self.status_code = status_code
        self.details = details or {}
        super().__init__(f"{self.code.value}: {message}")


class TransportError(SupplierError):
    """Network failure or timeout after all retries were spent."""
    default_code = SupplierErrorCode.TRANSPORT


class AuthenticationError(SupplierError):
    """Credentials rejected, including a 401 that survived one token refresh."""
    default_code = SupplierErrorCode.AUTHENTICATION


class ValidationError(SupplierError):
    """The request we built (or were given) is malformed. Never retried."""
    default_code = SupplierErrorCode.VALIDATION


class ProviderRejectedError(SupplierError):
    default_code = SupplierErrorCode.PROVIDER_REJECTED


class OfferExpiredError(ProviderRejectedError):
    """The offer can no longer be sold; the user has to search again."""
    default_code = SupplierErrorCode.OFFER_EXPIRED


class UnsupportedOperationError(SupplierError):
    default_code = SupplierErrorCode.UNSUPPORTED


class ConfigurationError(SupplierError):
    default_code = SupplierErrorCode.CONFIGURATION
