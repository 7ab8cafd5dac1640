# shopcart/domain/errors.py
from typing import Any, Dict


class CartError(Exception):
    """
    Bazowy wyjatek domeny koszyka.
    code + details pozwalaja warstwie prezentacji pokazac konkretny komunikat.
    """

    code = "CART_ERROR"

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = details

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


# =====================================================
# VALIDATION - caller musi zmienic request, bez retry
# =====================================================
class ValidationFailed(CartError):
    code = "VALIDATION_ERROR"


class InvalidQuantity(ValidationFailed):
    code = "INVALID_QUANTITY"


class LimitExceeded(ValidationFailed):
    code = "LIMIT_EXCEEDED"


class OutOfStock(ValidationFailed):
    code = "OUT_OF_STOCK"


class CouponInvalid(ValidationFailed):
    code = "COUPON_INVALID"


class CurrencyMismatch(ValidationFailed):
    code = "CURRENCY_MISMATCH"


class CartNotActive(ValidationFailed):
    code = "CART_NOT_ACTIVE"


class ProductUnavailable(CartError):
    code = "PRODUCT_UNAVAILABLE"


class CartNotFound(CartError):
    code = "CART_NOT_FOUND"


class CartItemNotFound(CartError):
    code = "CART_ITEM_NOT_FOUND"


# =====================================================
# DEPENDENCIES - zewnetrzne serwisy / storage
# =====================================================
class AvailabilityCheckFailed(CartError):
    code = "AVAILABILITY_CHECK_FAILED"


class AvailabilityCheckTimedOut(AvailabilityCheckFailed):
    code = "AVAILABILITY_CHECK_TIMED_OUT"


class CouponCheckFailed(CartError):
    code = "COUPON_CHECK_FAILED"


class ConflictRetryExhausted(CartError):
    code = "CONFLICT_RETRY_EXHAUSTED"


class StorageUnavailable(CartError):
    code = "STORAGE_UNAVAILABLE"


class CacheUnavailable(CartError):
    """Nigdy nie wychodzi poza engine - fallback do store."""

    code = "CACHE_UNAVAILABLE"


class CartVersionConflict(Exception):
    """Wewnetrzny sygnal optimistic lockingu, lapany przez petle retry."""
