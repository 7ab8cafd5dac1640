# shopcart/api/errors.py
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from shopcart.domain.errors import (
    AvailabilityCheckFailed,
    AvailabilityCheckTimedOut,
    CartError,
    CartItemNotFound,
    CartNotActive,
    CartNotFound,
    ConflictRetryExhausted,
    CouponCheckFailed,
    CouponInvalid,
    OutOfStock,
    ProductUnavailable,
    StorageUnavailable,
    ValidationFailed,
)
from shopcart.utils.logging import get_logger

logger = get_logger(__name__)

#kolejnosc w MRO decyduje, najbardziej szczegolowa klasa wygrywa
STATUS_CODES = {
    OutOfStock: 409,
    CartNotActive: 409,
    CouponInvalid: 422,
    ValidationFailed: 400,
    CartNotFound: 404,
    CartItemNotFound: 404,
    ProductUnavailable: 404,
    ConflictRetryExhausted: 409,
    AvailabilityCheckTimedOut: 504,
    AvailabilityCheckFailed: 502,
    CouponCheckFailed: 502,
    StorageUnavailable: 503,
}


def status_for(exc: CartError) -> int:
    for cls in type(exc).__mro__:
        if cls in STATUS_CODES:
            return STATUS_CODES[cls]
    return 500


async def cart_error_handler(request: Request, exc: CartError) -> JSONResponse:
    code = status_for(exc)
    if code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.code} {exc.message}")
    return JSONResponse(status_code=code, content=exc.to_dict())


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(CartError, cart_error_handler)
