# shopcart/main.py
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from sqlalchemy import Engine

from shopcart.api.errors import register_error_handlers
from shopcart.api.routers import carts, health
from shopcart.data.database import create_db_engine, init_db, make_session_factory
from shopcart.services.cache_service import CartCache
from shopcart.services.coupon_validator import build_coupon_validator
from shopcart.services.product_client import ProductClient
from shopcart.utils.logging import configure_logging, get_logger
from shopcart.utils.settings import Settings, load_settings

logger = get_logger(__name__)

_UNSET = object()


def create_app(
    settings: Settings | None = None,
    *,
    engine: Engine | None = None,
    product_client=None,
    cache=_UNSET,
    coupon_validator=_UNSET,
) -> FastAPI:
    """
    Fabryka aplikacji.
    Zasoby nie przekazane z zewnatrz sa budowane w lifespan z settings
    i zamykane przy shutdown. cache=None wylacza cache calkowicie.
    """
    settings = settings or load_settings()
    configure_logging(settings.LOG_LEVEL)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = []

        db_engine = engine
        if db_engine is None:
            db_engine = create_db_engine(settings.DATABASE_URL, timeout=settings.STORE_TIMEOUT)
            owned.append(db_engine.dispose)
        logger.info("Initializing database")
        init_db(db_engine)

        client = product_client
        if client is None:
            client = ProductClient(
                settings.PRODUCT_SERVICE_URL,
                timeout=settings.PROVIDER_TIMEOUT,
                max_attempts=settings.PROVIDER_MAX_ATTEMPTS,
            )
            owned.append(client.close)

        cart_cache = cache
        if cart_cache is _UNSET:
            cart_cache = CartCache.from_url(
                settings.REDIS_URL,
                cart_ttl=settings.CART_TTL,
                session_ttl=settings.SESSION_TTL,
                timeout=settings.CACHE_TIMEOUT,
            )
            owned.append(cart_cache.close)

        validator = coupon_validator
        if validator is _UNSET:
            validator = build_coupon_validator(settings)
            if hasattr(validator, "close"):
                owned.append(validator.close)

        app.state.settings = settings
        app.state.engine = db_engine
        app.state.session_factory = make_session_factory(db_engine)
        app.state.product_client = client
        app.state.cache = cart_cache
        app.state.coupon_validator = validator
        logger.info("Cart service started")

        yield

        for close in reversed(owned):
            close()
        logger.info("Cart service stopped")

    app = FastAPI(
        title="Cart Service",
        version="1.0.0",
        lifespan=lifespan,
    )

    register_error_handlers(app)

    # Include routers
    app.include_router(health.router)
    app.include_router(carts.router)

    return app


if __name__ == "__main__":
    uvicorn.run(create_app(), host="0.0.0.0", port=8000)
