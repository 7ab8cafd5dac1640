# shopcart/tasks/expire.py
from datetime import datetime, timezone
from typing import List

from shopcart.celery_worker import celery_app
from shopcart.data.database import create_db_engine, make_session_factory
from shopcart.domain.errors import CacheUnavailable
from shopcart.domain.policy import CartPolicy
from shopcart.domain.pricing import PricingEngine
from shopcart.domain.schemas import OwnerKey, OwnerKind
from shopcart.repos.cart_repo import CartRepo
from shopcart.services.cache_service import CartCache
from shopcart.utils.logging import get_logger
from shopcart.utils.settings import Settings, load_settings

logger = get_logger(__name__)


def expire_carts(session_factory, cache: CartCache | None, settings: Settings, now: datetime | None = None) -> List[str]:
    """
    ACTIVE koszyki po expires_at -> EXPIRED, wpisy cache usuwane.
    Zwraca id wygaszonych koszykow.
    """
    now = now or datetime.now(timezone.utc)
    pricing = PricingEngine(CartPolicy.from_settings(settings))

    db = session_factory()
    try:
        expired = CartRepo(db, pricing).expire_stale_carts(now)
    finally:
        db.close()

    logger.info(f"Expired {len(expired)} carts")

    for cart_id, owner_kind, owner_id in expired:
        if cache is None:
            break
        owner = OwnerKey(kind=OwnerKind(owner_kind), value=owner_id)
        try:
            cache.invalidate(owner)
        except CacheUnavailable as e:
            logger.warning(f"Failed to drop cache entry for expired cart {cart_id}: {e}")

    return [cart_id for cart_id, _, _ in expired]


@celery_app.task(name="shopcart.tasks.expire.expire_carts_task")
def expire_carts_task():
    logger.info("Expire carts task started")

    settings = load_settings()
    engine = create_db_engine(settings.DATABASE_URL, timeout=settings.STORE_TIMEOUT)
    cache = CartCache.from_url(
        settings.REDIS_URL,
        cart_ttl=settings.CART_TTL,
        session_ttl=settings.SESSION_TTL,
        timeout=settings.CACHE_TIMEOUT,
    )
    try:
        return expire_carts(make_session_factory(engine), cache, settings)
    finally:
        cache.close()
        engine.dispose()
