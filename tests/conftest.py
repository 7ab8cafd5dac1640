from decimal import Decimal
from typing import Callable, Dict, List, Tuple

import pytest
from sqlalchemy.orm import Session

from shopcart.data.database import create_db_engine, init_db, make_session_factory
from shopcart.domain.errors import CacheUnavailable, CouponCheckFailed, ProductUnavailable
from shopcart.domain.policy import CartPolicy
from shopcart.domain.pricing import PricingEngine
from shopcart.domain.schemas import Availability, CartOut, OwnerKey, ProductInfo
from shopcart.repos.cart_repo import CartRepo
from shopcart.services.cart_service import CartService
from shopcart.services.coupon_validator import StaticCouponValidator
from shopcart.utils.settings import Settings

COUPONS = {
    "SAVE10": {"type": "percentage", "value": "10"},
    "FIXED100K": {"type": "fixed", "value": "100000"},
    "BIGSPENDER": {"type": "fixed", "value": "5000", "minimum_purchase": "1000000"},
}


class FakeProductProvider:
    """Katalog w pamieci; stock=None oznacza nieograniczony stan."""

    def __init__(self):
        self.products: Dict[str, ProductInfo] = {}
        self.stock: Dict[str, int | None] = {}
        self.availability_calls: List[Tuple[str, int]] = []
        self.before_availability: Callable[[str, int], None] | None = None

    def add(self, product_id: str, price: str, stock: int | None = None, **extra) -> ProductInfo:
        info = ProductInfo(product_id=product_id, name=f"Product {product_id}", price=Decimal(price), **extra)
        self.products[product_id] = info
        self.stock[product_id] = stock
        return info

    def fetch_product(self, product_id: str, variant_id: str | None = None) -> ProductInfo:
        if product_id not in self.products:
            raise ProductUnavailable("Product does not exist", product_id=product_id)
        return self.products[product_id].model_copy(update={"variant_id": variant_id})

    def check_availability(self, product_id: str, quantity: int, variant_id: str | None = None) -> Availability:
        self.availability_calls.append((product_id, quantity))
        if self.before_availability is not None:
            self.before_availability(product_id, quantity)
        if product_id not in self.products:
            raise ProductUnavailable("Product does not exist", product_id=product_id)
        stock = self.stock.get(product_id)
        if stock is None:
            return Availability(available=True, current_stock=10_000)
        return Availability(available=quantity <= stock, current_stock=stock)


class FakeCache:
    """Ten sam kontrakt co CartCache, bez redisa."""

    def __init__(self):
        self.entries: Dict[str, str] = {}
        self.generations: Dict[str, int] = {}
        self.invalidated: List[OwnerKey] = []

    def get(self, owner: OwnerKey) -> CartOut | None:
        raw = self.entries.get(owner.cache_key)
        return CartOut.model_validate_json(raw) if raw else None

    def generation(self, owner: OwnerKey) -> str:
        return str(self.generations.get(owner.cache_key, 0))

    def set(self, owner: OwnerKey, snapshot: CartOut, generation: str = "0") -> bool:
        if self.generation(owner) != generation:
            return False
        self.entries[owner.cache_key] = snapshot.model_dump_json()
        return True

    def invalidate(self, owner: OwnerKey) -> None:
        self.invalidated.append(owner)
        self.generations[owner.cache_key] = self.generations.get(owner.cache_key, 0) + 1
        self.entries.pop(owner.cache_key, None)

    def ping(self) -> bool:
        return True


class FlakyCache(FakeCache):
    """Invalidate pada zadana liczbe razy, wpis zostaje w cache."""

    def __init__(self, failures: int = 1):
        super().__init__()
        self.failures = failures

    def invalidate(self, owner: OwnerKey) -> None:
        if self.failures:
            self.failures -= 1
            raise CacheUnavailable("invalidate timed out")
        super().invalidate(owner)


class OutageCouponValidator(StaticCouponValidator):
    """Jak StaticCouponValidator, ale z przelacznikiem awarii zdalnego serwisu."""

    def __init__(self, rules):
        super().__init__(rules)
        self.down = False

    def evaluate(self, code: str, subtotal: Decimal) -> Decimal | None:
        if self.down:
            raise CouponCheckFailed("Coupon service is unavailable", code=code)
        return super().evaluate(code, subtotal)


class BrokenCache:
    def get(self, owner):
        raise CacheUnavailable("down")

    def generation(self, owner):
        raise CacheUnavailable("down")

    def set(self, owner, snapshot, generation="0"):
        raise CacheUnavailable("down")

    def invalidate(self, owner):
        raise CacheUnavailable("down")

    def ping(self):
        raise CacheUnavailable("down")


@pytest.fixture
def settings():
    return Settings(
        DATABASE_URL="sqlite://",
        CONFLICT_MAX_RETRIES=5,
        MAX_CART_ITEMS=3,
        MAX_ITEM_QUANTITY=99,
        COUPON_RULES=COUPONS,
    )


@pytest.fixture
def engine():
    engine = create_db_engine("sqlite://")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def db(session_factory) -> Session:
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def products():
    provider = FakeProductProvider()
    provider.add("P1", "10.00")
    provider.add("P2", "250000.00")
    provider.add("P3", "5.50", stock=4)
    return provider


@pytest.fixture
def cache():
    return FakeCache()


@pytest.fixture
def coupon_validator(settings):
    return StaticCouponValidator(settings.COUPON_RULES)


@pytest.fixture
def service(db, products, settings, cache, coupon_validator):
    return CartService(
        db=db,
        product_client=products,
        settings=settings,
        cache=cache,
        coupon_validator=coupon_validator,
    )


@pytest.fixture
def repo(db, settings, coupon_validator):
    return CartRepo(db, PricingEngine(CartPolicy.from_settings(settings), coupon_validator))


@pytest.fixture
def user():
    return OwnerKey.user("42")


@pytest.fixture
def guest():
    return OwnerKey.session("sess-abc")
