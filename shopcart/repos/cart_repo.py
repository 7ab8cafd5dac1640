# shopcart/repos/cart_repo.py
import functools
from datetime import datetime, timezone
from typing import Any, List, Tuple

from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import set_committed_value

from shopcart.data.models.cart import CartModel
from shopcart.data.models.cart_item import CartItemModel
from shopcart.domain.errors import CartVersionConflict, StorageUnavailable
from shopcart.domain.pricing import PricingEngine
from shopcart.domain.schemas import CartStatus, OwnerKey
from shopcart.utils.logging import get_logger

logger = get_logger(__name__)

#pola snapshotu odswiezane przy fold w add_item
_SNAPSHOT_FIELDS = ("name", "sku", "image", "price", "compare_price")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def storage_guard(fn):
    """Bledy bazy -> rollback + StorageUnavailable, caller decyduje o retry."""

    @functools.wraps(fn)
    def wrapper(self, *args, **kwargs):
        try:
            return fn(self, *args, **kwargs)
        except (StorageUnavailable, CartVersionConflict):
            raise
        except SQLAlchemyError as e:
            logger.error(f"Storage failure in {fn.__name__}: {e}")
            self.db.rollback()
            raise StorageUnavailable("Cart storage is unavailable", operation=fn.__name__) from e

    return wrapper


class CartRepo:
    """
    Trwaly store koszykow (source of truth).

    Zmiany linii i kuponow sa tylko flushowane, do bazy trafiaja wylacznie
    przez commit_cart(), ktory przelicza sumy i robi UPDATE z warunkiem na
    wersje. Linie i sumy nigdy nie sa zapisane osobno.
    """

    def __init__(self, db: Session, pricing: PricingEngine):
        self.db = db
        self.pricing = pricing

    # =====================================================
    # QUERY
    # =====================================================
    @storage_guard
    def find_by_owner(self, owner: OwnerKey) -> CartModel | None:
        now = _utcnow()
        stmt = select(CartModel).where(
            CartModel.active_owner == str(owner),
            CartModel.status == CartStatus.ACTIVE.value,
            or_(CartModel.expires_at.is_(None), CartModel.expires_at > now),
        )
        return self.db.execute(stmt).scalar_one_or_none()

    @storage_guard
    def get_cart(self, cart_id: str) -> CartModel | None:
        return self.db.get(CartModel, cart_id)

    @storage_guard
    def get_cart_items(self, cart_id: str) -> List[CartItemModel]:
        stmt = (
            select(CartItemModel)
            .where(CartItemModel.cart_id == cart_id)
            .order_by(CartItemModel.created_at, CartItemModel.id)
        )
        return list(self.db.execute(stmt).scalars().all())

    @storage_guard
    def get_cart_item(self, cart_id: str, item_id: str) -> CartItemModel | None:
        stmt = select(CartItemModel).where(
            CartItemModel.cart_id == cart_id,
            CartItemModel.id == item_id,
        )
        return self.db.execute(stmt).scalar_one_or_none()

    @storage_guard
    def find_line(self, cart_id: str, product_id: str, variant_id: str | None) -> CartItemModel | None:
        variant_clause = (
            CartItemModel.variant_id.is_(None)
            if variant_id is None
            else CartItemModel.variant_id == variant_id
        )
        stmt = select(CartItemModel).where(
            CartItemModel.cart_id == cart_id,
            CartItemModel.product_id == product_id,
            variant_clause,
        )
        return self.db.execute(stmt).scalar_one_or_none()

    @storage_guard
    def count_items(self, cart_id: str) -> int:
        stmt = select(func.count(CartItemModel.id)).where(CartItemModel.cart_id == cart_id)
        return self.db.execute(stmt).scalar_one()

    @storage_guard
    def current_version(self, cart_id: str) -> int | None:
        """Wersja aktywnego, niewygaslego koszyka, None jesli nie jest juz osiagalny."""
        stmt = select(CartModel.version).where(
            CartModel.id == cart_id,
            CartModel.status == CartStatus.ACTIVE.value,
            or_(CartModel.expires_at.is_(None), CartModel.expires_at > _utcnow()),
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def get_with_items(self, owner: OwnerKey) -> Tuple[CartModel, List[CartItemModel]] | None:
        cart = self.find_by_owner(owner)
        if not cart:
            return None
        return cart, self.get_cart_items(cart.id)

    # =====================================================
    # COMMANDS (flush, bez commit)
    # =====================================================
    @storage_guard
    def create(self, owner: OwnerKey, currency: str, expires_at: datetime | None = None) -> CartModel:
        # stary, przeterminowany ACTIVE trzyma jeszcze active_owner
        self.db.execute(
            update(CartModel)
            .where(
                CartModel.active_owner == str(owner),
                and_(CartModel.expires_at.is_not(None), CartModel.expires_at <= _utcnow()),
            )
            .values(
                status=CartStatus.EXPIRED.value,
                active_owner=None,
                version=CartModel.version + 1,
            )
            .execution_options(synchronize_session=False)
        )

        cart = CartModel(
            owner_kind=owner.kind.value,
            owner_id=owner.value,
            active_owner=str(owner),
            status=CartStatus.ACTIVE.value,
            version=1,
            currency=currency,
            applied_coupons=[],
            expires_at=expires_at,
        )
        self.db.add(cart)
        try:
            self.db.flush()
        except IntegrityError as e:
            # rownolegly request utworzyl juz koszyk dla tego ownera
            self.db.rollback()
            raise CartVersionConflict(f"Active cart for {owner} created concurrently") from e

        logger.info(f"Created cart {cart.id} for {owner}")
        return cart

    @storage_guard
    def add_item(self, cart: CartModel, item: CartItemModel) -> CartItemModel:
        """Fold: ta sama para (product, variant) zwieksza ilosc zamiast duplikowac linie."""
        existing = self.find_line(cart.id, item.product_id, item.variant_id)

        if existing:
            existing.quantity += item.quantity
            for field in _SNAPSHOT_FIELDS:
                value = getattr(item, field)
                if value is not None:
                    setattr(existing, field, value)
            self.db.flush()
            return existing

        item.cart_id = cart.id
        self.db.add(item)
        self.db.flush()
        return item

    @storage_guard
    def update_item_quantity(self, item: CartItemModel, quantity: int) -> CartItemModel:
        item.quantity = quantity
        self.db.flush()
        return item

    @storage_guard
    def remove_item(self, item: CartItemModel) -> None:
        self.db.delete(item)
        self.db.flush()

    @storage_guard
    def clear(self, cart: CartModel) -> None:
        self.db.execute(
            delete(CartItemModel)
            .where(CartItemModel.cart_id == cart.id)
            .execution_options(synchronize_session="fetch")
        )
        self.db.flush()

    @storage_guard
    def transition(self, cart: CartModel, status: CartStatus) -> None:
        """Zmiana statusu z ACTIVE na terminalny, z warunkiem na wersje."""
        self.update_cart_version(
            cart,
            {
                "status": status.value,
                "active_owner": None,
            },
        )

    # =====================================================
    # COMMIT
    # =====================================================
    @storage_guard
    def commit_cart(self, cart: CartModel, lenient_coupons: bool = False, **changes: Any) -> CartModel:
        """
        Przelicza sumy z aktualnych linii i zapisuje wszystko jednym commitem.
        changes: pola koszyka (applied_coupons, expires_at, currency, notes).
        lenient_coupons: patrz PricingEngine.
        """
        items = self.get_cart_items(cart.id)
        coupons = sorted(set(changes.pop("applied_coupons", cart.applied_coupons) or []))

        # pusty koszyk: zera i brak kuponow
        if not items:
            coupons = []

        totals = self.pricing.compute(items, coupons, lenient_coupons)
        values = dict(changes)
        values.update(totals._asdict())
        values["applied_coupons"] = coupons

        self.update_cart_version(cart, values)
        self.db.commit()
        return cart

    def update_cart_version(self, cart: CartModel, new_data: dict) -> None:
        # Optimistic locking
        # np w bazie update set version 2 where id 1 and version 1
        old_version = cart.version
        values = dict(new_data)
        values["version"] = old_version + 1
        values["updated_at"] = _utcnow()

        result = self.db.execute(
            update(CartModel)
            .where(CartModel.id == cart.id, CartModel.version == old_version)
            .values(**values)
            .execution_options(synchronize_session=False)
        )

        if result.rowcount == 0:
            self.db.rollback()
            raise CartVersionConflict(
                f"Cart {cart.id} was modified concurrently (expected version {old_version})"
            )

        #synchronize_session=False, wiec odswiezamy obiekt recznie
        for key, value in values.items():
            set_committed_value(cart, key, value)

    # =====================================================
    # EXPIRY
    # =====================================================
    @storage_guard
    def expire_stale_carts(self, now: datetime | None = None) -> List[Tuple[str, str, str]]:
        """ACTIVE po expires_at -> EXPIRED. Zwraca (cart_id, owner_kind, owner_id)."""
        now = now or _utcnow()
        stmt = select(CartModel).where(
            CartModel.status == CartStatus.ACTIVE.value,
            CartModel.expires_at.is_not(None),
            CartModel.expires_at < now,
        )
        carts = list(self.db.execute(stmt).scalars().all())

        expired = []
        for cart in carts:
            try:
                self.transition(cart, CartStatus.EXPIRED)
            except CartVersionConflict:
                # ktos wlasnie go zmodyfikowal - sprobujemy w nastepnym przebiegu
                logger.info(f"Skipping cart {cart.id}, modified during expiry sweep")
                continue
            self.db.commit()
            expired.append((cart.id, cart.owner_kind, cart.owner_id))

        return expired

    def commit(self) -> None:
        self.db.commit()

    def rollback(self) -> None:
        self.db.rollback()
