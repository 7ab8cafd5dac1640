# shopcart/services/cart_service.py
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Protocol, Tuple, TypeVar

from sqlalchemy.orm import Session
from tenacity import RetryError

from shopcart.data.models.cart import CartModel
from shopcart.data.models.cart_item import CartItemModel
from shopcart.domain.errors import (
    CacheUnavailable,
    CartItemNotFound,
    CartNotActive,
    CartNotFound,
    ConflictRetryExhausted,
    CouponInvalid,
    CurrencyMismatch,
    LimitExceeded,
    OutOfStock,
    ProductUnavailable,
    ValidationFailed,
)
from shopcart.domain.policy import CartPolicy
from shopcart.domain.pricing import CouponEvaluator, PricingEngine
from shopcart.domain.schemas import (
    Availability,
    CartItemOut,
    CartOut,
    CartStatus,
    CartSummary,
    CartValidation,
    DroppedLine,
    MergeResult,
    OwnerKey,
    OwnerKind,
    ProductInfo,
    ValidationIssue,
)
from shopcart.repos.cart_repo import CartRepo
from shopcart.services.cache_service import CartCache
from shopcart.services.coupon_validator import normalize_code
from shopcart.utils.logging import get_logger
from shopcart.utils.retry import conflict_retry
from shopcart.utils.settings import Settings

logger = get_logger(__name__)

T = TypeVar("T")

MAX_NOTES_LENGTH = 1000


class ProductProvider(Protocol):
    def fetch_product(self, product_id: str, variant_id: str | None = None) -> ProductInfo: ...

    def check_availability(
        self, product_id: str, quantity: int, variant_id: str | None = None
    ) -> Availability: ...


class CartService:
    """
    Cart engine: jedyny punkt wejscia dla callerow.

    Komendy (add, update, remove, clear, coupons, merge, convert):
    validate -> recompute -> persist -> invalidate, calosc albo nic.
    Serializacja per koszyk przez optimistic locking (version) z retry.
    Query (get, summary, validate) nigdy nie tworza koszyka.
    """

    def __init__(
        self,
        db: Session,
        product_client: ProductProvider,
        settings: Settings,
        cache: CartCache | None = None,
        coupon_validator: CouponEvaluator | None = None,
    ):
        self.settings = settings
        self.policy = CartPolicy.from_settings(settings)
        self.pricing = PricingEngine(self.policy, coupon_validator)
        self.repo = CartRepo(db, self.pricing)
        self.product_client = product_client
        self.cache = cache
        self.coupon_validator = coupon_validator

    # =====================================================
    # QUERY
    # =====================================================
    def get_cart(self, owner: OwnerKey) -> CartOut:
        """
        Use Case: Pobranie koszyka (Query).
        Cache first, miss -> store -> populate. Brak koszyka -> pusty wirtualny.
        Hit jest sprawdzany tanim SELECT version, wiec nieudany invalidate
        albo wygasly koszyk nigdy nie zwroca starych sum.
        """
        cached = self._cache_get(owner)
        if cached is not None:
            if self._is_current(cached):
                return cached
            logger.info(f"Cached cart for {owner} is stale, reloading from store")
            self._invalidate(owner)

        generation = self._cache_generation(owner)
        found = self.repo.get_with_items(owner)
        if not found:
            return self._empty_cart(owner)

        snapshot = self._snapshot(*found)
        if generation is not None:
            self._cache_set(owner, snapshot, generation)
        return snapshot

    def get_cart_summary(self, owner: OwnerKey) -> CartSummary:
        cart = self.get_cart(owner)
        return CartSummary(
            item_count=cart.item_count,
            total_quantity=cart.total_quantity,
            subtotal=cart.subtotal,
            tax_amount=cart.tax_amount,
            discount_amount=cart.discount_amount,
            shipping_amount=cart.shipping_amount,
            total_amount=cart.total_amount,
            currency=cart.currency,
        )

    def validate_cart(self, owner: OwnerKey) -> CartValidation:
        """
        Use Case: Sprawdzenie koszyka wzgledem product-service (Query).
        Raportuje problemy, niczego nie zmienia.
        """
        cart = self.get_cart(owner)
        issues: List[ValidationIssue] = []

        for item in cart.items:
            try:
                product = self.product_client.fetch_product(item.product_id, item.variant_id)
            except ProductUnavailable:
                issues.append(ValidationIssue(item_id=item.id, product_id=item.product_id, issue="product_unavailable"))
                continue

            if not product.is_active:
                issues.append(ValidationIssue(item_id=item.id, product_id=item.product_id, issue="product_unavailable"))
                continue

            if product.price != item.price:
                issues.append(
                    ValidationIssue(
                        item_id=item.id,
                        product_id=item.product_id,
                        issue="price_changed",
                        detail=f"{item.price} -> {product.price}",
                    )
                )

            availability = self.product_client.check_availability(item.product_id, item.quantity, item.variant_id)
            if not availability.available:
                issues.append(
                    ValidationIssue(
                        item_id=item.id,
                        product_id=item.product_id,
                        issue="insufficient_stock",
                        detail=f"requested {item.quantity}, in stock {availability.current_stock}",
                    )
                )

        return CartValidation(is_valid=not issues, issues=issues)

    # =====================================================
    # COMMANDS
    # =====================================================
    def add_item(
        self,
        owner: OwnerKey,
        product_id: str,
        quantity: int,
        variant_id: str | None = None,
    ) -> CartOut:
        """
        Use Case: Dodanie produktu do koszyka (Command).

        Walidacja:
        - quantity w limitach policy
        - produkt istnieje i jest aktywny w product-service
        - fold z istniejaca linia albo limit linii w koszyku
        - stan magazynu dla wynikowej ilosci linii
        Koszyk tworzony leniwie, dopiero tutaj.
        """
        self.policy.clamp_quantity(quantity)

        logger.info(f"Fetching product {product_id} from product-service")
        product = self.product_client.fetch_product(product_id, variant_id)
        if not product.is_active:
            raise ProductUnavailable("Product is not available for sale", product_id=product_id)

        def attempt() -> CartModel:
            cart = self.repo.find_by_owner(owner)
            currency = product.currency or (cart.currency if cart else self.policy.default_currency)

            line = None
            if cart:
                line = self.repo.find_line(cart.id, product_id, variant_id)
                line_count = self.repo.count_items(cart.id)
                if line_count and cart.currency != currency:
                    raise CurrencyMismatch(
                        "Cart currency cannot change once it has items",
                        field="currency",
                        value=currency,
                        cart_currency=cart.currency,
                    )
                if not line:
                    self.policy.check_cart_size(line_count, 1)

            target = self.policy.clamp_quantity(line.quantity + quantity) if line else quantity
            self._check_stock(product_id, variant_id, target)

            if not cart:
                cart = self.repo.create(owner, currency=currency, expires_at=self._expiry(owner))

            self.repo.add_item(
                cart,
                CartItemModel(
                    product_id=product_id,
                    variant_id=variant_id,
                    name=product.name,
                    sku=product.sku,
                    image=product.image,
                    quantity=quantity,
                    price=product.price,
                    compare_price=product.compare_price,
                ),
            )
            return self.repo.commit_cart(cart, currency=currency, expires_at=self._expiry(owner))

        cart = self._run("add_item", attempt)
        logger.info(f"Product {product_id} x{quantity} added to cart {cart.id} for {owner}")
        return self._after_write(cart, owner)

    def update_item_quantity(self, owner: OwnerKey, item_id: str, quantity: int) -> CartOut:
        """
        Use Case: Zmiana ilosci linii (Command).
        quantity == 0 dziala jak remove_item.
        """
        if quantity == 0:
            return self.remove_item(owner, item_id)

        self.policy.clamp_quantity(quantity)

        def attempt() -> CartModel:
            cart = self._require_cart(owner)
            item = self._require_item(cart, item_id)
            self._check_stock(item.product_id, item.variant_id, quantity)
            self.repo.update_item_quantity(item, quantity)
            return self.repo.commit_cart(cart, lenient_coupons=True, expires_at=self._expiry(owner))

        cart = self._run("update_item_quantity", attempt)
        logger.info(f"Item {item_id} in cart {cart.id} set to quantity {quantity}")
        return self._after_write(cart, owner)

    def remove_item(self, owner: OwnerKey, item_id: str) -> CartOut:
        def attempt() -> CartModel:
            cart = self._require_cart(owner)
            item = self._require_item(cart, item_id)
            self.repo.remove_item(item)
            return self.repo.commit_cart(cart, lenient_coupons=True, expires_at=self._expiry(owner))

        cart = self._run("remove_item", attempt)
        logger.info(f"Item {item_id} removed from cart {cart.id}")
        return self._after_write(cart, owner)

    def clear_cart(self, owner: OwnerKey) -> CartOut:
        """Use Case: Wyczyszczenie koszyka, zera w sumach i brak kuponow."""

        def attempt() -> CartModel | None:
            cart = self.repo.find_by_owner(owner)
            if not cart:
                return None
            self.repo.clear(cart)
            return self.repo.commit_cart(cart, applied_coupons=[], expires_at=self._expiry(owner))

        cart = self._run("clear_cart", attempt)
        if cart is None:
            return self._empty_cart(owner)

        logger.info(f"Cart {cart.id} cleared for {owner}")
        return self._after_write(cart, owner)

    def apply_coupon(self, owner: OwnerKey, code: str) -> CartOut:
        """
        Use Case: Dodanie kuponu (Command).
        Semantyka zbioru - ponowne dodanie tego samego kodu to no-op.
        """
        code = normalize_code(code)
        if not code:
            raise CouponInvalid("Coupon code is empty", field="code", value=code)
        if self.coupon_validator is None:
            raise CouponInvalid("Coupons are not accepted", field="code", value=code)

        def attempt() -> Tuple[CartModel, bool]:
            cart = self._require_cart(owner)
            if code in (cart.applied_coupons or []):
                return cart, False

            items = self.repo.get_cart_items(cart.id)
            if not items:
                raise CouponInvalid("Cannot apply a coupon to an empty cart", field="code", value=code)

            subtotal = self.pricing.compute(items).subtotal
            if self.coupon_validator.evaluate(code, subtotal) is None:
                raise CouponInvalid(
                    "Coupon is not valid for this cart", field="code", value=code, subtotal=str(subtotal)
                )

            coupons = [*(cart.applied_coupons or []), code]
            return self.repo.commit_cart(cart, applied_coupons=coupons, expires_at=self._expiry(owner)), True

        cart, changed = self._run("apply_coupon", attempt)
        if not changed:
            return self._load_snapshot(cart)

        logger.info(f"Coupon {code} applied to cart {cart.id}")
        return self._after_write(cart, owner)

    def remove_coupon(self, owner: OwnerKey, code: str) -> CartOut:
        code = normalize_code(code)

        def attempt() -> Tuple[CartModel, bool]:
            cart = self._require_cart(owner)
            coupons = list(cart.applied_coupons or [])
            if code not in coupons:
                return cart, False
            coupons.remove(code)
            cart = self.repo.commit_cart(
                cart,
                lenient_coupons=True,
                applied_coupons=coupons,
                expires_at=self._expiry(owner),
            )
            return cart, True

        cart, changed = self._run("remove_coupon", attempt)
        if not changed:
            return self._load_snapshot(cart)

        logger.info(f"Coupon {code} removed from cart {cart.id}")
        return self._after_write(cart, owner)

    def update_notes(self, owner: OwnerKey, notes: str | None) -> CartOut:
        if notes is not None and len(notes) > MAX_NOTES_LENGTH:
            raise ValidationFailed(
                f"Notes may not exceed {MAX_NOTES_LENGTH} characters", field="notes", limit=MAX_NOTES_LENGTH
            )

        def attempt() -> CartModel:
            cart = self._require_cart(owner)
            return self.repo.commit_cart(cart, notes=notes, expires_at=self._expiry(owner))

        cart = self._run("update_notes", attempt)
        return self._after_write(cart, owner)

    def merge_guest_cart(self, session_id: str, user_id: str) -> MergeResult:
        """
        Use Case: Przeniesienie koszyka goscia do koszyka usera przy logowaniu.

        - kazda linia goscia foldowana jak w add_item
        - linia ktora przekroczylaby limity albo stan magazynu jest pomijana
          w calosci i raportowana w dropped_lines
        - kupony: suma zbiorow
        - koszyk goscia -> MERGED, jedno przeliczenie koszyka usera
        """
        guest_owner = OwnerKey.session(session_id)
        user_owner = OwnerKey.user(user_id)

        def attempt() -> Tuple[CartModel | None, int, List[DroppedLine]]:
            guest = self.repo.find_by_owner(guest_owner)
            if not guest:
                return None, 0, []

            guest_items = self.repo.get_cart_items(guest.id)
            user_cart = self.repo.find_by_owner(user_owner)

            if not guest_items and not guest.applied_coupons:
                self.repo.transition(guest, CartStatus.MERGED)
                self.repo.commit()
                return user_cart, 0, []

            if user_cart is None:
                user_cart = self.repo.create(user_owner, currency=guest.currency, expires_at=self._expiry(user_owner))

            line_count = self.repo.count_items(user_cart.id)
            currency_locked = line_count > 0 and user_cart.currency != guest.currency
            currency = user_cart.currency if line_count else guest.currency

            merged = 0
            dropped: List[DroppedLine] = []
            for line in guest_items:
                reason = None
                existing = None
                if currency_locked:
                    reason = "currency_mismatch"
                else:
                    existing = self.repo.find_line(user_cart.id, line.product_id, line.variant_id)
                    reason = self._merge_rejection(line, existing, line_count)

                if reason:
                    dropped.append(
                        DroppedLine(
                            product_id=line.product_id,
                            variant_id=line.variant_id,
                            quantity=line.quantity,
                            reason=reason,
                        )
                    )
                    continue

                if existing:
                    # zostaje snapshot usera, zmienia sie tylko ilosc
                    self.repo.update_item_quantity(existing, existing.quantity + line.quantity)
                else:
                    self.repo.add_item(user_cart, self._copy_line(line))
                    line_count += 1
                merged += 1

            coupons = sorted(set(user_cart.applied_coupons or []) | set(guest.applied_coupons or []))
            self.repo.transition(guest, CartStatus.MERGED)
            self.repo.commit_cart(
                user_cart,
                applied_coupons=coupons,
                currency=currency,
                expires_at=self._expiry(user_owner),
            )
            return user_cart, merged, dropped

        user_cart, merged, dropped = self._run("merge_guest_cart", attempt)
        self._invalidate(guest_owner, user_owner)

        if user_cart is None:
            return MergeResult(cart=self.get_cart(user_owner))

        for line in dropped:
            logger.warning(
                f"Guest line {line.product_id} x{line.quantity} not merged into cart {user_cart.id}: {line.reason}"
            )
        logger.info(f"Guest cart {guest_owner} merged into cart {user_cart.id}, {merged} lines folded")
        return MergeResult(cart=self._load_snapshot(user_cart), merged_lines=merged, dropped_lines=dropped)

    def convert_cart(self, owner: OwnerKey) -> CartOut:
        """
        Use Case: Przekazanie koszyka do zamowienia (Command).
        ACTIVE -> CONVERTED, pusty koszyk nie moze byc skonwertowany.
        """

        def attempt() -> CartModel:
            cart = self._require_cart(owner)
            if not self.repo.count_items(cart.id):
                raise CartNotActive("Cannot convert an empty cart", cart_id=cart.id)
            self.repo.transition(cart, CartStatus.CONVERTED)
            self.repo.commit()
            return cart

        cart = self._run("convert_cart", attempt)
        logger.info(f"Cart {cart.id} converted")
        self._invalidate(owner)
        return self._load_snapshot(cart)

    # =====================================================
    # HELPERS
    # =====================================================
    def _run(self, operation: str, attempt: Callable[[], T]) -> T:
        """Jedna logiczna operacja: retry na konflikt wersji, rollback na kazdy blad."""
        try:
            for retrying in conflict_retry(self.settings.CONFLICT_MAX_RETRIES):
                with retrying:
                    try:
                        return attempt()
                    except Exception:
                        self.repo.rollback()
                        raise
        except RetryError as e:
            logger.error(f"{operation}: gave up after {self.settings.CONFLICT_MAX_RETRIES} version conflicts")
            raise ConflictRetryExhausted(
                "Cart was modified concurrently, please retry",
                operation=operation,
                attempts=self.settings.CONFLICT_MAX_RETRIES,
            ) from e

    def _check_stock(self, product_id: str, variant_id: str | None, quantity: int) -> None:
        availability = self.product_client.check_availability(product_id, quantity, variant_id)
        if not availability.available:
            raise OutOfStock(
                "Requested quantity is not in stock",
                field="quantity",
                product_id=product_id,
                value=quantity,
                available=availability.current_stock,
            )

    def _merge_rejection(self, line: CartItemModel, existing: CartItemModel | None, line_count: int) -> str | None:
        target = line.quantity + (existing.quantity if existing else 0)
        try:
            self.policy.clamp_quantity(target)
            if not existing:
                self.policy.check_cart_size(line_count, 1)
        except LimitExceeded as e:
            return "quantity_limit" if e.details.get("field") == "quantity" else "cart_size_limit"

        availability = self.product_client.check_availability(line.product_id, target, line.variant_id)
        if not availability.available:
            return "out_of_stock"
        return None

    @staticmethod
    def _copy_line(line: CartItemModel) -> CartItemModel:
        return CartItemModel(
            product_id=line.product_id,
            variant_id=line.variant_id,
            name=line.name,
            sku=line.sku,
            image=line.image,
            quantity=line.quantity,
            price=line.price,
            compare_price=line.compare_price,
        )

    def _require_cart(self, owner: OwnerKey) -> CartModel:
        cart = self.repo.find_by_owner(owner)
        if not cart:
            raise CartNotFound("No active cart", owner=str(owner))
        return cart

    def _require_item(self, cart: CartModel, item_id: str) -> CartItemModel:
        item = self.repo.get_cart_item(cart.id, item_id)
        if not item:
            raise CartItemNotFound("Item not found in cart", item_id=item_id)
        return item

    def _expiry(self, owner: OwnerKey) -> datetime:
        #kazda akcja przedluza waznosc koszyka o TTL ownera
        ttl = self.settings.SESSION_TTL if owner.is_guest else self.settings.CART_TTL
        return datetime.now(timezone.utc) + timedelta(seconds=ttl)

    def _after_write(self, cart: CartModel, owner: OwnerKey) -> CartOut:
        self._invalidate(owner)
        return self._load_snapshot(cart)

    def _load_snapshot(self, cart: CartModel) -> CartOut:
        return self._snapshot(cart, self.repo.get_cart_items(cart.id))

    def _snapshot(self, cart: CartModel, items: List[CartItemModel]) -> CartOut:
        is_user = cart.owner_kind == OwnerKind.USER.value
        return CartOut(
            id=cart.id,
            user_id=cart.owner_id if is_user else None,
            session_id=None if is_user else cart.owner_id,
            status=CartStatus(cart.status),
            currency=cart.currency,
            items=[
                CartItemOut(
                    id=i.id,
                    product_id=i.product_id,
                    variant_id=i.variant_id,
                    name=i.name,
                    sku=i.sku,
                    image=i.image,
                    quantity=i.quantity,
                    price=i.price,
                    compare_price=i.compare_price,
                    line_total=self.pricing.line_total(i),
                )
                for i in items
            ],
            applied_coupons=sorted(cart.applied_coupons or []),
            subtotal=cart.subtotal,
            tax_amount=cart.tax_amount,
            discount_amount=cart.discount_amount,
            shipping_amount=cart.shipping_amount,
            total_amount=cart.total_amount,
            notes=cart.notes,
            version=cart.version,
            expires_at=cart.expires_at,
            created_at=cart.created_at,
            updated_at=cart.updated_at,
        )

    def _empty_cart(self, owner: OwnerKey) -> CartOut:
        return CartOut(
            user_id=None if owner.is_guest else owner.value,
            session_id=owner.value if owner.is_guest else None,
            currency=self.policy.default_currency,
        )

    # cache nigdy nie jest twarda zaleznoscia - kazdy blad to log + store
    def _cache_get(self, owner: OwnerKey) -> CartOut | None:
        if self.cache is None:
            return None
        try:
            return self.cache.get(owner)
        except CacheUnavailable as e:
            logger.warning(f"Cache unavailable on read for {owner}, falling back to store: {e}")
            return None

    def _is_current(self, snapshot: CartOut) -> bool:
        if snapshot.id is None:
            return False
        return self.repo.current_version(snapshot.id) == snapshot.version

    def _cache_generation(self, owner: OwnerKey) -> str | None:
        if self.cache is None:
            return None
        try:
            return self.cache.generation(owner)
        except CacheUnavailable as e:
            logger.warning(f"Cache unavailable on read for {owner}: {e}")
            return None

    def _cache_set(self, owner: OwnerKey, snapshot: CartOut, generation: str) -> None:
        try:
            self.cache.set(owner, snapshot, generation)
        except CacheUnavailable as e:
            logger.warning(f"Cache unavailable, snapshot for {owner} not cached: {e}")

    def _invalidate(self, *owners: OwnerKey) -> None:
        if self.cache is None:
            return
        for owner in owners:
            try:
                self.cache.invalidate(owner)
            except CacheUnavailable as e:
                logger.error(f"Cache invalidation failed for {owner}: {e}")
