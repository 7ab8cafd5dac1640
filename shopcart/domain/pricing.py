# shopcart/domain/pricing.py
from decimal import Decimal
from typing import Iterable, NamedTuple, Protocol

from shopcart.domain.errors import CouponCheckFailed
from shopcart.domain.policy import CartPolicy, round_money
from shopcart.utils.logging import get_logger

logger = get_logger(__name__)


class PricedLine(Protocol):
    price: Decimal
    quantity: int


class CouponEvaluator(Protocol):
    def evaluate(self, code: str, subtotal: Decimal) -> Decimal | None: ...


class PricingTotals(NamedTuple):
    subtotal: Decimal
    tax_amount: Decimal
    discount_amount: Decimal
    shipping_amount: Decimal
    total_amount: Decimal


ZERO_TOTALS = PricingTotals(*(round_money(Decimal("0")),) * 5)


class PricingEngine:
    """
    Przelicza sumy koszyka z linii i kuponow.

    1. subtotal = suma zaokraglonych linii (price * quantity)
    2. discount = suma efektow kuponow, max subtotal
    3. taxable = subtotal - discount
    4. tax = policy.compute_tax(taxable)
    5. shipping = policy.compute_shipping(subtotal), przed rabatem
    6. total = taxable + tax + shipping, min 0

    Idempotentne: te same wejscia daja identyczne Decimale.
    lenient_coupons: niedostepny coupon-service liczony jako 0 zamiast bledu
    (usuwanie i zmniejszanie linii nie moze zalezec od zewnetrznego serwisu).
    """

    def __init__(self, policy: CartPolicy, coupon_validator: CouponEvaluator | None = None):
        self.policy = policy
        self.coupon_validator = coupon_validator

    def line_total(self, line: PricedLine) -> Decimal:
        return round_money(Decimal(line.price) * line.quantity)

    def compute(
        self,
        items: Iterable[PricedLine],
        coupons: Iterable[str] = (),
        lenient_coupons: bool = False,
    ) -> PricingTotals:
        items = list(items)
        if not items:
            return ZERO_TOTALS

        subtotal = round_money(sum((self.line_total(i) for i in items), Decimal("0")))
        discount = self.compute_discount(subtotal, coupons, lenient_coupons)

        taxable = subtotal - discount
        tax = self.policy.compute_tax(taxable)
        # wysylka liczona od subtotal PRZED rabatem
        shipping = self.policy.compute_shipping(subtotal)
        total = max(taxable + tax + shipping, Decimal("0"))

        return PricingTotals(
            subtotal=subtotal,
            tax_amount=tax,
            discount_amount=discount,
            shipping_amount=shipping,
            total_amount=round_money(total),
        )

    def compute_discount(self, subtotal: Decimal, coupons: Iterable[str], lenient_coupons: bool = False) -> Decimal:
        codes = sorted(set(coupons))
        if not codes or self.coupon_validator is None:
            return round_money(Decimal("0"))

        discount = Decimal("0")
        for code in codes:
            try:
                effect = self.coupon_validator.evaluate(code, subtotal)
            except CouponCheckFailed as e:
                if not lenient_coupons:
                    raise
                logger.warning(f"Coupon {code} could not be checked, counted as 0: {e}")
                continue
            if effect is None:
                logger.warning(f"Coupon {code} no longer qualifies for subtotal {subtotal}")
                continue
            discount += round_money(max(effect, Decimal("0")))

        return round_money(min(discount, subtotal))
