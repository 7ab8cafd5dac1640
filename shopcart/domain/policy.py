# shopcart/domain/policy.py
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from shopcart.domain.errors import InvalidQuantity, LimitExceeded
from shopcart.utils.settings import Settings

CENT = Decimal("0.01")


def round_money(amount: Decimal) -> Decimal:
    return Decimal(amount).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class CartPolicy:
    """
    Reguly liczbowe i biznesowe koszyka.
    Bez stanu, wszystkie progi wstrzykniete z Settings przy starcie.
    """

    tax_rate: Decimal
    free_shipping_threshold: Decimal
    shipping_cost: Decimal
    max_cart_items: int
    max_item_quantity: int
    default_currency: str

    @classmethod
    def from_settings(cls, settings: Settings) -> "CartPolicy":
        return cls(
            tax_rate=settings.TAX_RATE,
            free_shipping_threshold=settings.FREE_SHIPPING_THRESHOLD,
            shipping_cost=round_money(settings.SHIPPING_COST),
            max_cart_items=settings.MAX_CART_ITEMS,
            max_item_quantity=settings.MAX_ITEM_QUANTITY,
            default_currency=settings.DEFAULT_CURRENCY,
        )

    def clamp_quantity(self, requested: int) -> int:
        if requested < 1:
            raise InvalidQuantity(
                "Quantity must be at least 1", field="quantity", value=requested
            )
        if requested > self.max_item_quantity:
            raise LimitExceeded(
                f"Quantity may not exceed {self.max_item_quantity}",
                field="quantity",
                value=requested,
                limit=self.max_item_quantity,
            )
        return requested

    def check_cart_size(self, current_item_count: int, adding: int) -> None:
        #liczymy linie, nie sztuki
        if current_item_count + adding > self.max_cart_items:
            raise LimitExceeded(
                f"Cart may not hold more than {self.max_cart_items} items",
                field="items",
                value=current_item_count + adding,
                limit=self.max_cart_items,
            )

    def compute_shipping(self, subtotal: Decimal) -> Decimal:
        if subtotal >= self.free_shipping_threshold:
            return round_money(Decimal("0"))
        return self.shipping_cost

    def compute_tax(self, taxable_amount: Decimal) -> Decimal:
        return round_money(taxable_amount * self.tax_rate)
