# shopcart/domain/schemas.py
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List

from pydantic import BaseModel, ConfigDict, Field

ZERO = Decimal("0.00")


class CartStatus(str, Enum):
    ACTIVE = "ACTIVE"
    MERGED = "MERGED"
    EXPIRED = "EXPIRED"
    CONVERTED = "CONVERTED"


class OwnerKind(str, Enum):
    USER = "user"
    SESSION = "session"


class OwnerKey(BaseModel):
    """Tozsamosc do ktorej przypiety jest koszyk: user_id albo session_id."""

    kind: OwnerKind
    value: str = Field(..., min_length=1, max_length=128)

    model_config = ConfigDict(frozen=True)

    @classmethod
    def user(cls, user_id: str) -> "OwnerKey":
        return cls(kind=OwnerKind.USER, value=str(user_id))

    @classmethod
    def session(cls, session_id: str) -> "OwnerKey":
        return cls(kind=OwnerKind.SESSION, value=str(session_id))

    @property
    def is_guest(self) -> bool:
        return self.kind == OwnerKind.SESSION

    @property
    def cache_key(self) -> str:
        return f"cart:{self.kind.value}:{self.value}"

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.value}"


# =====================================================
# KONTRAKTY KOLABORANTOW
# =====================================================
class ProductInfo(BaseModel):
    """Odpowiedz product-service, z tego robimy snapshot linii."""

    product_id: str
    variant_id: str | None = None
    name: str
    sku: str | None = None
    image: str | None = None
    price: Decimal = Field(..., ge=0)
    compare_price: Decimal | None = None
    currency: str | None = None
    is_active: bool = True


class Availability(BaseModel):
    available: bool
    current_stock: int = Field(..., ge=0)


# =====================================================
# INPUT
# =====================================================
class ItemIn(BaseModel):
    """Schema dla dodawania produktu do koszyka."""

    product_id: str = Field(..., min_length=1, description="ID produktu")
    variant_id: str | None = Field(None, description="ID wariantu")
    quantity: int = Field(..., description="Ilosc produktu")


class QuantityIn(BaseModel):
    quantity: int = Field(..., description="Nowa ilosc, 0 usuwa linie")


class CouponIn(BaseModel):
    code: str = Field(..., min_length=1, max_length=64)


class MergeIn(BaseModel):
    session_id: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1)


class NotesIn(BaseModel):
    notes: str | None = None


# =====================================================
# OUTPUT
# =====================================================
class CartItemOut(BaseModel):
    id: str
    product_id: str
    variant_id: str | None = None
    name: str
    sku: str | None = None
    image: str | None = None
    quantity: int
    price: Decimal
    compare_price: Decimal | None = None
    line_total: Decimal

    model_config = ConfigDict(from_attributes=True)


class CartOut(BaseModel):
    """
    Pelny, autorytatywny snapshot koszyka.
    Zwracany przez kazda komende, trzymany tez w cache.
    id == None oznacza pusty wirtualny koszyk (nic nie zapisano).
    """

    id: str | None = None
    user_id: str | None = None
    session_id: str | None = None
    status: CartStatus = CartStatus.ACTIVE
    currency: str
    items: List[CartItemOut] = Field(default_factory=list)
    applied_coupons: List[str] = Field(default_factory=list)
    subtotal: Decimal = ZERO
    tax_amount: Decimal = ZERO
    discount_amount: Decimal = ZERO
    shipping_amount: Decimal = ZERO
    total_amount: Decimal = ZERO
    notes: str | None = None
    version: int = 0
    expires_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def item_count(self) -> int:
        return len(self.items)

    @property
    def total_quantity(self) -> int:
        return sum(i.quantity for i in self.items)


class CartSummary(BaseModel):
    item_count: int
    total_quantity: int
    subtotal: Decimal
    tax_amount: Decimal
    discount_amount: Decimal
    shipping_amount: Decimal
    total_amount: Decimal
    currency: str


class DroppedLine(BaseModel):
    product_id: str
    variant_id: str | None = None
    quantity: int
    reason: str


class MergeResult(BaseModel):
    cart: CartOut
    merged_lines: int = 0
    dropped_lines: List[DroppedLine] = Field(default_factory=list)


class ValidationIssue(BaseModel):
    item_id: str
    product_id: str
    issue: str
    detail: str | None = None


class CartValidation(BaseModel):
    is_valid: bool
    issues: List[ValidationIssue] = Field(default_factory=list)
