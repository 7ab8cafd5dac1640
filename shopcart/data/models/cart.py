# shopcart/data/models/cart.py
import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, Integer, Numeric, String, Text
from sqlalchemy.orm import relationship

from shopcart.data.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CartModel(Base):
    __tablename__ = "carts"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    owner_kind = Column(String(16), nullable=False)
    owner_id = Column(String(128), nullable=False, index=True)
    #ustawione tylko dla ACTIVE, unique pilnuje jednego aktywnego koszyka na ownera
    #(NULL nie koliduje w unique constraint)
    active_owner = Column(String(160), unique=True, nullable=True)

    status = Column(String(16), nullable=False, default="ACTIVE")
    version = Column(Integer, nullable=False, default=1)
    currency = Column(String(3), nullable=False)

    subtotal = Column(Numeric(12, 2), nullable=False, default=0)
    tax_amount = Column(Numeric(12, 2), nullable=False, default=0)
    discount_amount = Column(Numeric(12, 2), nullable=False, default=0)
    shipping_amount = Column(Numeric(12, 2), nullable=False, default=0)
    total_amount = Column(Numeric(12, 2), nullable=False, default=0)

    applied_coupons = Column(JSON, nullable=False, default=list)
    notes = Column(Text, nullable=True)

    expires_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    items = relationship(
        "CartItemModel",
        back_populates="cart",
        cascade="all, delete-orphan",
        order_by="CartItemModel.created_at",
    )
