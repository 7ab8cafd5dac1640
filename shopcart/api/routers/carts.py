# shopcart/api/routers/carts.py
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session

from shopcart.data.database import get_db
from shopcart.domain.schemas import (
    CartOut,
    CartSummary,
    CartValidation,
    CouponIn,
    ItemIn,
    MergeIn,
    MergeResult,
    NotesIn,
    OwnerKey,
    QuantityIn,
)
from shopcart.services.cart_service import CartService

router = APIRouter(prefix="/carts", tags=["carts"])


def get_service(request: Request, db: Session = Depends(get_db)) -> CartService:
    state = request.app.state
    return CartService(
        db=db,
        product_client=state.product_client,
        settings=state.settings,
        cache=state.cache,
        coupon_validator=state.coupon_validator,
    )


def get_owner(
    user_id: str | None = Query(None, min_length=1),
    session_id: str | None = Query(None, min_length=1),
) -> OwnerKey:
    #dokladnie jeden klucz wlasciciela
    if bool(user_id) == bool(session_id):
        raise HTTPException(status_code=400, detail="Provide exactly one of user_id or session_id")
    return OwnerKey.user(user_id) if user_id else OwnerKey.session(session_id)


@router.get("", response_model=CartOut)
def get_cart(owner: OwnerKey = Depends(get_owner), svc: CartService = Depends(get_service)):
    return svc.get_cart(owner)


@router.get("/summary", response_model=CartSummary)
def get_cart_summary(owner: OwnerKey = Depends(get_owner), svc: CartService = Depends(get_service)):
    return svc.get_cart_summary(owner)


@router.get("/validate", response_model=CartValidation)
def validate_cart(owner: OwnerKey = Depends(get_owner), svc: CartService = Depends(get_service)):
    return svc.validate_cart(owner)


@router.post("/items", response_model=CartOut)
def add_item(
    payload: ItemIn,
    owner: OwnerKey = Depends(get_owner),
    svc: CartService = Depends(get_service),
):
    return svc.add_item(
        owner,
        product_id=payload.product_id,
        quantity=payload.quantity,
        variant_id=payload.variant_id,
    )


@router.patch("/items/{item_id}", response_model=CartOut)
def update_item(
    item_id: str,
    payload: QuantityIn,
    owner: OwnerKey = Depends(get_owner),
    svc: CartService = Depends(get_service),
):
    return svc.update_item_quantity(owner, item_id, payload.quantity)


@router.delete("/items/{item_id}", response_model=CartOut)
def remove_item(item_id: str, owner: OwnerKey = Depends(get_owner), svc: CartService = Depends(get_service)):
    return svc.remove_item(owner, item_id)


@router.delete("", response_model=CartOut)
def clear_cart(owner: OwnerKey = Depends(get_owner), svc: CartService = Depends(get_service)):
    return svc.clear_cart(owner)


@router.post("/coupons", response_model=CartOut)
def apply_coupon(
    payload: CouponIn,
    owner: OwnerKey = Depends(get_owner),
    svc: CartService = Depends(get_service),
):
    return svc.apply_coupon(owner, payload.code)


@router.delete("/coupons/{code}", response_model=CartOut)
def remove_coupon(code: str, owner: OwnerKey = Depends(get_owner), svc: CartService = Depends(get_service)):
    return svc.remove_coupon(owner, code)


@router.put("/notes", response_model=CartOut)
def update_notes(
    payload: NotesIn,
    owner: OwnerKey = Depends(get_owner),
    svc: CartService = Depends(get_service),
):
    return svc.update_notes(owner, payload.notes)


@router.post("/merge", response_model=MergeResult)
def merge_guest_cart(payload: MergeIn, svc: CartService = Depends(get_service)):
    """Wolane przy logowaniu: koszyk goscia -> koszyk usera."""
    return svc.merge_guest_cart(payload.session_id, payload.user_id)


@router.post("/convert", response_model=CartOut)
def convert_cart(owner: OwnerKey = Depends(get_owner), svc: CartService = Depends(get_service)):
    return svc.convert_cart(owner)
