#storefront/api/routers/carts.py
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from storefront.api.deps import get_identity, get_lock_service, get_product_client, unwrap
from storefront.data.database import get_db
from storefront.domain.identity import Identity
from storefront.domain.schemas import (
    AddItemOut,
    CartCountOut,
    CartLineOut,
    CartOut,
    ClearCartOut,
    ItemIn,
    QuantityIn,
    RemoveItemOut,
    UpdateItemOut,
)
from storefront.domain.values import CartLineView, CartSnapshot
from storefront.services.cart_service import CartService
from storefront.services.lock_service import LockService
from storefront.services.product_client import ProductClient

router = APIRouter(prefix="/cart", tags=["cart"])


def get_service(
    db: Session = Depends(get_db),
    product_client: ProductClient = Depends(get_product_client),
    lock_service: LockService = Depends(get_lock_service),
) -> CartService:
    return CartService(db=db, product_client=product_client, lock_service=lock_service)


def line_out(line: CartLineView) -> CartLineOut:
    return CartLineOut.model_validate(line)


def cart_out(snapshot: CartSnapshot) -> CartOut:
    return CartOut(
        identity=snapshot.identity.key,
        lines=[line_out(line) for line in snapshot.lines],
        total_quantity=snapshot.total_quantity,
        total_amount=snapshot.total_amount,
    )


@router.get("", response_model=CartOut)
def get_cart(identity: Identity = Depends(get_identity), svc: CartService = Depends(get_service)):
    return cart_out(unwrap(svc.list(identity)))


@router.get("/count", response_model=CartCountOut)
def get_cart_count(identity: Identity = Depends(get_identity), svc: CartService = Depends(get_service)):
    return CartCountOut(identity=identity.key, count=unwrap(svc.count(identity)))


@router.post("/items", response_model=AddItemOut)
def add_item(
    payload: ItemIn,
    identity: Identity = Depends(get_identity),
    svc: CartService = Depends(get_service),
):
    added = unwrap(svc.add(identity, payload.product_id, payload.quantity))
    return AddItemOut(
        created=added.created,
        line=line_out(added.line),
        cart=cart_out(unwrap(svc.list(identity))),
    )


@router.put("/items/{product_id}", response_model=UpdateItemOut)
def update_item(
    product_id: int,
    payload: QuantityIn,
    identity: Identity = Depends(get_identity),
    svc: CartService = Depends(get_service),
):
    updated = unwrap(svc.update_quantity(identity, product_id, payload.quantity))
    line = line_out(updated.line) if updated.line else None
    return UpdateItemOut(
        removed=updated.removed,
        line=line,
        cart=cart_out(unwrap(svc.list(identity))),
    )


@router.delete("/items/{product_id}", response_model=RemoveItemOut)
def remove_item(
    product_id: int,
    identity: Identity = Depends(get_identity),
    svc: CartService = Depends(get_service),
):
    status = unwrap(svc.remove(identity, product_id))
    return RemoveItemOut(status=status.value, cart=cart_out(unwrap(svc.list(identity))))


@router.delete("", response_model=ClearCartOut)
def clear_cart(identity: Identity = Depends(get_identity), svc: CartService = Depends(get_service)):
    return ClearCartOut(removed=unwrap(svc.clear(identity)))
