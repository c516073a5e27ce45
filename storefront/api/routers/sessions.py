# storefront/api/routers/sessions.py
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from storefront.api.deps import get_lock_service, get_product_client, get_request_context, raise_for, unwrap
from storefront.api.routers.carts import cart_out
from storefront.data.database import get_db
from storefront.domain.errors import ValidationError
from storefront.domain.identity import RequestContext
from storefront.domain.schemas import LoginIn, MergeOut
from storefront.services.cart_service import CartService
from storefront.services.identity_service import IdentityResolver
from storefront.services.lock_service import LockService
from storefront.services.merge_service import MergeService
from storefront.services.product_client import ProductClient

router = APIRouter(prefix="/sessions", tags=["sessions"])


def login_customer_id(payload: LoginIn, context: RequestContext) -> int:
    # the authenticated header wins, a body id may only confirm it
    if context.customer_id is not None and payload.customer_id is not None \
            and context.customer_id != payload.customer_id:
        raise_for(ValidationError(
            "Customer id does not match the authenticated customer",
            {"issue": "customer_mismatch"},
        ))
    customer_id = context.customer_id if context.customer_id is not None else payload.customer_id
    if customer_id is None:
        raise_for(ValidationError(
            "No authenticated customer to log in",
            {"field": "customer_id", "issue": "missing"},
        ))
    return customer_id


@router.post("/login", response_model=MergeOut)
def login(
    payload: LoginIn,
    context: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
    lock_service: LockService = Depends(get_lock_service),
    product_client: ProductClient = Depends(get_product_client),
):
    """
    Called once the auth layer accepted the credentials: the guest cart of the
    caller's origin is folded into the customer's cart.
    """
    resolver = IdentityResolver()
    anonymous = unwrap(resolver.resolve_anonymous(context))
    customer = unwrap(resolver.resolve(RequestContext(customer_id=login_customer_id(payload, context))))

    report = unwrap(MergeService(db, lock_service).merge(anonymous, customer))
    cart = CartService(db=db, product_client=product_client, lock_service=lock_service)

    return MergeOut(
        customer=customer.key,
        anonymous=anonymous.key,
        moved=report.moved,
        merged=report.merged,
        cart=cart_out(unwrap(cart.list(customer))),
    )
