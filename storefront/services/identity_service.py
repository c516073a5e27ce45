# storefront/services/identity_service.py
from returns.result import Result

from storefront.domain.errors import CartError
from storefront.domain.identity import (
    AnonymousIdentity,
    CustomerIdentity,
    Identity,
    RequestContext,
)
from storefront.domain.validation import validate_customer_id, validate_origin


class IdentityResolver:
    """
    Single translation point from request state to a cart Identity.
    Customer id wins, otherwise the network origin is used. No fallback origin.
    """

    def resolve(self, context: RequestContext) -> Result[Identity, CartError]:
        if context.customer_id is not None:
            return validate_customer_id(context.customer_id).map(CustomerIdentity)
        return validate_origin(context.origin).map(AnonymousIdentity)

    def resolve_anonymous(self, context: RequestContext) -> Result[Identity, CartError]:
        return validate_origin(context.origin).map(AnonymousIdentity)
