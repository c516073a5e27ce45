from decimal import Decimal

from returns.pipeline import is_successful
from returns.result import Failure, Result, Success
from sqlalchemy.orm import Session

from storefront.data.models.cart_line import CartLineModel, as_utc, utcnow
from storefront.domain.errors import CartError, NotFound
from storefront.domain.identity import Identity
from storefront.domain.validation import validate_product_id, validate_quantity
from storefront.domain.values import (
    AddResult,
    CartLineView,
    CartSnapshot,
    GuestCartStats,
    RemoveStatus,
    UpdateResult,
)
from storefront.repos.cart_repo import CartRepo
from storefront.services.guards import storage_boundary
from storefront.services.lock_service import LockService
from storefront.services.product_client import ProductClient
from storefront.utils.settings import MAX_LINE_QUANTITY
from storefront.utils.logging import get_logger

logger = get_logger(__name__)


def line_view(line: CartLineModel) -> CartLineView:
    return CartLineView(
        product_id=line.product_id,
        quantity=line.quantity,
        unit_price=Decimal(line.unit_price),
        created_at=as_utc(line.created_at),
        updated_at=as_utc(line.updated_at),
    )


class CartService:
    """
    Cart Store keyed by Identity.
    commands (add, update_quantity, remove, clear) hold the identity lock for
    one transaction, queries (list, count, guest_statistics) only read
    """

    def __init__(
        self,
        db: Session,
        product_client: ProductClient,
        lock_service: LockService,
        max_quantity: int = MAX_LINE_QUANTITY,
    ):
        self.db = db
        self.repo = CartRepo(db)
        self.product_client = product_client
        self.lock_service = lock_service
        self.max_quantity = max_quantity

    # query
    @storage_boundary("cart.list")
    def list(self, identity: Identity) -> Result[CartSnapshot, CartError]:
        lines = self.repo.get_lines(identity.key)
        return Success(CartSnapshot(identity=identity, lines=tuple(line_view(l) for l in lines)))

    @storage_boundary("cart.count")
    def count(self, identity: Identity) -> Result[int, CartError]:
        return Success(self.repo.total_quantity(identity.key))

    @storage_boundary("cart.guest_statistics")
    def guest_statistics(self) -> Result[GuestCartStats, CartError]:
        origins, lines, quantity = self.repo.guest_statistics()
        average = Decimal(quantity) / origins if origins else Decimal("0")
        return Success(GuestCartStats(
            unique_guest_origins=int(origins),
            total_guest_lines=int(lines),
            total_guest_quantity=int(quantity),
            avg_quantity_per_guest=average.quantize(Decimal("0.01")),
        ))

    # commands
    @storage_boundary("cart.add")
    def add(self, identity: Identity, product_id: int, quantity: int) -> Result[AddResult, CartError]:
        checked = validate_product_id(product_id).bind(
            lambda _: validate_quantity(quantity, self.max_quantity)
        )
        if not is_successful(checked):
            return checked

        # catalog: existence + current price, captured on first add
        price = self.product_client.get_price(product_id)
        if price is None:
            return Failure(NotFound(
                "Product does not exist",
                {"product_id": product_id, "identity": identity.key},
            ))

        with self.lock_service.hold(identity.key):
            now = utcnow()
            existing = self.repo.get_line(identity.key, product_id, for_update=True)

            if existing:
                logger.info(
                    f"Product {product_id} already in cart {identity.key}, quantity "
                    f"{existing.quantity} -> {existing.quantity + quantity}"
                )
                existing.quantity += quantity
                existing.updated_at = now
                line, created = existing, False
            else:
                logger.info(f"Adding product {product_id} x{quantity} to cart {identity.key}")
                line = self.repo.add_line(CartLineModel(
                    identity_key=identity.key,
                    identity_kind=identity.kind,
                    product_id=product_id,
                    quantity=quantity,
                    unit_price=price,
                    created_at=now,
                    updated_at=now,
                ))
                created = True

            self.repo.commit()

        return Success(AddResult(line=line_view(line), created=created))

    @storage_boundary("cart.update_quantity")
    def update_quantity(self, identity: Identity, product_id: int, new_quantity: int) -> Result[UpdateResult, CartError]:
        checked = validate_product_id(product_id).bind(
            lambda _: validate_quantity(new_quantity, self.max_quantity, allow_zero=True)
        )
        if not is_successful(checked):
            return checked

        with self.lock_service.hold(identity.key):
            # 0 behaves exactly like remove, an absent line included
            if new_quantity == 0:
                removed = self.repo.delete_product_lines(identity.key, product_id)
                self.repo.commit()
                logger.info(f"Quantity 0 for product {product_id}, {removed} line(s) removed from cart {identity.key}")
                return Success(UpdateResult(line=None, removed=True))

            lines = self.repo.get_product_lines(identity.key, product_id, for_update=True)

            if not lines:
                self.repo.rollback()
                return Failure(NotFound(
                    "Product is not in the cart",
                    {"product_id": product_id, "identity": identity.key},
                ))

            # absolute quantity: extra lines for the same product are folded away
            line, extra = lines[0], lines[1:]
            for duplicate in extra:
                self.repo.delete_line(duplicate)
            line.quantity = new_quantity
            line.updated_at = utcnow()
            self.repo.commit()

        logger.info(f"Product {product_id} in cart {identity.key} set to {new_quantity}")
        return Success(UpdateResult(line=line_view(line), removed=False))

    @storage_boundary("cart.remove")
    def remove(self, identity: Identity, product_id: int) -> Result[RemoveStatus, CartError]:
        checked = validate_product_id(product_id)
        if not is_successful(checked):
            return checked

        with self.lock_service.hold(identity.key):
            removed = self.repo.delete_product_lines(identity.key, product_id)
            self.repo.commit()

        if removed:
            logger.info(f"Removed product {product_id} from cart {identity.key}")
            return Success(RemoveStatus.REMOVED)
        return Success(RemoveStatus.ALREADY_ABSENT)

    @storage_boundary("cart.clear")
    def clear(self, identity: Identity) -> Result[int, CartError]:
        with self.lock_service.hold(identity.key):
            removed = self.repo.delete_lines(identity.key)
            self.repo.commit()

        logger.info(f"Cleared cart {identity.key}, {removed} line(s) removed")
        return Success(removed)
