# storefront/services/merge_service.py
from returns.result import Failure, Result, Success
from sqlalchemy.orm import Session

from storefront.data.models.cart_line import utcnow
from storefront.domain.errors import CartError, ValidationError
from storefront.domain.identity import AnonymousIdentity, CustomerIdentity, Identity
from storefront.domain.values import MergeReport
from storefront.repos.cart_repo import CartRepo
from storefront.services.guards import storage_boundary
from storefront.services.lock_service import LockService
from storefront.utils.logging import get_logger

logger = get_logger(__name__)


class MergeService:
    """
    Folds a guest cart into the customer's cart at login.
    Both identity locks are held (sorted order) and everything happens in a
    single transaction: either every line is moved/merged or none is.
    """

    def __init__(self, db: Session, lock_service: LockService):
        self.db = db
        self.repo = CartRepo(db)
        self.lock_service = lock_service

    @storage_boundary("cart.merge")
    def merge(self, anonymous: Identity, customer: Identity) -> Result[MergeReport, CartError]:
        if not isinstance(anonymous, AnonymousIdentity) or not isinstance(customer, CustomerIdentity):
            return Failure(ValidationError(
                "Merge requires an anonymous source and a customer target",
                {"source": anonymous.key, "target": customer.key},
            ))

        moved = merged = 0
        with self.lock_service.hold_many([anonymous.key, customer.key]):
            guest_lines = self.repo.get_lines(anonymous.key, for_update=True)
            if not guest_lines:
                self.repo.rollback()
                return Success(MergeReport(anonymous=anonymous, customer=customer, moved=0, merged=0))

            customer_lines = {}
            for line in self.repo.get_lines(customer.key, for_update=True):
                # first (oldest) line per product is the one that receives quantity
                customer_lines.setdefault(line.product_id, line)

            now = utcnow()
            for line in guest_lines:
                target = customer_lines.get(line.product_id)
                if target is not None:
                    target.quantity += line.quantity
                    target.updated_at = now
                    self.repo.delete_line(line)
                    merged += 1
                else:
                    line.identity_key = customer.key
                    line.identity_kind = customer.kind
                    line.updated_at = now
                    customer_lines[line.product_id] = line
                    moved += 1

            self.db.flush()
            self.repo.commit()

        logger.info(
            f"Merged cart {anonymous.key} into {customer.key}: "
            f"{moved} line(s) moved, {merged} line(s) summed"
        )
        return Success(MergeReport(anonymous=anonymous, customer=customer, moved=moved, merged=merged))
