# storefront/api/routers/integrity.py
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from storefront.api.deps import get_lock_service, get_product_client, unwrap
from storefront.data.database import get_db
from storefront.domain.identity import Identity, RequestContext
from storefront.domain.schemas import GuestStatsOut, IntegrityIssueOut, RepairIn, RepairOut
from storefront.domain.values import RepairOptions
from storefront.services.cart_service import CartService
from storefront.services.identity_service import IdentityResolver
from storefront.services.integrity_service import IntegrityService
from storefront.services.lock_service import LockService
from storefront.services.product_client import ProductClient
from storefront.utils.settings import GUEST_CART_RETENTION_HOURS

router = APIRouter(prefix="/admin/integrity", tags=["admin"])


def target_identity(customer_id: Optional[int], origin: Optional[str]) -> Optional[Identity]:
    """No customer id and no origin means every cart."""
    if customer_id is None and origin is None:
        return None
    return unwrap(IdentityResolver().resolve(RequestContext(customer_id=customer_id, origin=origin)))


def build_service(db, product_client, lock_service, retention_hours: Optional[int]) -> IntegrityService:
    return IntegrityService(
        db,
        product_client,
        lock_service,
        retention_hours=GUEST_CART_RETENTION_HOURS if retention_hours is None else retention_hours,
    )


@router.get("", response_model=List[IntegrityIssueOut])
def scan(
    customer_id: Optional[int] = Query(None),
    origin: Optional[str] = Query(None),
    retention_hours: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    product_client: ProductClient = Depends(get_product_client),
    lock_service: LockService = Depends(get_lock_service),
):
    identity = target_identity(customer_id, origin)
    svc = build_service(db, product_client, lock_service, retention_hours)
    issues = unwrap(svc.scan(identity))
    return [
        IntegrityIssueOut(
            kind=issue.kind.value,
            affected_identity=issue.affected_identity.key,
            affected_product_id=issue.affected_product_id,
            suggested_fix=issue.suggested_fix,
            line_ids=list(issue.line_ids),
        )
        for issue in issues
    ]


@router.post("/repair", response_model=RepairOut)
def repair(
    payload: RepairIn,
    db: Session = Depends(get_db),
    product_client: ProductClient = Depends(get_product_client),
    lock_service: LockService = Depends(get_lock_service),
):
    identity = target_identity(payload.customer_id, payload.origin)
    svc = build_service(db, product_client, lock_service, payload.retention_hours)
    report = unwrap(svc.repair(identity, RepairOptions(
        remove_orphaned=payload.remove_orphaned,
        fix_quantities=payload.fix_quantities,
        merge_duplicates=payload.merge_duplicates,
        delete_stale_guest_carts=payload.delete_stale_guest_carts,
    )))
    return RepairOut(
        fixes_applied={kind.value: count for kind, count in report.fixes_applied.items()},
        total_fixes=report.total_fixes,
        errors=report.errors,
        identities_repaired=report.identities_repaired,
    )


@router.get("/guest-stats", response_model=GuestStatsOut)
def guest_stats(
    db: Session = Depends(get_db),
    product_client: ProductClient = Depends(get_product_client),
    lock_service: LockService = Depends(get_lock_service),
):
    svc = CartService(db=db, product_client=product_client, lock_service=lock_service)
    return GuestStatsOut.model_validate(unwrap(svc.guest_statistics()))
