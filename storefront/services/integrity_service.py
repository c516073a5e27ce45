"""
Cart integrity engine.

Detects and repairs four kinds of damage in cart_lines:

- orphaned_product_reference: the catalog no longer knows the product
- duplicate_line: more than one line for (identity, product)
- invalid_quantity: quantity <= 0 persisted
- stale_guest_cart: anonymous cart untouched for longer than the retention window

Repairs run per identity, each under that identity's lock and in its own
transaction. A failing identity is rolled back and counted, the others keep
their committed fixes.
"""
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from redis.exceptions import RedisError
from requests import RequestException
from returns.result import Failure, Result, Success
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from storefront.data.models.cart_line import CartLineModel, as_utc, utcnow
from storefront.domain.errors import CartError, ValidationError
from storefront.domain.identity import AnonymousIdentity, Identity, identity_from_key
from storefront.domain.values import (
    IntegrityIssue,
    IssueKind,
    RepairOptions,
    RepairReport,
)
from storefront.repos.cart_repo import CartRepo
from storefront.services.guards import storage_boundary
from storefront.services.lock_service import LockService, LockTimeout
from storefront.services.product_client import ProductClient
from storefront.utils.settings import (
    GUEST_CART_RETENTION_HOURS,
    MAX_RETENTION_HOURS,
    MIN_RETENTION_HOURS,
)
from storefront.utils.logging import get_logger

logger = get_logger(__name__)

SUGGESTED_FIXES = {
    IssueKind.ORPHANED_PRODUCT_REFERENCE: "remove the line, the product no longer exists",
    IssueKind.DUPLICATE_LINE: "collapse into the oldest line with the summed quantity",
    IssueKind.INVALID_QUANTITY: "remove the line, quantity must be at least 1",
    IssueKind.STALE_GUEST_CART: "delete the guest cart",
}


def _age_key(line: CartLineModel):
    return (as_utc(line.created_at), line.id)


class IntegrityService:
    def __init__(
        self,
        db: Session,
        product_client: ProductClient,
        lock_service: LockService,
        retention_hours: int = GUEST_CART_RETENTION_HOURS,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.repo = CartRepo(db)
        self.product_client = product_client
        self.lock_service = lock_service
        self.retention_hours = retention_hours
        self.clock = clock

    def _check_retention(self) -> Optional[CartError]:
        hours = self.retention_hours
        if isinstance(hours, bool) or not isinstance(hours, int) or not (
            MIN_RETENTION_HOURS <= hours <= MAX_RETENTION_HOURS
        ):
            return ValidationError(
                f"Retention window must be between {MIN_RETENTION_HOURS} and {MAX_RETENTION_HOURS} hours",
                {"field": "retention_hours", "value": hours},
            )
        return None

    def _product_exists(self, product_id: int, known: Dict[int, bool]) -> bool:
        if product_id not in known:
            known[product_id] = self.product_client.product_exists(product_id)
        return known[product_id]

    def _is_stale(self, identity: Identity, lines: List[CartLineModel]) -> bool:
        if not isinstance(identity, AnonymousIdentity) or not lines:
            return False
        cutoff = self.clock() - timedelta(hours=self.retention_hours)
        return max(as_utc(l.updated_at) for l in lines) < cutoff

    def _detect(self, identity: Identity, lines: List[CartLineModel], known: Dict[int, bool]) -> List[IntegrityIssue]:
        issues = []

        for line in lines:
            if not self._product_exists(line.product_id, known):
                issues.append(IntegrityIssue(
                    kind=IssueKind.ORPHANED_PRODUCT_REFERENCE,
                    affected_identity=identity,
                    affected_product_id=line.product_id,
                    suggested_fix=SUGGESTED_FIXES[IssueKind.ORPHANED_PRODUCT_REFERENCE],
                    line_ids=(line.id,),
                ))
            if line.quantity <= 0:
                issues.append(IntegrityIssue(
                    kind=IssueKind.INVALID_QUANTITY,
                    affected_identity=identity,
                    affected_product_id=line.product_id,
                    suggested_fix=SUGGESTED_FIXES[IssueKind.INVALID_QUANTITY],
                    line_ids=(line.id,),
                ))

        by_product = defaultdict(list)
        for line in lines:
            by_product[line.product_id].append(line)
        for product_id, group in by_product.items():
            if len(group) > 1:
                issues.append(IntegrityIssue(
                    kind=IssueKind.DUPLICATE_LINE,
                    affected_identity=identity,
                    affected_product_id=product_id,
                    suggested_fix=SUGGESTED_FIXES[IssueKind.DUPLICATE_LINE],
                    line_ids=tuple(l.id for l in group),
                ))

        if self._is_stale(identity, lines):
            issues.append(IntegrityIssue(
                kind=IssueKind.STALE_GUEST_CART,
                affected_identity=identity,
                affected_product_id=None,
                suggested_fix=SUGGESTED_FIXES[IssueKind.STALE_GUEST_CART],
                line_ids=tuple(l.id for l in lines),
            ))

        return issues

    @storage_boundary("integrity.scan")
    def scan(self, identity: Optional[Identity] = None) -> Result[List[IntegrityIssue], CartError]:
        error = self._check_retention()
        if error:
            return Failure(error)

        if identity is not None:
            grouped = {identity.key: self.repo.get_lines(identity.key)}
        else:
            grouped = defaultdict(list)
            for line in self.repo.get_all_lines():
                grouped[line.identity_key].append(line)

        known: Dict[int, bool] = {}
        issues: List[IntegrityIssue] = []
        for key, lines in grouped.items():
            try:
                owner = identity or identity_from_key(key)
            except ValueError:
                logger.warning(f"Skipping cart lines with malformed identity key {key!r}")
                continue
            issues.extend(self._detect(owner, lines, known))

        logger.info(f"Integrity scan of {identity.key if identity else 'all carts'}: {len(issues)} issue(s)")
        return Success(issues)

    def _repair_identity(self, identity: Identity, options: RepairOptions, known: Dict[int, bool]) -> Dict[IssueKind, int]:
        fixes = {kind: 0 for kind in IssueKind}

        with self.lock_service.hold(identity.key):
            lines = self.repo.get_lines(identity.key, for_update=True)
            # decided before any fix touches updated_at
            stale = options.delete_stale_guest_carts and self._is_stale(identity, lines)
            alive = sorted(lines, key=_age_key)

            if options.remove_orphaned:
                for line in [l for l in alive if not self._product_exists(l.product_id, known)]:
                    self.repo.delete_line(line)
                    alive.remove(line)
                    fixes[IssueKind.ORPHANED_PRODUCT_REFERENCE] += 1

            if options.fix_quantities:
                for line in [l for l in alive if l.quantity <= 0]:
                    self.repo.delete_line(line)
                    alive.remove(line)
                    fixes[IssueKind.INVALID_QUANTITY] += 1

            if options.merge_duplicates:
                by_product = defaultdict(list)
                for line in alive:
                    by_product[line.product_id].append(line)
                for group in by_product.values():
                    if len(group) < 2:
                        continue
                    keep, rest = group[0], group[1:]
                    keep.quantity = sum(l.quantity for l in group)
                    keep.updated_at = max(as_utc(l.updated_at) for l in group)
                    for line in rest:
                        self.repo.delete_line(line)
                        alive.remove(line)
                    fixes[IssueKind.DUPLICATE_LINE] += len(rest)

            if stale and alive:
                for line in alive:
                    self.repo.delete_line(line)
                alive = []
                fixes[IssueKind.STALE_GUEST_CART] += 1

            self.db.flush()
            self.repo.commit()

        return fixes

    @storage_boundary("integrity.repair")
    def repair(
        self,
        identity: Optional[Identity] = None,
        options: Optional[RepairOptions] = None,
    ) -> Result[RepairReport, CartError]:
        error = self._check_retention()
        if error:
            return Failure(error)

        options = options or RepairOptions()
        keys = [identity.key] if identity is not None else self.repo.get_identity_keys()
        self.repo.rollback()

        report = RepairReport()
        known: Dict[int, bool] = {}
        for key in keys:
            try:
                owner = identity or identity_from_key(key)
            except ValueError:
                logger.warning(f"Skipping cart lines with malformed identity key {key!r}")
                report.errors += 1
                continue

            try:
                fixes = self._repair_identity(owner, options, known)
            except (SQLAlchemyError, RedisError, RequestException, LockTimeout):
                logger.exception(f"Repair of cart {key} failed, rolled back")
                self.db.rollback()
                report.errors += 1
                continue

            for kind, count in fixes.items():
                report.fixes_applied[kind] += count
            if any(fixes.values()):
                report.identities_repaired += 1

        logger.info(
            f"Integrity repair of {identity.key if identity else 'all carts'}: "
            f"{report.total_fixes} fix(es), {report.errors} error(s)"
        )
        return Success(report)
