"""
Reconciles a tenant's required express fee amounts against the fee products in its Shopify catalog.

Per amount, independently and sequentially:
    missing              -> create product        (recorded as created)
    present, price drift -> update variant price  (recorded as updated)
    present, price ok    -> nothing               (recorded as unchanged)
    any remote failure   -> recorded in errors, next amount continues

Deleting products for amounts that are no longer required is a separate,
explicitly triggered cleanup that must be given the full active set.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Iterable, List, Optional

import structlog

from app.models.reconciliation import (
    CleanupEntry,
    CleanupError,
    CleanupResult,
    FeeAmountError,
    FeeAutomationStatus,
    FeeProductOutcome,
    FeeProductStatus,
    ReconciliationResult,
)
from app.models.shopify import ShopifyProduct
from app.models.tenant import Tenant
from app.services.fee_extractor import to_fee_amount
from app.services.fee_products import (
    FEE_PRODUCT_MARKER_TAG,
    FEE_PRODUCT_TYPE,
    FEE_PRODUCT_VENDOR,
    build_fee_product_payload,
    fee_product_title,
    format_price,
    parse_fee_amount,
)
from app.services.shopify_api_client import ShopifyAPIClient, ShopifyAPIError

logger = structlog.get_logger()

ClientFactory = Callable[[Tenant], ShopifyAPIClient]


def _normalize_amounts(amounts: Iterable[Decimal]) -> List[Decimal]:
    normalized = {to_fee_amount(a) for a in amounts}
    return sorted(a for a in normalized if a is not None and a > 0)


def _price_of(product: ShopifyProduct) -> Optional[Decimal]:
    variant = product.first_variant
    return to_fee_amount(variant.price) if variant else None


class FeeReconciliationEngine:
    """Makes a tenant's remote fee products match a required set of fee amounts."""

    def __init__(self, client_factory: Optional[ClientFactory] = None):
        self.client_factory = client_factory or ShopifyAPIClient.for_tenant

    async def reconcile(self, tenant: Tenant, required_amounts: Iterable[Decimal]) -> ReconciliationResult:
        """
        Ensure exactly one fee product exists per required amount with the right price.

        Args:
            tenant: Tenant whose catalog is reconciled
            required_amounts: Authoritative fee amounts for this run

        Returns:
            ReconciliationResult with created/updated/unchanged/errors and summary
        """
        amounts = _normalize_amounts(required_amounts)
        result = ReconciliationResult(started_at=datetime.now(timezone.utc))
        log = logger.bind(tenant_id=tenant.id, shop_domain=tenant.shop_domain)
        log.info("Starting fee product reconciliation", fee_amounts=[str(a) for a in amounts])

        async with self.client_factory(tenant) as client:
            for amount in amounts:
                try:
                    await self._ensure_fee_product(client, amount, result)
                except Exception as e:
                    # One amount failing must not stop the others
                    log.error("Failed to reconcile fee amount", fee_amount=str(amount), error=str(e))
                    result.errors.append(FeeAmountError(fee_amount=amount, error=str(e)))

        result.finished_at = datetime.now(timezone.utc)
        result.finalize(total_fee_amounts=len(amounts))
        log.info("Fee product reconciliation completed", **result.summary.model_dump())
        return result

    async def _ensure_fee_product(
        self, client: ShopifyAPIClient, amount: Decimal, result: ReconciliationResult
    ) -> None:
        title = fee_product_title(amount)
        existing = await client.find_product_by_signature(title, FEE_PRODUCT_VENDOR, FEE_PRODUCT_MARKER_TAG)

        if existing is None:
            created = await self._create_fee_product(client, amount, title)
            variant = created.first_variant
            result.created.append(
                FeeProductOutcome(
                    fee_amount=amount,
                    product_id=created.id,
                    variant_id=variant.id if variant else None,
                    title=created.title,
                    price=variant.price if variant else format_price(amount),
                )
            )
            return

        variant = existing.first_variant
        if variant is None:
            raise ShopifyAPIError(f"Fee product {existing.id} has no variant")

        if _price_of(existing) == amount:
            result.unchanged.append(amount)
            return

        expected_price = format_price(amount)
        await client.update_variant_price(existing.id, variant.id, expected_price)
        logger.info(
            "Updated fee product price",
            product_id=existing.id,
            previous_price=variant.price,
            price=expected_price,
        )
        result.updated.append(
            FeeProductOutcome(
                fee_amount=amount,
                product_id=existing.id,
                variant_id=variant.id,
                title=existing.title,
                price=expected_price,
                previous_price=variant.price,
            )
        )

    async def _create_fee_product(
        self, client: ShopifyAPIClient, amount: Decimal, title: str
    ) -> ShopifyProduct:
        """
        Create the fee product for an amount.

        A failed create may still have been applied remotely (lost response),
        so the signature is looked up again before the failure is reported.
        """
        try:
            return await client.create_product(build_fee_product_payload(amount))
        except ShopifyAPIError as e:
            if e.status_code is not None and e.status_code < 500:
                raise
            committed = await client.find_product_by_signature(
                title, FEE_PRODUCT_VENDOR, FEE_PRODUCT_MARKER_TAG
            )
            if committed is None:
                raise
            logger.warning(
                "Fee product create failed but the product exists",
                product_id=committed.id,
                fee_amount=str(amount),
                error=str(e),
            )
            return committed

    async def cleanup(self, tenant: Tenant, active_amounts: Iterable[Decimal]) -> CleanupResult:
        """
        Delete fee products whose amount is not in the active set, and duplicates of active amounts.

        The caller must pass the full authoritative active set. A partial set
        deletes products that are still in use.

        Raises:
            ShopifyAPIError: if the fee products cannot be listed at all
        """
        active = set(_normalize_amounts(active_amounts))
        result = CleanupResult()
        log = logger.bind(tenant_id=tenant.id, shop_domain=tenant.shop_domain)

        async with self.client_factory(tenant) as client:
            products = await client.list_products_by_marker(
                FEE_PRODUCT_VENDOR, FEE_PRODUCT_TYPE, FEE_PRODUCT_MARKER_TAG
            )
            log.info("Starting fee product cleanup", existing=len(products), active=[str(a) for a in active])

            kept_amounts = set()
            for product in sorted(products, key=lambda p: p.id):
                amount = parse_fee_amount(product.title)
                if amount is not None and amount in active and amount not in kept_amounts:
                    kept_amounts.add(amount)
                    result.kept.append(CleanupEntry(product_id=product.id, title=product.title, fee_amount=amount))
                    continue

                if amount is None:
                    reason = "unrecognized_title"
                elif amount in active:
                    reason = "duplicate"
                else:
                    reason = "unused"

                try:
                    await client.delete_product(product.id)
                    result.deleted.append(
                        CleanupEntry(product_id=product.id, title=product.title, fee_amount=amount, reason=reason)
                    )
                except Exception as e:
                    log.error("Failed to delete fee product", product_id=product.id, error=str(e))
                    result.errors.append(CleanupError(product_id=product.id, title=product.title, error=str(e)))

        log.info(
            "Fee product cleanup completed",
            deleted=len(result.deleted),
            kept=len(result.kept),
            errors=len(result.errors),
        )
        return result

    async def get_status(self, tenant: Tenant) -> FeeAutomationStatus:
        """Current remote fee product inventory. Listing failures are reported, not raised."""
        now = datetime.now(timezone.utc)
        try:
            async with self.client_factory(tenant) as client:
                products = await client.list_products_by_marker(
                    FEE_PRODUCT_VENDOR, FEE_PRODUCT_TYPE, FEE_PRODUCT_MARKER_TAG
                )
        except ShopifyAPIError as e:
            logger.error("Failed to load fee automation status", tenant_id=tenant.id, error=str(e))
            return FeeAutomationStatus(error=str(e), last_checked=now)

        fee_products = []
        for product in products:
            variant = product.first_variant
            fee_products.append(
                FeeProductStatus(
                    product_id=product.id,
                    title=product.title,
                    price=variant.price if variant else "0.00",
                    variant_id=variant.id if variant else None,
                    fee_amount=parse_fee_amount(product.title),
                    created_at=product.created_at,
                    updated_at=product.updated_at,
                )
            )
        return FeeAutomationStatus(
            total_fee_products=len(fee_products),
            fee_products=fee_products,
            last_checked=now,
        )
