"""
Discount Application Engine - applies discount rules to storefront products.

Handles target resolution, conflict detection, per-product application and
removal, and reconciliation of collection rules with current membership.
"""
import asyncio
import logging
import math
import time
from datetime import datetime, timezone
from typing import Callable, Optional, Sequence

from ..config.settings import Settings, get_settings
from .discount_calculator import DiscountCalculator, classify_product
from .errors import InvalidConfiguration, PricingError
from .models import (
    ApplicationResult,
    ApplicationType,
    ApplyOutcome,
    BatchResult,
    Conflict,
    ConflictAction,
    DiscountRule,
    DiscountStatus,
    MetalRates,
    Product,
    ProductDiscountRecord,
    StoneCatalogEntry,
    SyncResult,
)
from .price_calculator import PriceCalculator

logger = logging.getLogger(__name__)


class DiscountApplicationEngine:
    """
    Applies and removes discount rules product by product.

    A rule is applied to its whole target set only when none of the targets
    already carries an active discount from another rule; otherwise the
    conflicts are returned and nothing is written.
    """

    def __init__(
        self,
        store,
        settings: Optional[Settings] = None,
        discount_calculator: Optional[DiscountCalculator] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.store = store
        self.settings = settings or get_settings()
        self.discount_calculator = discount_calculator or DiscountCalculator()
        self.clock = clock

        self._stone_cache: Optional[list[StoneCatalogEntry]] = None
        self._stone_cache_time: Optional[float] = None

    async def get_stone_catalog(self) -> list[StoneCatalogEntry]:
        """
        Gem catalog used for classification, cached for the configured TTL.

        A failed refresh serves the stale cache; an empty catalog is returned
        only if nothing was ever cached.
        """
        now = self.clock()
        if (
            self._stone_cache is not None
            and now - self._stone_cache_time < self.settings.stone_cache_ttl_seconds
        ):
            return self._stone_cache

        try:
            catalog = await self.store.get_stone_catalog()
        except Exception as e:
            logger.warning("Error fetching stone catalog, serving cached copy: %s", e)
            return self._stone_cache if self._stone_cache is not None else []

        self._stone_cache = catalog
        self._stone_cache_time = now
        return catalog

    def clear_stone_cache(self):
        self._stone_cache = None
        self._stone_cache_time = None

    async def get_price_calculator(self) -> PriceCalculator:
        """Calculator bound to the current rate snapshot."""
        rates = await self.store.get_metal_rates()
        if rates is None:
            rates = MetalRates.from_dict(self.settings.default_metal_rates)
        return PriceCalculator(rates, self.discount_calculator)

    async def get_target_product_ids(self, rule: DiscountRule) -> list[str]:
        """Resolve the product ids a rule targets."""
        if rule.application_type is ApplicationType.COLLECTION:
            if not rule.target_collection_id:
                return []
            members = await self.store.list_collection_members(
                rule.target_collection_id, self.settings.collection_member_limit
            )
            return [p.product_id for p in members]
        return list(rule.target_product_ids)

    async def detect_conflicts(self, product_ids: Sequence[str], rule: DiscountRule) -> list[Conflict]:
        """
        Products that already carry an active discount from a different rule.

        A product whose active record belongs to ``rule`` itself is not a
        conflict, so re-applying a rule rewrites its own products.

        Unconfigured products are ignored; a product that cannot be read is
        logged and left for the apply step to report.
        """
        conflicts = []
        catalog = None

        for product_id in product_ids:
            try:
                product = await self.store.get_product_configuration(product_id)
            except Exception as e:
                logger.warning("Error checking conflict for product %s: %s", product_id, e)
                continue

            if not product.configured or product.configuration is None:
                continue

            existing = product.discount
            if existing is None or not existing.enabled or existing.discount_id == rule.id:
                continue

            if catalog is None:
                catalog = await self.get_stone_catalog()

            conflicts.append(Conflict(
                product_id=product_id,
                product_title=product.title or 'Unknown Product',
                existing_discount=existing,
                new_discount_id=rule.id,
                new_discount_title=rule.title,
                product_type=classify_product(product.configuration, catalog),
            ))

        return conflicts

    async def apply_to_product(
        self,
        product_id: str,
        rule: DiscountRule,
        calculator: Optional[PriceCalculator] = None,
        stone_catalog: Optional[list[StoneCatalogEntry]] = None,
    ) -> ApplicationResult:
        """Apply a rule to one product and write its discounted price."""
        try:
            product = await self.store.get_product_configuration(product_id)

            failure = self._check_applicable(product, rule)
            if failure:
                return ApplicationResult(product_id=product_id, success=False, error=failure)

            config = product.configuration
            catalog = stone_catalog if stone_catalog is not None else await self.get_stone_catalog()
            product_type = classify_product(config, catalog)

            if not rule.rules_enabled_for(product_type):
                return ApplicationResult(
                    product_id=product_id,
                    success=False,
                    product_type=product_type,
                    error=f"No matching discount rule for product type: {product_type.value}",
                )

            calculator = calculator or await self.get_price_calculator()
            breakdown = calculator.calculate_price(config, rule.scoped_to(product_type), catalog)

            final_price = breakdown.final_price_after_discount
            if not math.isfinite(final_price) or final_price <= 0:
                logger.error("Invalid final price %s for product %s", final_price, product_id)
                return ApplicationResult(
                    product_id=product_id,
                    success=False,
                    product_type=product_type,
                    error="Price calculation resulted in invalid price",
                )

            new_price = breakdown.transacted_price
            discount_amount = breakdown.discount.discount_amount

            await self.store.set_product_price(product_id, product.variant_ref, new_price)
            await self.store.set_product_discount_record(product_id, ProductDiscountRecord(
                status=DiscountStatus.ACTIVE,
                discount_id=rule.id,
                discount_title=rule.title,
                applied_rule_type=product_type,
                discount_amount=discount_amount,
                applied_at=datetime.now(timezone.utc),
            ))

            return ApplicationResult(
                product_id=product_id,
                success=True,
                new_price=new_price,
                discount_amount=discount_amount,
                product_type=product_type,
            )
        except PricingError as e:
            logger.warning("Error applying discount %s to product %s: %s", rule.id, product_id, e)
            return ApplicationResult(product_id=product_id, success=False, error=str(e))
        except Exception as e:
            logger.exception("Unexpected error applying discount %s to product %s", rule.id, product_id)
            return ApplicationResult(product_id=product_id, success=False, error=str(e))

    def _check_applicable(self, product: Product, rule: DiscountRule) -> Optional[str]:
        if not rule.enabled:
            return "Discount rule is not active"
        if not product.configured or product.configuration is None:
            return "Product not configured"
        if not product.configuration.metal_weight or product.configuration.metal_weight <= 0:
            return "Product metal weight is missing or invalid"
        if not product.configuration.metal_type:
            return "Product metal type is missing"
        if not product.variant_ref:
            return "Product has no variant to price"
        return None

    async def apply_to_many(self, product_ids: Sequence[str], rule: DiscountRule) -> BatchResult:
        """Apply a rule to every product concurrently; failures stay per product."""
        if not product_ids:
            return BatchResult()

        calculator = await self.get_price_calculator()
        catalog = await self.get_stone_catalog()

        results = await asyncio.gather(*(
            self.apply_to_product(product_id, rule, calculator, catalog)
            for product_id in product_ids
        ))

        batch = BatchResult(results=list(results))
        logger.info(
            "Applied discount %s: %d succeeded, %d failed",
            rule.id, batch.success_count, batch.fail_count,
        )
        return batch

    async def apply_discount_to_targets(
        self,
        rule: DiscountRule,
        resolutions: Optional[dict[str, ConflictAction]] = None,
    ) -> ApplyOutcome:
        """
        Apply a rule to all of its targets.

        Args:
            rule: Rule to apply
            resolutions: Optional product_id → action for products already
                carrying another discount

        Returns:
            ApplyOutcome with either the unresolved conflicts (nothing written)
            or the batch of per-product results
        """
        product_ids = await self.get_target_product_ids(rule)
        if not product_ids:
            return ApplyOutcome(rule_id=rule.id, error="No target products found")

        resolutions = resolutions or {}
        conflicts = await self.detect_conflicts(product_ids, rule)
        unresolved = [c for c in conflicts if c.product_id not in resolutions]

        if unresolved:
            logger.info("Discount %s has %d unresolved conflicts", rule.id, len(unresolved))
            return ApplyOutcome(rule_id=rule.id, total_products=len(product_ids), conflicts=unresolved)

        conflicting = {c.product_id for c in conflicts}
        batch = await self.apply_to_many([pid for pid in product_ids if pid not in conflicting], rule)

        for conflict in conflicts:
            batch.results.append(
                await self.resolve_conflict(conflict.product_id, rule, resolutions[conflict.product_id])
            )

        return ApplyOutcome(rule_id=rule.id, total_products=len(product_ids), batch=batch)

    async def resolve_conflict(
        self, product_id: str, rule: DiscountRule, action: ConflictAction
    ) -> ApplicationResult:
        """Settle one conflicting product: replace its discount, or leave it alone."""
        if action is ConflictAction.REPLACE:
            removed = await self.remove_from_product(product_id)
            if not removed.success:
                return removed
            return await self.apply_to_product(product_id, rule)

        message = 'Existing discount kept' if action is ConflictAction.KEEP_EXISTING else 'Product skipped'
        return ApplicationResult(product_id=product_id, success=True, skipped=True, message=message)

    async def remove_from_product(
        self,
        product_id: str,
        discount_id: Optional[str] = None,
        calculator: Optional[PriceCalculator] = None,
        stone_catalog: Optional[list[StoneCatalogEntry]] = None,
    ) -> ApplicationResult:
        """
        Deactivate a product's discount and write its undiscounted price.

        With ``discount_id`` set, a product whose active discount belongs to
        another rule is left untouched.
        """
        try:
            product = await self.store.get_product_configuration(product_id)
            existing = product.discount

            if discount_id and existing is not None and existing.enabled and existing.discount_id != discount_id:
                return ApplicationResult(
                    product_id=product_id,
                    success=True,
                    skipped=True,
                    message="Active discount belongs to another rule",
                )

            record = existing.deactivated() if existing else ProductDiscountRecord(status=DiscountStatus.INACTIVE)
            await self.store.set_product_discount_record(product_id, record)

            if not product.configured or product.configuration is None or not product.variant_ref:
                return ApplicationResult(product_id=product_id, success=True, message="Price left unchanged")

            calculator = calculator or await self.get_price_calculator()
            catalog = stone_catalog if stone_catalog is not None else await self.get_stone_catalog()
            breakdown = calculator.calculate_price(product.configuration, None, catalog)

            if not math.isfinite(breakdown.final_price) or breakdown.final_price <= 0:
                raise InvalidConfiguration("Price calculation resulted in invalid price")

            new_price = breakdown.transacted_price
            await self.store.set_product_price(product_id, product.variant_ref, new_price)
            return ApplicationResult(product_id=product_id, success=True, new_price=new_price)
        except PricingError as e:
            logger.warning("Error removing discount from product %s: %s", product_id, e)
            return ApplicationResult(product_id=product_id, success=False, error=str(e))
        except Exception as e:
            logger.exception("Unexpected error removing discount from product %s", product_id)
            return ApplicationResult(product_id=product_id, success=False, error=str(e))

    async def remove_discount_from_products(
        self, product_ids: Sequence[str], discount_id: Optional[str] = None
    ) -> BatchResult:
        """Remove discounts product by product; used on rule deletion and retargeting."""
        if not product_ids:
            return BatchResult()

        calculator = await self.get_price_calculator()
        catalog = await self.get_stone_catalog()

        batch = BatchResult()
        for product_id in product_ids:
            batch.results.append(
                await self.remove_from_product(product_id, discount_id, calculator, catalog)
            )

        if batch.fail_count:
            logger.error("Failed to remove discount from %d products", batch.fail_count)
        return batch

    async def resync_collection_rule(self, rule: DiscountRule, member_ids: Sequence[str]) -> SyncResult:
        """
        Reconcile a collection rule with the collection's current members.

        New members get the discount (unless they carry another rule's
        discount, which is reported as a conflict); departed members lose it.
        """
        known = list(rule.applied_product_ids)
        current = set(member_ids)

        added = [pid for pid in member_ids if pid not in set(known)]
        departed = [pid for pid in known if pid not in current]

        conflicts = await self.detect_conflicts(added, rule)
        conflicting = {c.product_id for c in conflicts}

        applied = await self.apply_to_many([pid for pid in added if pid not in conflicting], rule)
        removed = await self.remove_discount_from_products(departed, discount_id=rule.id)

        return SyncResult(
            rule_id=rule.id,
            added=applied.results,
            removed=removed.results,
            conflicts=conflicts,
        )
