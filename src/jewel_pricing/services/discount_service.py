"""
Discount Service - discount rule CRUD with automatic application.

Creating or updating an active rule applies it to its targets right away; the
result is either the per-product batch or the list of conflicts the caller has
to resolve before anything is written.
"""
import logging
import re
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Optional, Sequence

from ..engine.application_engine import DiscountApplicationEngine
from ..engine.discount_calculator import ValidationResult
from ..engine.errors import NotFound, PricingError, ValidationError
from ..engine.models import (
    ApplicationResult,
    ApplicationType,
    ApplyOutcome,
    BatchResult,
    ConflictAction,
    DiscountRule,
    SyncResult,
)

logger = logging.getLogger(__name__)


@dataclass
class RuleChange:
    """Outcome of creating or updating a rule."""
    rule: DiscountRule
    outcome: Optional[ApplyOutcome] = None
    removed: Optional[BatchResult] = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DiscountService:
    """Service for managing and applying discount rules."""

    def __init__(self, store, engine: DiscountApplicationEngine):
        self.store = store
        self.engine = engine

    @property
    def discount_calculator(self):
        return self.engine.discount_calculator

    async def list_rules(self, include_inactive: bool = True) -> list[DiscountRule]:
        """List all discount rules."""
        rules = await self.store.list_discount_rules()
        if include_inactive:
            return rules
        return [r for r in rules if r.is_active]

    async def get_rule(self, rule_id: str) -> DiscountRule:
        """Get a single rule by ID."""
        rule = await self.store.get_discount_rule(rule_id)
        if rule is None:
            raise NotFound('Discount rule', rule_id)
        return rule

    def validate_rule(self, rule: DiscountRule) -> ValidationResult:
        """Validate a rule before saving."""
        return self.discount_calculator.validate_rule(rule)

    async def _generate_rule_id(self, title: str) -> str:
        """Generate a unique rule ID from the title."""
        base = re.sub(r'[^a-z0-9]+', '-', (title or '').lower()).strip('-')[:40] or 'discount'

        existing_ids = {r.id for r in await self.store.list_discount_rules()}
        candidate = base
        counter = 1
        while candidate in existing_ids:
            candidate = f"{base}-{counter}"
            counter += 1

        return candidate

    async def _record_outcome(self, rule: DiscountRule, outcome: ApplyOutcome):
        if outcome.batch is not None:
            rule.applied_product_ids = [
                r.product_id for r in outcome.batch.results if r.success and not r.skipped
            ]
        if outcome.applied or outcome.has_conflicts:
            rule.last_applied_at = _utcnow()
        await self.store.save_discount_rule(rule)

    async def _apply(self, rule: DiscountRule, resolutions=None) -> ApplyOutcome:
        outcome = await self.engine.apply_discount_to_targets(rule, resolutions)
        await self._record_outcome(rule, outcome)
        return outcome

    async def create_rule(self, rule: DiscountRule, auto_apply: bool = True) -> RuleChange:
        """Create a new rule and apply it to its targets."""
        validation = self.validate_rule(rule)
        if not validation.valid:
            raise ValidationError(validation.errors)

        if not rule.id:
            rule.id = await self._generate_rule_id(rule.title)
        elif await self.store.get_discount_rule(rule.id) is not None:
            raise ValidationError([f"Discount rule with ID '{rule.id}' already exists"])

        rule.title = rule.title.strip()
        rule.created_at = _utcnow()
        rule.applied_product_ids = []
        await self.store.save_discount_rule(rule)
        logger.info("Created discount rule %s", rule.id)

        change = RuleChange(rule=rule)
        if auto_apply and rule.is_active:
            change.outcome = await self._apply(rule)
        return change

    async def update_rule(self, rule_id: str, updated: DiscountRule, auto_apply: bool = True) -> RuleChange:
        """
        Update an existing rule.

        When the targets change, or the rule is switched off, the discount is
        first removed from the products it was applied to.
        """
        existing = await self.get_rule(rule_id)

        rule = replace(
            updated,
            id=rule_id,
            title=(updated.title or '').strip() or existing.title,
            created_at=existing.created_at,
            last_applied_at=existing.last_applied_at,
            applied_product_ids=list(existing.applied_product_ids),
        )

        validation = self.validate_rule(rule)
        if not validation.valid:
            raise ValidationError(validation.errors)

        change = RuleChange(rule=rule)
        if existing.targets_differ(rule) or not rule.is_active:
            change.removed = await self._remove_from_targets(existing)
            rule.applied_product_ids = []

        await self.store.save_discount_rule(rule)
        logger.info("Updated discount rule %s", rule_id)

        if auto_apply and rule.is_active:
            change.outcome = await self._apply(rule)
        return change

    async def _remove_from_targets(self, rule: DiscountRule) -> BatchResult:
        try:
            target_ids = await self.engine.get_target_product_ids(rule)
        except PricingError as e:
            logger.error("Could not resolve targets of %s: %s", rule.id, e)
            target_ids = []

        product_ids = list(dict.fromkeys(list(rule.applied_product_ids) + target_ids))
        removed = await self.engine.remove_discount_from_products(product_ids, discount_id=rule.id)
        logger.info(
            "Removed discount %s from %d products, %d failed",
            rule.id, removed.success_count, removed.fail_count,
        )
        return removed

    async def delete_rule(self, rule_id: str) -> BatchResult:
        """Delete a rule after removing its discount from every product it targets."""
        rule = await self.get_rule(rule_id)
        removed = await self._remove_from_targets(rule)
        await self.store.delete_discount_rule(rule_id)
        logger.info("Deleted discount rule %s", rule_id)
        return removed

    async def apply_rule(
        self, rule_id: str, resolutions: Optional[dict[str, ConflictAction]] = None
    ) -> ApplyOutcome:
        """Re-apply a saved rule, with decisions for any conflicting products."""
        rule = await self.get_rule(rule_id)
        if not rule.is_active:
            raise ValidationError(["Discount rule is inactive"])
        return await self._apply(rule, resolutions)

    def _ad_hoc_rule(self, discount_config: DiscountRule, product_ids: Sequence[str]) -> DiscountRule:
        rule = replace(
            discount_config,
            id=discount_config.id or f"manual-{uuid.uuid4().hex[:12]}",
            title=(discount_config.title or '').strip() or 'Manual discount',
            application_type=ApplicationType.PRODUCTS,
            target_collection_id=None,
            target_product_ids=list(product_ids),
            is_active=True,
        )
        validation = self.discount_calculator.validate_discount_config(rule)
        if not validation.valid:
            raise ValidationError(validation.errors)
        return rule

    async def apply_bulk(self, product_ids: Sequence[str], discount_config: DiscountRule) -> BatchResult:
        """Apply a discount configuration directly to selected products."""
        if not product_ids:
            raise ValidationError(["Product IDs are required"])
        rule = self._ad_hoc_rule(discount_config, product_ids)
        return await self.engine.apply_to_many(list(product_ids), rule)

    async def apply_to_collection(self, collection_id: str, discount_config: DiscountRule) -> BatchResult:
        """Apply a discount configuration to every product in a collection."""
        if not collection_id:
            raise ValidationError(["Collection ID is required"])

        members = await self.store.list_collection_members(
            collection_id, self.engine.settings.collection_member_limit
        )
        product_ids = [p.product_id for p in members]
        if not product_ids:
            raise ValidationError(["No products found in collection"])

        rule = self._ad_hoc_rule(discount_config, product_ids)
        return await self.engine.apply_to_many(product_ids, rule)

    async def resolve_conflict(self, product_id: str, discount_id: str, action) -> ApplicationResult:
        """Settle a single conflict reported by create/update."""
        try:
            action = ConflictAction(action)
        except ValueError:
            raise ValidationError(["Action must be: replace, keep_existing, or skip"])

        rule = await self.get_rule(discount_id)
        result = await self.engine.resolve_conflict(product_id, rule, action)

        if result.success and not result.skipped and product_id not in rule.applied_product_ids:
            rule.applied_product_ids.append(product_id)
            rule.last_applied_at = _utcnow()
            await self.store.save_discount_rule(rule)
        return result

    async def sync_collection(self, collection_id: str) -> list[SyncResult]:
        """Resync every active rule targeting a collection with its current members."""
        rules = [
            r for r in await self.store.list_discount_rules()
            if r.is_active
            and r.application_type is ApplicationType.COLLECTION
            and r.target_collection_id == collection_id
        ]
        if not rules:
            return []

        members = await self.store.list_collection_members(
            collection_id, self.engine.settings.collection_member_limit
        )
        member_ids = [p.product_id for p in members]

        results = []
        for rule in rules:
            sync = await self.engine.resync_collection_rule(rule, member_ids)
            added = [r.product_id for r in sync.added if r.success]
            rule.applied_product_ids = [
                pid for pid in rule.applied_product_ids if pid in set(member_ids)
            ] + added
            rule.last_applied_at = _utcnow()
            await self.store.save_discount_rule(rule)

            logger.info(
                "Collection %s synced for %s: %d added, %d removed, %d conflicts",
                collection_id, rule.id, len(added),
                sum(1 for r in sync.removed if r.success), len(sync.conflicts),
            )
            results.append(sync)
        return results

    async def handle_product_deleted(self, product_id: str) -> None:
        """Drop a deleted product's discount. Never raises."""
        try:
            await self.engine.remove_discount_from_products([product_id])
            for rule in await self.store.list_discount_rules():
                if product_id in rule.applied_product_ids:
                    rule.applied_product_ids.remove(product_id)
                    await self.store.save_discount_rule(rule)
        except Exception:
            logger.exception("Error handling deletion of product %s", product_id)
