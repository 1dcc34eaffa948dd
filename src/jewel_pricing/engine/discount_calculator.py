"""
Discount Calculator - product type classification and per-type discounts.

Every discount rule carries one block per product type:

- gold:    percentage off (making + labour + wastage)
- diamond: fixed amount off the stone cost, never more than the stone cost
- silver:  flat amount picked from inclusive metal-weight slabs
"""
from dataclasses import dataclass, field
from typing import Optional, Sequence

from .models import (
    ApplicationType,
    DiscountResult,
    DiscountRule,
    PriceBreakdown,
    ProductConfiguration,
    ProductType,
    StoneCatalogEntry,
    round_price,
)


@dataclass
class ValidationResult:
    """Result of rule validation."""
    valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def add_error(self, error: str):
        self.errors.append(error)
        self.valid = False


def classify_product(
    config: ProductConfiguration,
    stone_catalog: Optional[Sequence[StoneCatalogEntry]] = None,
) -> ProductType:
    """
    Classify a product's commodity type.

    Precedence: any diamond stone → DIAMOND, silver metal → SILVER, else GOLD
    (all gold purities and platinum). Stones are resolved through the catalog;
    with no catalog the stone's own label is matched instead, which can
    misclassify a product whose labels don't mention the stone type.
    """
    if config.stones:
        if stone_catalog:
            diamond_ids = {entry.stone_id for entry in stone_catalog if entry.is_diamond}
            has_diamond = any(line.stone_id in diamond_ids for line in config.stones)
        else:
            has_diamond = any(
                ProductType.DIAMOND.value in (line.stone_type or line.stone_id or '').lower()
                for line in config.stones
            )
        if has_diamond:
            return ProductType.DIAMOND

    if ProductType.SILVER.value in (config.metal_type or '').lower():
        return ProductType.SILVER

    return ProductType.GOLD


class DiscountCalculator:
    """Computes discount amounts and validates discount rules."""

    def detect_product_type(
        self,
        config: ProductConfiguration,
        stone_catalog: Optional[Sequence[StoneCatalogEntry]] = None,
    ) -> ProductType:
        return classify_product(config, stone_catalog)

    def calculate_discount(
        self,
        breakdown: PriceBreakdown,
        config: ProductConfiguration,
        rule: Optional[DiscountRule],
        stone_catalog: Optional[Sequence[StoneCatalogEntry]] = None,
    ) -> DiscountResult:
        """
        Evaluate a rule against a price breakdown.

        Args:
            breakdown: Undiscounted breakdown from the price calculator
            config: Product configuration (weight, metal, stones)
            rule: Discount rule, possibly scoped to a single product type
            stone_catalog: Optional gem catalog for accurate classification

        Returns:
            DiscountResult; amount is 0 when the rule is missing, disabled, or
            its block for the product's type is disabled
        """
        product_type = self.detect_product_type(config, stone_catalog)

        if rule is None or not rule.enabled or not rule.rules_enabled_for(product_type):
            return DiscountResult(product_type=product_type)

        if product_type is ProductType.DIAMOND:
            result = self.calculate_diamond_discount(breakdown, rule)
        elif product_type is ProductType.SILVER:
            result = self.calculate_silver_discount(config, rule)
        else:
            result = self.calculate_gold_discount(breakdown, rule)

        result.product_type = product_type
        result.discount_amount = round_price(max(0.0, result.discount_amount))
        return result

    def calculate_gold_discount(self, breakdown: PriceBreakdown, rule: DiscountRule) -> DiscountResult:
        """Percentage off the effective making charge (making + labour + wastage)."""
        percent = rule.gold_rules.discount_percentage or 0.0
        effective_making_charge = (
            breakdown.making_charge + breakdown.labour_charge + breakdown.wastage_charge
        )
        return DiscountResult(
            discount_amount=effective_making_charge * percent / 100,
            discount_type='percentage',
            applied_on='making_labour_wastage',
        )

    def calculate_diamond_discount(self, breakdown: PriceBreakdown, rule: DiscountRule) -> DiscountResult:
        """Fixed amount off the stone cost, capped at the stone cost."""
        amount = rule.diamond_rules.discount_amount or 0.0
        return DiscountResult(
            discount_amount=max(0.0, min(amount, breakdown.stone_cost)),
            discount_type='fixed',
            applied_on='stone_cost',
        )

    def calculate_silver_discount(self, config: ProductConfiguration, rule: DiscountRule) -> DiscountResult:
        """Flat amount of the slab containing the metal weight, 0 if none does."""
        slab = rule.silver_rules.find_slab(config.metal_weight)
        return DiscountResult(
            discount_amount=(slab.amount or 0.0) if slab else 0.0,
            discount_type='slab',
            applied_on='weight_slab',
        )

    def validate_rule(self, rule: DiscountRule) -> ValidationResult:
        """
        Validate a rule before it is created or updated.

        All three type blocks must be enabled and valid, since a rule may
        end up applied to a product of any type.
        """
        result = ValidationResult(valid=True)

        if not rule.title or not rule.title.strip():
            result.add_error("Discount title is required")

        if rule.application_type is ApplicationType.COLLECTION:
            if not rule.target_collection_id:
                result.add_error("Target collection ID is required for collection application")
        elif rule.application_type is ApplicationType.PRODUCTS:
            if not rule.target_product_ids:
                result.add_error("Target product IDs are required for products application")
        else:
            result.add_error('Application type must be "collection" or "products"')

        self._validate_gold(rule, result)
        self._validate_diamond(rule, result)
        self._validate_silver(rule, result)

        if result.valid and not rule.is_active:
            result.warnings.append("Rule is inactive and will not be applied")

        return result

    def validate_discount_config(self, rule: DiscountRule) -> ValidationResult:
        """
        Validate an ad hoc discount used for bulk or collection application.

        Only the enabled blocks are checked, and at least one must be enabled.
        """
        result = ValidationResult(valid=True)
        if not (rule.gold_rules.enabled or rule.diamond_rules.enabled or rule.silver_rules.enabled):
            result.add_error("At least one product type rule must be enabled")
            return result

        self._validate_gold(rule, result, required=False)
        self._validate_diamond(rule, result, required=False)
        self._validate_silver(rule, result, required=False)
        return result

    def _validate_gold(self, rule: DiscountRule, result: ValidationResult, required: bool = True):
        gold = rule.gold_rules
        if not gold.enabled:
            if required:
                result.add_error("Gold product rules must be configured and enabled")
        elif gold.discount_percentage is None:
            result.add_error("Gold discount percentage is required")
        elif not 0 <= gold.discount_percentage <= 100:
            result.add_error("Gold discount percentage must be between 0 and 100")
        elif gold.discount_percentage == 0:
            result.warnings.append("Gold discount percentage is 0; gold products get no discount")

    def _validate_diamond(self, rule: DiscountRule, result: ValidationResult, required: bool = True):
        diamond = rule.diamond_rules
        if not diamond.enabled:
            if required:
                result.add_error("Diamond product rules must be configured and enabled")
        elif diamond.discount_amount is None:
            result.add_error("Diamond discount amount is required")
        elif diamond.discount_amount < 0:
            result.add_error("Diamond discount amount must be positive")

    def _validate_silver(self, rule: DiscountRule, result: ValidationResult, required: bool = True):
        silver = rule.silver_rules
        if not silver.enabled:
            if required:
                result.add_error("Silver product rules must be configured and enabled")
            return
        if not silver.weight_slabs:
            result.add_error("Silver discount requires at least one weight slab")
            return

        complete = []
        for index, slab in enumerate(silver.weight_slabs, start=1):
            if slab.from_weight is None or slab.to_weight is None or slab.amount is None:
                result.add_error(f"Silver slab {index}: All fields (from, to, amount) must be numeric")
                continue
            if slab.from_weight > slab.to_weight:
                result.add_error(f"Silver slab {index}: from weight cannot be greater than to weight")
            if slab.amount < 0:
                result.add_error(f"Silver slab {index}: discount amount must be positive")
            complete.append(slab)

        # Touching bounds are allowed; the lower slab wins at the shared weight
        ordered = sorted(complete, key=lambda s: s.from_weight)
        for lower, upper in zip(ordered, ordered[1:]):
            if upper.from_weight < lower.to_weight:
                result.add_error(
                    f"Silver slabs {lower.from_weight}-{lower.to_weight} and "
                    f"{upper.from_weight}-{upper.to_weight} overlap"
                )
