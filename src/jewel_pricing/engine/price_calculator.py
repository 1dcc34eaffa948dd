"""
Jewelry Price Calculator - deterministic price breakdown from metal rates.

    metal cost      = weight × rate
    making charge   = metal cost × making %
    labour charge   = % of metal cost, or fixed
    wastage charge  = % of metal cost, fixed, or grams × rate
    stone cost      = diamond slab pricing, or the line's stored cost
    subtotal        = sum of the above
    tax             = on the discounted subtotal when a discount applies

Intermediate values keep full precision; outputs are rounded to 2 places.
"""
from dataclasses import replace
from typing import Optional, Sequence

from .discount_calculator import DiscountCalculator
from .errors import InvalidConfiguration
from .models import (
    DiscountResult,
    DiscountRule,
    LabourType,
    MetalRates,
    PriceBreakdown,
    ProductConfiguration,
    StoneCatalogEntry,
    StoneLine,
    WastageType,
    round_price,
)


MONETARY_FIELDS = (
    'metal_cost', 'making_charge', 'labour_charge', 'wastage_charge', 'stone_cost',
    'subtotal', 'discounted_subtotal', 'tax_amount', 'final_price',
    'final_price_after_discount', 'price_before_discount',
)


class StoneCalculator:
    """Prices stone lines against the gem catalog."""

    def __init__(self, stone_catalog: Optional[Sequence[StoneCatalogEntry]] = None):
        self.entries = {entry.stone_id: entry for entry in (stone_catalog or [])}

    def line_cost(self, line: StoneLine, warnings: Optional[list[str]] = None) -> float:
        """
        Diamonds are priced from the slab containing the line's weight;
        every other stone uses the line's stored cost.
        """
        entry = self.entries.get(line.stone_id)
        if entry is None or not entry.is_diamond:
            return line.cost

        slab = entry.find_slab(line.weight)
        if slab is None:
            if warnings is not None:
                warnings.append(
                    f"No price slab for diamond '{line.stone_id}' at {line.weight} ct; "
                    "stone priced at 0"
                )
            return 0.0
        return line.weight * slab.price_per_carat * line.count

    def total_cost(self, stones: Sequence[StoneLine], warnings: Optional[list[str]] = None) -> float:
        return sum((self.line_cost(line, warnings) for line in stones), 0.0)


class PriceCalculator:
    """
    Computes product price breakdowns from a metal rate snapshot.

    Pure and synchronous: the same configuration, rates and catalog always
    produce the same breakdown.
    """

    def __init__(self, metal_rates: MetalRates, discount_calculator: Optional[DiscountCalculator] = None):
        self.metal_rates = metal_rates
        self.discount_calculator = discount_calculator or DiscountCalculator()

    def calculate_price(
        self,
        config: ProductConfiguration,
        discount: Optional[DiscountRule] = None,
        stone_catalog: Optional[Sequence[StoneCatalogEntry]] = None,
    ) -> PriceBreakdown:
        """
        Calculate complete product pricing.

        Args:
            config: Product configuration
            discount: Optional discount rule; ignored when disabled
            stone_catalog: Optional gem catalog for diamond slab pricing

        Returns:
            PriceBreakdown rounded to 2 decimal places

        Raises:
            InvalidConfiguration: unknown metal type or non-positive weight
        """
        metal_rate = self.metal_rates.rate_for(config.metal_type)
        if config.metal_weight is None or config.metal_weight <= 0:
            raise InvalidConfiguration("Metal weight must be greater than 0")

        warnings: list[str] = []

        # 1. Metal Cost
        metal_cost = config.metal_weight * metal_rate

        # 2. Making Charge
        making_charge = metal_cost * config.making_charge_percent / 100

        # 3. Labour Charge
        if config.labour_type is LabourType.PERCENTAGE:
            labour_charge = metal_cost * config.labour_value / 100
        else:
            labour_charge = config.labour_value

        # 4. Wastage Charge
        if config.wastage_type is WastageType.PERCENTAGE:
            wastage_charge = metal_cost * config.wastage_value / 100
        elif config.wastage_type is WastageType.WEIGHT:
            wastage_charge = config.wastage_value * metal_rate
        else:
            wastage_charge = config.wastage_value

        # 5. Stones
        stone_cost = StoneCalculator(stone_catalog).total_cost(config.stones, warnings)

        # 6. Subtotal
        subtotal = metal_cost + making_charge + labour_charge + wastage_charge + stone_cost

        breakdown = self._assemble(
            metal_cost, making_charge, labour_charge, wastage_charge, stone_cost,
            subtotal, DiscountResult(), config.tax_percent, metal_rate, warnings,
        )

        # 7. Discount
        if discount is not None and discount.enabled:
            result = self.discount_calculator.calculate_discount(breakdown, config, discount, stone_catalog)
            breakdown = self._assemble(
                metal_cost, making_charge, labour_charge, wastage_charge, stone_cost,
                subtotal, result, config.tax_percent, metal_rate, warnings,
            )

        return self._rounded(breakdown)

    def _assemble(
        self,
        metal_cost: float,
        making_charge: float,
        labour_charge: float,
        wastage_charge: float,
        stone_cost: float,
        subtotal: float,
        discount: DiscountResult,
        tax_percent: float,
        metal_rate: float,
        warnings: list[str],
    ) -> PriceBreakdown:
        discount_amount = discount.discount_amount
        discounted_subtotal = max(0.0, subtotal - discount_amount)
        taxable = discounted_subtotal if discount_amount > 0 else subtotal
        tax_amount = taxable * tax_percent / 100

        final_price = subtotal + subtotal * tax_percent / 100

        return PriceBreakdown(
            metal_cost=metal_cost,
            making_charge=making_charge,
            labour_charge=labour_charge,
            wastage_charge=wastage_charge,
            stone_cost=stone_cost,
            subtotal=subtotal,
            discount=discount,
            discounted_subtotal=discounted_subtotal,
            tax_amount=tax_amount,
            final_price=final_price,
            final_price_after_discount=discounted_subtotal + tax_amount,
            price_before_discount=final_price,
            metal_rate=metal_rate,
            warnings=warnings,
        )

    def _rounded(self, breakdown: PriceBreakdown) -> PriceBreakdown:
        return replace(
            breakdown,
            warnings=list(breakdown.warnings),
            **{name: round_price(getattr(breakdown, name)) for name in MONETARY_FIELDS},
        )

    def update_metal_rates(self, metal_rates: MetalRates):
        """Swap in a new rate snapshot."""
        self.metal_rates = metal_rates
