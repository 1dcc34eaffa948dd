"""
Pricing Service - price preview, metal rates and the stone catalog.
"""
import logging
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Union

from ..config.settings import Settings, get_settings
from ..engine.application_engine import DiscountApplicationEngine
from ..engine.errors import NotFound, ValidationError
from ..engine.models import (
    DiscountRule,
    MetalRates,
    PriceBreakdown,
    ProductConfiguration,
    StoneCatalogEntry,
)

logger = logging.getLogger(__name__)


# Display order of the storefront rate ticker
RATE_LABELS = [
    ('gold24kt', 'Gold 24K'),
    ('gold22kt', 'Gold 22K'),
    ('gold18kt', 'Gold 18K'),
    ('gold14kt', 'Gold 14K'),
    ('silver', 'Silver'),
    ('platinum', 'Platinum'),
]


def format_inr(amount: float) -> str:
    """
    Format an amount with Indian digit grouping (lakhs, crores).

    >>> format_inr(1234567.5)
    '12,34,567.5'
    """
    value = Decimal(str(amount)).quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)
    sign = '-' if value < 0 else ''
    whole, _, fraction = f"{abs(value):.2f}".partition('.')

    head, tail = whole[:-3], whole[-3:]
    groups = []
    while len(head) > 2:
        groups.insert(0, head[-2:])
        head = head[:-2]
    if head:
        groups.insert(0, head)
    grouped = ','.join(groups + [tail])

    fraction = fraction.rstrip('0')
    return f"{sign}{grouped}.{fraction}" if fraction else f"{sign}{grouped}"


class PricingService:
    """Service for price previews, metal rates and stone slab pricing."""

    def __init__(self, store, engine: DiscountApplicationEngine, settings: Optional[Settings] = None):
        self.store = store
        self.engine = engine
        self.settings = settings or get_settings()

    async def calculate_price(
        self,
        config: Union[ProductConfiguration, dict],
        discount: Optional[DiscountRule] = None,
    ) -> PriceBreakdown:
        """
        Preview a price breakdown from current rates; nothing is written.

        Raises:
            ValidationError: an enabled discount block is incomplete or out of range
        """
        if isinstance(config, dict):
            config = ProductConfiguration.from_dict(config)
        if discount is not None and discount.enabled:
            validation = self.engine.discount_calculator.validate_discount_config(discount)
            if not validation.valid:
                raise ValidationError(validation.errors)
        calculator = await self.engine.get_price_calculator()
        catalog = await self.engine.get_stone_catalog()
        return calculator.calculate_price(config, discount, catalog)

    # ------------------------------------------------------------------
    # Metal rates
    # ------------------------------------------------------------------

    async def get_metal_rates(self) -> MetalRates:
        rates = await self.store.get_metal_rates()
        if rates is None:
            return MetalRates.from_dict(self.settings.default_metal_rates)
        return rates

    async def update_metal_rates(self, data: dict) -> MetalRates:
        """Replace the rate snapshot. Every key is required and must be positive."""
        errors = []
        values = {}
        for key in MetalRates.KEYS:
            raw = data.get(key)
            try:
                value = float(raw)
            except (TypeError, ValueError):
                errors.append(f"{key} is required")
                continue
            if value <= 0:
                errors.append(f"{key} must be greater than 0")
            values[key] = value

        if errors:
            raise ValidationError(errors)

        rates = MetalRates.from_dict(values)
        await self.store.set_metal_rates(rates)
        logger.info("Metal rates updated: %s", rates.to_dict())
        return rates

    async def formatted_metal_rates(self) -> dict:
        """Rates as display strings such as ``₹6,500/g`` plus the raw values."""
        rates = await self.get_metal_rates()
        raw = rates.to_dict()
        formatted = [
            {'label': label, 'price': f"₹{format_inr(raw[key])}/g", 'key': key}
            for key, label in RATE_LABELS
            if raw.get(key)
        ]
        return {'formatted': formatted, 'raw': raw}

    # ------------------------------------------------------------------
    # Stone catalog
    # ------------------------------------------------------------------

    async def list_stones(self) -> list[StoneCatalogEntry]:
        return await self.store.get_stone_catalog()

    async def get_stone(self, stone_id: str) -> StoneCatalogEntry:
        for entry in await self.store.get_stone_catalog():
            if entry.stone_id == stone_id:
                return entry
        raise NotFound('Stone', stone_id)

    def validate_stone(self, entry: StoneCatalogEntry) -> list[str]:
        errors = []
        if not entry.stone_id or not entry.stone_id.strip():
            errors.append("Stone ID is required")
        if not entry.stone_type or not entry.stone_type.strip():
            errors.append("Stone type is required")

        for index, slab in enumerate(entry.slabs, start=1):
            if slab.from_weight > slab.to_weight:
                errors.append(f"Slab {index}: from weight cannot be greater than to weight")
            if slab.price_per_carat < 0:
                errors.append(f"Slab {index}: price per carat cannot be negative")

        ordered = sorted(entry.slabs, key=lambda s: s.from_weight)
        for lower, upper in zip(ordered, ordered[1:]):
            if upper.from_weight < lower.to_weight:
                errors.append(
                    f"Slabs {lower.from_weight}-{lower.to_weight} and "
                    f"{upper.from_weight}-{upper.to_weight} overlap"
                )
        return errors

    async def save_stone(self, entry: StoneCatalogEntry) -> StoneCatalogEntry:
        """Create or update a stone entry and drop the engine's cached catalog."""
        errors = self.validate_stone(entry)
        if errors:
            raise ValidationError(errors)

        await self.store.save_stone_entry(entry)
        self.engine.clear_stone_cache()
        logger.info("Saved stone %s (%s) with %d slabs", entry.stone_id, entry.stone_type, len(entry.slabs))
        return entry

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    async def count_configured_products(self) -> int:
        count = 0
        cursor = None
        while True:
            page, page_info = await self.store.list_configured_products(
                cursor, self.settings.refresh_page_size
            )
            count += len(page)
            if not page_info.has_next_page:
                return count
            cursor = page_info.end_cursor

    async def get_status(self) -> dict:
        rates = await self.get_metal_rates()
        return {
            'metal_rates': rates.to_dict(),
            'configured_products': await self.count_configured_products(),
            'last_updated': datetime.now(timezone.utc).isoformat(),
        }
