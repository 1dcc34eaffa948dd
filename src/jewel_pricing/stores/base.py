"""
Interfaces of the external collaborators the pricing core reads and writes.

All operations are coroutines: they are the only suspension points of the
engine and the refresh jobs.
"""
from typing import Optional, Protocol

from ..engine.models import (
    DiscountRule,
    MetalRates,
    PageInfo,
    Product,
    ProductDiscountRecord,
    StoneCatalogEntry,
)


class RateStore(Protocol):
    async def get_metal_rates(self) -> Optional[MetalRates]:
        """Current rate snapshot, or None if rates were never set."""
        ...

    async def set_metal_rates(self, rates: MetalRates) -> None:
        ...


class StoneStore(Protocol):
    async def get_stone_catalog(self) -> list[StoneCatalogEntry]:
        ...

    async def save_stone_entry(self, entry: StoneCatalogEntry) -> None:
        ...


class ProductStore(Protocol):
    async def get_product_configuration(self, product_id: str) -> Product:
        """Raises NotFound for unknown products."""
        ...

    async def list_configured_products(
        self, cursor: Optional[str] = None, page_size: int = 50
    ) -> tuple[list[Product], PageInfo]:
        ...

    async def set_product_price(self, product_id: str, variant_ref: str, amount: float) -> None:
        """Raises ExternalWriteFailure when the write is rejected."""
        ...

    async def set_product_discount_record(self, product_id: str, record: ProductDiscountRecord) -> None:
        ...

    async def list_collection_members(self, collection_id: str, limit: int = 250) -> list[Product]:
        ...


class RuleStore(Protocol):
    async def list_discount_rules(self) -> list[DiscountRule]:
        ...

    async def get_discount_rule(self, rule_id: str) -> Optional[DiscountRule]:
        ...

    async def save_discount_rule(self, rule: DiscountRule) -> None:
        ...

    async def delete_discount_rule(self, rule_id: str) -> None:
        ...


class CatalogStore(RateStore, StoneStore, ProductStore, RuleStore, Protocol):
    """Everything the services need, usually backed by a single storefront."""
