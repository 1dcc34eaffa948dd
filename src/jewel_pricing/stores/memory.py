"""
In-memory store.

Backs the test-suite and local demos. Every write is appended to ``writes``
so callers can assert exactly what reached the storefront.
"""
import asyncio
import copy
from dataclasses import replace
from typing import Optional

from ..engine.errors import ExternalWriteFailure, NotFound
from ..engine.models import (
    DiscountRule,
    MetalRates,
    PageInfo,
    Product,
    ProductDiscountRecord,
    StoneCatalogEntry,
)


class InMemoryStore:
    """Dict-backed implementation of every store interface."""

    def __init__(
        self,
        metal_rates: Optional[MetalRates] = None,
        stone_catalog: Optional[list[StoneCatalogEntry]] = None,
        products: Optional[list[Product]] = None,
        collections: Optional[dict[str, list[str]]] = None,
        latency: float = 0.0,
    ):
        self.metal_rates = metal_rates
        self.stones: dict[str, StoneCatalogEntry] = {s.stone_id: s for s in stone_catalog or []}
        self.products: dict[str, Product] = {p.product_id: p for p in products or []}
        self.collections: dict[str, list[str]] = {k: list(v) for k, v in (collections or {}).items()}
        self.rules: dict[str, DiscountRule] = {}
        self.latency = latency

        # (operation, product_id, payload) for every storefront write
        self.writes: list[tuple[str, str, object]] = []
        self.stone_catalog_reads = 0

    async def _pause(self):
        await asyncio.sleep(self.latency)

    # Rates

    async def get_metal_rates(self) -> Optional[MetalRates]:
        await self._pause()
        return self.metal_rates

    async def set_metal_rates(self, rates: MetalRates) -> None:
        await self._pause()
        self.metal_rates = rates

    # Stones

    async def get_stone_catalog(self) -> list[StoneCatalogEntry]:
        await self._pause()
        self.stone_catalog_reads += 1
        return [copy.deepcopy(s) for s in self.stones.values()]

    async def save_stone_entry(self, entry: StoneCatalogEntry) -> None:
        await self._pause()
        self.stones[entry.stone_id] = copy.deepcopy(entry)

    # Products

    async def get_product_configuration(self, product_id: str) -> Product:
        await self._pause()
        product = self.products.get(product_id)
        if product is None:
            raise NotFound("Product", product_id)
        return copy.deepcopy(product)

    async def list_configured_products(
        self, cursor: Optional[str] = None, page_size: int = 50
    ) -> tuple[list[Product], PageInfo]:
        await self._pause()
        configured = [p for p in self.products.values() if p.configured]
        start = int(cursor) if cursor else 0
        page = configured[start:start + page_size]
        end = start + len(page)
        return (
            [copy.deepcopy(p) for p in page],
            PageInfo(has_next_page=end < len(configured), end_cursor=str(end) if page else cursor),
        )

    async def set_product_price(self, product_id: str, variant_ref: str, amount: float) -> None:
        await self._pause()
        product = self.products.get(product_id)
        if product is None:
            raise NotFound("Product", product_id)
        if product.variant_ref != variant_ref:
            raise ExternalWriteFailure(f"Variant '{variant_ref}' does not belong to product", product_id)
        self.products[product_id] = replace(product, current_price=amount)
        self.writes.append(('price', product_id, amount))

    async def set_product_discount_record(self, product_id: str, record: ProductDiscountRecord) -> None:
        await self._pause()
        product = self.products.get(product_id)
        if product is None:
            raise NotFound("Product", product_id)
        self.products[product_id] = replace(product, discount=copy.deepcopy(record))
        self.writes.append(('discount', product_id, record))

    async def list_collection_members(self, collection_id: str, limit: int = 250) -> list[Product]:
        await self._pause()
        member_ids = self.collections.get(collection_id, [])[:limit]
        return [copy.deepcopy(self.products[pid]) for pid in member_ids if pid in self.products]

    # Rules

    async def list_discount_rules(self) -> list[DiscountRule]:
        await self._pause()
        return [copy.deepcopy(r) for r in self.rules.values()]

    async def get_discount_rule(self, rule_id: str) -> Optional[DiscountRule]:
        await self._pause()
        rule = self.rules.get(rule_id)
        return copy.deepcopy(rule) if rule else None

    async def save_discount_rule(self, rule: DiscountRule) -> None:
        await self._pause()
        self.rules[rule.id] = copy.deepcopy(rule)

    async def delete_discount_rule(self, rule_id: str) -> None:
        await self._pause()
        if self.rules.pop(rule_id, None) is None:
            raise NotFound("Discount rule", rule_id)
