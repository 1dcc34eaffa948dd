"""
File-backed store for local and single-shop deployments.

Layout of ``data_dir``:

- ``metal_rates.csv``       metal,rate
- ``stones.csv``            one row per slab (stone_id, stone_type, ..., from_weight, to_weight, price_per_carat)
- ``products.csv``          product + configuration columns; ``stones`` is a JSON list,
                            ``collections`` is a ``;``-separated list of collection ids
- ``discount_rules.json``   list of rule mappings
- ``product_discounts.json`` product_id → discount record mapping

File I/O runs in a worker thread so the event loop keeps serving requests
while a bulk job reads and writes; one lock per store serializes access to
the files.
"""
import asyncio
import json
import threading
from pathlib import Path
from typing import Optional

import pandas as pd

from ..engine.errors import ExternalWriteFailure, NotFound
from ..engine.models import (
    DiscountRule,
    MetalRates,
    PageInfo,
    Product,
    ProductConfiguration,
    ProductDiscountRecord,
    StoneCatalogEntry,
    StoneSlab,
    to_number,
)


PRODUCT_COLUMNS = [
    'product_id', 'title', 'sku', 'variant_ref', 'price', 'configured',
    'metal_weight', 'metal_type', 'making_charge_percent', 'labour_type', 'labour_value',
    'wastage_type', 'wastage_value', 'tax_percent', 'stones', 'collections',
]

STONE_COLUMNS = [
    'stone_id', 'stone_type', 'title', 'clarity', 'color', 'shape',
    'from_weight', 'to_weight', 'price_per_carat',
]

TEXT_COLUMNS = {
    'product_id': str, 'title': str, 'sku': str, 'variant_ref': str, 'configured': str,
    'metal_type': str, 'labour_type': str, 'wastage_type': str, 'stones': str, 'collections': str,
}


def _text(value) -> str:
    """Cell value as a stripped string; NaN becomes empty."""
    if value is None or (not isinstance(value, str) and pd.isna(value)):
        return ''
    return str(value).strip()


class CsvCatalogStore:
    """Reads and writes the CSV/JSON files under ``data_dir``."""

    def __init__(self, data_dir: Path):
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    @property
    def products_path(self) -> Path:
        return self.data_dir / 'products.csv'

    @property
    def stones_path(self) -> Path:
        return self.data_dir / 'stones.csv'

    @property
    def rates_path(self) -> Path:
        return self.data_dir / 'metal_rates.csv'

    @property
    def rules_path(self) -> Path:
        return self.data_dir / 'discount_rules.json'

    @property
    def discounts_path(self) -> Path:
        return self.data_dir / 'product_discounts.json'

    async def _io(self, func, *args):
        """Run a blocking file operation in a worker thread under the store lock."""
        return await asyncio.to_thread(self._locked, func, *args)

    def _locked(self, func, *args):
        with self._lock:
            return func(*args)

    # Rates

    async def get_metal_rates(self) -> Optional[MetalRates]:
        return await self._io(self._load_metal_rates)

    def _load_metal_rates(self) -> Optional[MetalRates]:
        if not self.rates_path.exists():
            return None
        df = pd.read_csv(self.rates_path, dtype={'metal': str})
        rates = dict(zip(df['metal'].str.strip(), df['rate'].astype(float)))
        if any(key not in rates for key in MetalRates.KEYS):
            return None
        return MetalRates.from_dict(rates)

    async def set_metal_rates(self, rates: MetalRates) -> None:
        await self._io(self._write_metal_rates, rates)

    def _write_metal_rates(self, rates: MetalRates):
        df = pd.DataFrame(
            [{'metal': key, 'rate': value} for key, value in rates.to_dict().items()]
        )
        df.to_csv(self.rates_path, index=False)

    # Stones

    def _read_stones(self) -> pd.DataFrame:
        if not self.stones_path.exists():
            return pd.DataFrame(columns=STONE_COLUMNS)
        return pd.read_csv(self.stones_path, dtype={'stone_id': str, 'stone_type': str})

    async def get_stone_catalog(self) -> list[StoneCatalogEntry]:
        return await self._io(self._load_stone_catalog)

    def _load_stone_catalog(self) -> list[StoneCatalogEntry]:
        df = self._read_stones()
        entries = []
        for stone_id, group in df.groupby('stone_id', sort=False):
            first = group.iloc[0]
            slabs = [
                StoneSlab(
                    from_weight=float(row['from_weight']),
                    to_weight=float(row['to_weight']),
                    price_per_carat=float(row['price_per_carat']),
                )
                for _, row in group.iterrows()
                if pd.notna(row['from_weight'])
            ]
            entries.append(StoneCatalogEntry(
                stone_id=_text(stone_id),
                stone_type=_text(first.get('stone_type')),
                slabs=slabs,
                title=_text(first.get('title')),
                clarity=_text(first.get('clarity')),
                color=_text(first.get('color')),
                shape=_text(first.get('shape')),
            ))
        return entries

    async def save_stone_entry(self, entry: StoneCatalogEntry) -> None:
        await self._io(self._write_stone_entry, entry)

    def _write_stone_entry(self, entry: StoneCatalogEntry):
        df = self._read_stones()
        df = df[df['stone_id'] != entry.stone_id]

        base = {
            'stone_id': entry.stone_id,
            'stone_type': entry.stone_type,
            'title': entry.title,
            'clarity': entry.clarity,
            'color': entry.color,
            'shape': entry.shape,
        }
        rows = [
            {**base, 'from_weight': s.from_weight, 'to_weight': s.to_weight, 'price_per_carat': s.price_per_carat}
            for s in entry.slabs
        ] or [base]

        new_rows = pd.DataFrame(rows, columns=STONE_COLUMNS)
        df = new_rows if df.empty else pd.concat([df, new_rows], ignore_index=True)
        df.to_csv(self.stones_path, index=False, columns=STONE_COLUMNS)

    # Products

    def _read_products(self) -> pd.DataFrame:
        if not self.products_path.exists():
            return pd.DataFrame(columns=PRODUCT_COLUMNS)
        df = pd.read_csv(self.products_path, dtype=TEXT_COLUMNS)
        for column in PRODUCT_COLUMNS:
            if column not in df.columns:
                df[column] = None
        return df

    def _read_discounts(self) -> dict[str, dict]:
        if not self.discounts_path.exists():
            return {}
        with open(self.discounts_path, 'r', encoding='utf-8') as f:
            return json.load(f)

    def _row_to_product(self, row: pd.Series, discounts: dict[str, dict]) -> Product:
        product_id = _text(row['product_id'])
        configured = _text(row.get('configured')).lower() == 'true'

        configuration = None
        if configured:
            stones_json = _text(row.get('stones'))
            configuration = ProductConfiguration.from_dict({
                'metal_weight': row.get('metal_weight'),
                'metal_type': _text(row.get('metal_type')),
                'making_charge_percent': row.get('making_charge_percent'),
                'labour_type': _text(row.get('labour_type')),
                'labour_value': row.get('labour_value'),
                'wastage_type': _text(row.get('wastage_type')),
                'wastage_value': row.get('wastage_value'),
                'tax_percent': row.get('tax_percent'),
                'stones': json.loads(stones_json) if stones_json else [],
            })

        record = discounts.get(product_id)
        price = row.get('price')

        return Product(
            product_id=product_id,
            title=_text(row.get('title')),
            variant_ref=_text(row.get('variant_ref')) or None,
            configured=configured,
            configuration=configuration,
            discount=ProductDiscountRecord.from_dict(record) if record else None,
            current_price=to_number(price) if pd.notna(price) else None,
            sku=_text(row.get('sku')) or None,
        )

    async def get_product_configuration(self, product_id: str) -> Product:
        return await self._io(self._load_product, product_id)

    def _load_product(self, product_id: str) -> Product:
        df = self._read_products()
        match = df[df['product_id'] == product_id]
        if match.empty:
            raise NotFound("Product", product_id)
        return self._row_to_product(match.iloc[0], self._read_discounts())

    async def list_configured_products(
        self, cursor: Optional[str] = None, page_size: int = 50
    ) -> tuple[list[Product], PageInfo]:
        return await self._io(self._load_configured_page, cursor, page_size)

    def _load_configured_page(self, cursor: Optional[str], page_size: int) -> tuple[list[Product], PageInfo]:
        df = self._read_products()
        configured = df[df['configured'].fillna('').str.strip().str.lower() == 'true']

        start = int(cursor) if cursor else 0
        page = configured.iloc[start:start + page_size]
        end = start + len(page)

        discounts = self._read_discounts()
        products = [self._row_to_product(row, discounts) for _, row in page.iterrows()]
        return products, PageInfo(
            has_next_page=end < len(configured),
            end_cursor=str(end) if products else cursor,
        )

    async def set_product_price(self, product_id: str, variant_ref: str, amount: float) -> None:
        await self._io(self._write_product_price, product_id, variant_ref, amount)

    def _write_product_price(self, product_id: str, variant_ref: str, amount: float):
        df = self._read_products()
        mask = df['product_id'] == product_id
        if not mask.any():
            raise NotFound("Product", product_id)
        if _text(df.loc[mask, 'variant_ref'].iloc[0]) != variant_ref:
            raise ExternalWriteFailure(f"Variant '{variant_ref}' does not belong to product", product_id)

        df['price'] = df['price'].astype(object)
        df.loc[mask, 'price'] = amount
        df.to_csv(self.products_path, index=False)

    async def set_product_discount_record(self, product_id: str, record: ProductDiscountRecord) -> None:
        await self._io(self._write_discount_record, product_id, record)

    def _write_discount_record(self, product_id: str, record: ProductDiscountRecord):
        discounts = self._read_discounts()
        discounts[product_id] = record.to_dict()
        with open(self.discounts_path, 'w', encoding='utf-8') as f:
            json.dump(discounts, f, indent=2)

    async def list_collection_members(self, collection_id: str, limit: int = 250) -> list[Product]:
        return await self._io(self._load_collection_members, collection_id, limit)

    def _load_collection_members(self, collection_id: str, limit: int) -> list[Product]:
        df = self._read_products()
        if df.empty:
            return []
        memberships = df['collections'].fillna('').str.split(';')
        members = df[memberships.apply(lambda ids: collection_id in [i.strip() for i in ids])]

        discounts = self._read_discounts()
        return [self._row_to_product(row, discounts) for _, row in members.head(limit).iterrows()]

    # Rules

    def _read_rules(self) -> list[DiscountRule]:
        if not self.rules_path.exists():
            return []
        with open(self.rules_path, 'r', encoding='utf-8') as f:
            data = json.load(f)
        return [DiscountRule.from_dict(item) for item in data]

    def _write_rules(self, rules: list[DiscountRule]):
        with open(self.rules_path, 'w', encoding='utf-8') as f:
            json.dump([rule.to_dict() for rule in rules], f, indent=2)

    async def list_discount_rules(self) -> list[DiscountRule]:
        return await self._io(self._read_rules)

    async def get_discount_rule(self, rule_id: str) -> Optional[DiscountRule]:
        for rule in await self.list_discount_rules():
            if rule.id == rule_id:
                return rule
        return None

    async def save_discount_rule(self, rule: DiscountRule) -> None:
        await self._io(self._replace_rule, rule)

    def _replace_rule(self, rule: DiscountRule):
        rules = [r for r in self._read_rules() if r.id != rule.id]
        rules.append(rule)
        self._write_rules(rules)

    async def delete_discount_rule(self, rule_id: str) -> None:
        await self._io(self._remove_rule, rule_id)

    def _remove_rule(self, rule_id: str):
        rules = self._read_rules()
        remaining = [r for r in rules if r.id != rule_id]
        if len(remaining) == len(rules):
            raise NotFound("Discount rule", rule_id)
        self._write_rules(remaining)
