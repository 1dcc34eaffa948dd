import os
import sys

import pytest

# Add src to path for internal imports
src_path = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), 'src')
if src_path not in sys.path:
    sys.path.insert(0, src_path)

from jewel_pricing.config.settings import DEFAULT_METAL_RATES, Settings
from jewel_pricing.engine.models import (
    ApplicationType,
    DiamondRules,
    DiscountRule,
    GoldRules,
    LabourType,
    MetalRates,
    Product,
    ProductConfiguration,
    SilverRules,
    StoneCatalogEntry,
    StoneLine,
    StoneSlab,
    WastageType,
    WeightSlab,
)
from jewel_pricing.stores.memory import InMemoryStore


@pytest.fixture
def rates():
    return MetalRates.from_dict(DEFAULT_METAL_RATES)


@pytest.fixture
def settings(tmp_path):
    return Settings(data_dir=tmp_path)


@pytest.fixture
def reference_config():
    """4.54 g of 22kt gold with a manually priced 160 ruby and 3% tax."""
    return ProductConfiguration(
        metal_weight=4.54,
        metal_type='gold22kt',
        making_charge_percent=10,
        labour_type=LabourType.PERCENTAGE,
        labour_value=5,
        wastage_type=WastageType.PERCENTAGE,
        wastage_value=3,
        stones=[StoneLine(stone_id='ruby-01', weight=0.5, count=1, cost=160, stone_type='ruby')],
        tax_percent=3,
    )


@pytest.fixture
def stone_catalog():
    return [
        StoneCatalogEntry(
            stone_id='dia-vs1',
            stone_type='Diamond',
            title='VS1 Round',
            slabs=[
                StoneSlab(from_weight=0.51, to_weight=1.0, price_per_carat=60000),
                StoneSlab(from_weight=0.0, to_weight=0.5, price_per_carat=40000),
            ],
        ),
        StoneCatalogEntry(stone_id='ruby-01', stone_type='ruby', title='Ruby'),
    ]


def _make_rule(
    rule_id='festive',
    title='Festive Sale',
    product_ids=None,
    collection_id=None,
    gold=10.0,
    diamond=500.0,
    silver_slabs=((0, 10, 50), (10, 50, 150)),
    is_active=True,
):
    return DiscountRule(
        id=rule_id,
        title=title,
        application_type=ApplicationType.COLLECTION if collection_id else ApplicationType.PRODUCTS,
        target_collection_id=collection_id,
        target_product_ids=list(product_ids or []),
        gold_rules=GoldRules(enabled=gold is not None, discount_percentage=gold),
        diamond_rules=DiamondRules(enabled=diamond is not None, discount_amount=diamond),
        silver_rules=SilverRules(
            enabled=silver_slabs is not None,
            weight_slabs=[WeightSlab(f, t, a) for f, t, a in silver_slabs or []],
        ),
        is_active=is_active,
    )


@pytest.fixture
def make_rule():
    """Factory for discount rules; every block enabled unless set to None."""
    return _make_rule


def _catalog_products():
    return [
        Product(
            product_id='gold-1',
            title='Gold Bangle',
            variant_ref='v-gold-1',
            configured=True,
            configuration=ProductConfiguration(
                metal_weight=10, metal_type='gold22kt', making_charge_percent=10,
                labour_value=5, wastage_value=3, tax_percent=3,
            ),
            current_price=70000,
        ),
        Product(
            product_id='diamond-1',
            title='Diamond Ring',
            variant_ref='v-diamond-1',
            configured=True,
            configuration=ProductConfiguration(
                metal_weight=3, metal_type='gold18kt', making_charge_percent=12,
                stones=[StoneLine(stone_id='dia-vs1', weight=0.3, count=2)],
                tax_percent=3,
            ),
        ),
        Product(
            product_id='silver-1',
            title='Silver Anklet',
            variant_ref='v-silver-1',
            configured=True,
            configuration=ProductConfiguration(
                metal_weight=25, metal_type='silver', making_charge_percent=8, tax_percent=3,
            ),
        ),
        Product(
            product_id='gold-2',
            title='Gold Chain',
            variant_ref='v-gold-2',
            configured=True,
            configuration=ProductConfiguration(metal_weight=5, metal_type='gold22kt'),
        ),
        Product(product_id='unconfigured-1', title='Gift Card', variant_ref='v-gift'),
    ]


@pytest.fixture
def store(rates, stone_catalog):
    """
    In-memory storefront with four configured products.

    Expected transacted prices (no discount / with the default rule):
    gold-1 79001 / 77796, diamond-1 43755 / 43240, silver-1 2225 / 2071.
    """
    return InMemoryStore(
        metal_rates=rates,
        stone_catalog=stone_catalog,
        products=_catalog_products(),
        collections={'festive-collection': ['gold-1', 'diamond-1', 'silver-1']},
    )
