"""
Discount application against the in-memory storefront.
"""
import asyncio
from types import SimpleNamespace

import pytest

from jewel_pricing.engine.application_engine import DiscountApplicationEngine
from jewel_pricing.engine.errors import ExternalWriteFailure
from jewel_pricing.engine.models import (
    ConflictAction,
    DiscountStatus,
    ProductDiscountRecord,
    ProductType,
)


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def engine(store, settings):
    return DiscountApplicationEngine(store, settings)


def run(coro):
    return asyncio.run(coro)


def _existing_discount(discount_id='monsoon'):
    return ProductDiscountRecord(
        status=DiscountStatus.ACTIVE,
        discount_id=discount_id,
        discount_title='Monsoon Offer',
        applied_rule_type=ProductType.GOLD,
        discount_amount=100,
    )


def test_apply_writes_ceiling_price_and_active_record(engine, store, make_rule):
    result = run(engine.apply_to_product('gold-1', make_rule()))

    assert result.success, result.error
    assert result.product_type is ProductType.GOLD
    assert result.discount_amount == 1170.00
    assert result.new_price == 77796

    product = store.products['gold-1']
    assert product.current_price == 77796
    assert product.discount.enabled
    assert product.discount.discount_id == 'festive'
    assert product.discount.applied_rule_type is ProductType.GOLD
    assert product.discount.discount_amount == 1170.00


@pytest.mark.parametrize("product_id,product_type,price", [
    ('diamond-1', ProductType.DIAMOND, 43240),
    ('silver-1', ProductType.SILVER, 2071),
])
def test_apply_uses_block_of_product_type(engine, store, make_rule, product_id, product_type, price):
    result = run(engine.apply_to_product(product_id, make_rule()))

    assert result.success, result.error
    assert result.product_type is product_type
    assert store.products[product_id].current_price == price


def test_apply_fails_for_unconfigured_product(engine, store, make_rule):
    result = run(engine.apply_to_product('unconfigured-1', make_rule()))

    assert not result.success
    assert result.error == "Product not configured"
    assert store.writes == []


def test_apply_fails_when_type_block_disabled(engine, store, make_rule):
    result = run(engine.apply_to_product('silver-1', make_rule(silver_slabs=None)))

    assert not result.success
    assert result.error == "No matching discount rule for product type: silver"
    assert store.writes == []


def test_apply_to_unknown_product_is_a_failed_result(engine, make_rule):
    result = run(engine.apply_to_product('missing', make_rule()))
    assert not result.success
    assert 'missing' in result.error


def test_rejected_price_write_fails_only_that_product(engine, store, make_rule):
    original = store.set_product_price

    async def reject_silver(product_id, variant_ref, amount):
        if product_id == 'silver-1':
            raise ExternalWriteFailure("Variant rejected", product_id)
        await original(product_id, variant_ref, amount)

    store.set_product_price = reject_silver
    batch = run(engine.apply_to_many(['gold-1', 'silver-1', 'diamond-1'], make_rule()))

    assert batch.total_products == 3
    assert batch.success_count == 2
    assert batch.fail_count == 1
    assert batch.failures[0].product_id == 'silver-1'
    assert batch.failures[0].error == "Variant rejected"
    assert store.products['silver-1'].discount is None


def test_conflict_gate_blocks_every_write(engine, store, make_rule):
    store.products['gold-1'].discount = _existing_discount()
    store.products['silver-1'].discount = _existing_discount()
    rule = make_rule(product_ids=['gold-1', 'diamond-1', 'silver-1', 'gold-2'])

    outcome = run(engine.apply_discount_to_targets(rule))

    assert outcome.has_conflicts
    assert not outcome.applied
    assert sorted(c.product_id for c in outcome.conflicts) == ['gold-1', 'silver-1']
    assert outcome.conflicts[0].existing_discount.discount_id == 'monsoon'
    assert store.writes == []


def test_inactive_existing_discount_is_not_a_conflict(engine, store, make_rule):
    store.products['gold-1'].discount = _existing_discount().deactivated()
    outcome = run(engine.apply_discount_to_targets(make_rule(product_ids=['gold-1'])))

    assert not outcome.has_conflicts
    assert outcome.batch.success_count == 1


def test_reapplying_same_rule_is_not_a_conflict(engine, store, make_rule):
    rule = make_rule(product_ids=['gold-1', 'silver-1'])
    run(engine.apply_discount_to_targets(rule))
    outcome = run(engine.apply_discount_to_targets(rule))

    assert not outcome.has_conflicts
    assert outcome.batch.success_count == 2


def test_collection_targets(engine, make_rule):
    outcome = run(engine.apply_discount_to_targets(make_rule(collection_id='festive-collection')))

    assert outcome.total_products == 3
    assert outcome.batch.success_count == 3


def test_no_targets(engine, make_rule):
    outcome = run(engine.apply_discount_to_targets(make_rule(collection_id='empty-collection')))
    assert outcome.error == "No target products found"
    assert not outcome.applied


def test_resolutions_let_the_batch_proceed(engine, store, make_rule):
    store.products['gold-1'].discount = _existing_discount()
    store.products['silver-1'].discount = _existing_discount()
    rule = make_rule(product_ids=['gold-1', 'diamond-1', 'silver-1'])

    outcome = run(engine.apply_discount_to_targets(rule, {
        'gold-1': ConflictAction.REPLACE,
        'silver-1': ConflictAction.KEEP_EXISTING,
    }))

    assert outcome.applied
    assert outcome.batch.total_products == 3
    assert store.products['gold-1'].discount.discount_id == 'festive'
    assert store.products['diamond-1'].discount.discount_id == 'festive'
    assert store.products['silver-1'].discount.discount_id == 'monsoon'


def test_partial_resolutions_still_block(engine, store, make_rule):
    store.products['gold-1'].discount = _existing_discount()
    store.products['silver-1'].discount = _existing_discount()
    rule = make_rule(product_ids=['gold-1', 'silver-1'])

    outcome = run(engine.apply_discount_to_targets(rule, {'gold-1': ConflictAction.REPLACE}))

    assert [c.product_id for c in outcome.conflicts] == ['silver-1']
    assert store.writes == []


def test_resolve_conflict_replace(engine, store, make_rule):
    store.products['gold-1'].discount = _existing_discount()
    result = run(engine.resolve_conflict('gold-1', make_rule(), ConflictAction.REPLACE))

    assert result.success
    discount_writes = [payload for op, _, payload in store.writes if op == 'discount']
    assert discount_writes[0].status is DiscountStatus.INACTIVE
    assert discount_writes[0].discount_id == 'monsoon'
    assert store.products['gold-1'].discount.discount_id == 'festive'


def test_failed_replace_leaves_undiscounted_price(engine, store, make_rule):
    run(engine.apply_to_product('silver-1', make_rule(rule_id='monsoon')))
    assert store.products['silver-1'].current_price == 2071

    oversized = make_rule(rule_id='clearance', silver_slabs=((0, 50, 1e9),))
    result = run(engine.resolve_conflict('silver-1', oversized, ConflictAction.REPLACE))

    assert not result.success
    product = store.products['silver-1']
    assert product.discount.status is DiscountStatus.INACTIVE
    assert product.discount.discount_id == 'monsoon'
    assert product.current_price == 2225


@pytest.mark.parametrize("action", [ConflictAction.KEEP_EXISTING, ConflictAction.SKIP])
def test_resolve_conflict_without_replacing(engine, store, make_rule, action):
    store.products['gold-1'].discount = _existing_discount()
    result = run(engine.resolve_conflict('gold-1', make_rule(), action))

    assert result.success and result.skipped
    assert store.writes == []


def test_remove_restores_undiscounted_price(engine, store, make_rule):
    run(engine.apply_to_product('gold-1', make_rule()))
    batch = run(engine.remove_discount_from_products(['gold-1']))

    assert batch.success_count == 1
    product = store.products['gold-1']
    assert product.current_price == 79001
    assert product.discount.status is DiscountStatus.INACTIVE
    # Deactivated, not cleared
    assert product.discount.discount_id == 'festive'
    assert product.discount.discount_amount == 1170.00


def test_remove_for_rule_leaves_other_rules_alone(engine, store):
    store.products['gold-1'].discount = _existing_discount('monsoon')
    batch = run(engine.remove_discount_from_products(['gold-1'], discount_id='festive'))

    assert batch.results[0].skipped
    assert store.products['gold-1'].discount.enabled
    assert store.writes == []


def test_resync_applies_to_new_members_and_removes_departed(engine, store, make_rule):
    rule = make_rule(collection_id='festive-collection')
    outcome = run(engine.apply_discount_to_targets(rule))
    rule.applied_product_ids = [r.product_id for r in outcome.batch.results if r.success]

    store.collections['festive-collection'] = ['gold-1', 'silver-1', 'gold-2']
    sync = run(engine.resync_collection_rule(rule, ['gold-1', 'silver-1', 'gold-2']))

    assert [r.product_id for r in sync.added] == ['gold-2']
    assert [r.product_id for r in sync.removed] == ['diamond-1']
    assert store.products['gold-2'].discount.discount_id == 'festive'
    assert store.products['diamond-1'].discount.status is DiscountStatus.INACTIVE
    assert store.products['diamond-1'].current_price == 43755
    assert sync.synced == 2


def test_resync_reports_conflicts_for_new_members(engine, store, make_rule):
    rule = make_rule(collection_id='festive-collection')
    store.products['gold-2'].discount = _existing_discount()

    sync = run(engine.resync_collection_rule(rule, ['gold-2']))

    assert [c.product_id for c in sync.conflicts] == ['gold-2']
    assert sync.added == []
    assert store.products['gold-2'].discount.discount_id == 'monsoon'


def test_stone_catalog_is_cached_for_ttl(store, settings):
    clock = FakeClock()
    engine = DiscountApplicationEngine(store, settings, clock=clock)

    run(engine.get_stone_catalog())
    run(engine.get_stone_catalog())
    assert store.stone_catalog_reads == 1

    clock.now += settings.stone_cache_ttl_seconds + 1
    run(engine.get_stone_catalog())
    assert store.stone_catalog_reads == 2


def test_stale_catalog_served_when_refresh_fails(store, settings):
    clock = FakeClock()
    engine = DiscountApplicationEngine(store, settings, clock=clock)
    cached = run(engine.get_stone_catalog())

    async def unavailable():
        raise ConnectionError("catalog down")

    store.get_stone_catalog = unavailable
    clock.now += settings.stone_cache_ttl_seconds + 1

    assert run(engine.get_stone_catalog()) == cached


def test_empty_catalog_when_never_cached(store, settings):
    async def unavailable():
        raise ConnectionError("catalog down")

    store.get_stone_catalog = unavailable
    engine = DiscountApplicationEngine(store, settings)

    assert run(engine.get_stone_catalog()) == []


def test_clear_stone_cache_forces_reload(engine, store):
    run(engine.get_stone_catalog())
    engine.clear_stone_cache()
    run(engine.get_stone_catalog())
    assert store.stone_catalog_reads == 2


class NanCalculator:
    def calculate_price(self, config, discount=None, stone_catalog=None):
        return SimpleNamespace(final_price=float('nan'))


def test_remove_rejects_invalid_undiscounted_price(engine, store, make_rule):
    run(engine.apply_to_product('gold-1', make_rule()))
    store.writes.clear()

    result = run(engine.remove_from_product('gold-1', calculator=NanCalculator(), stone_catalog=[]))

    assert not result.success
    assert result.error == "Price calculation resulted in invalid price"
    assert [op for op, _, _ in store.writes] == ['discount']
    assert store.products['gold-1'].current_price == 77796
