"""
Rule lifecycle: create with auto-apply, update, delete, resync.
"""
import asyncio
from dataclasses import replace

import pytest

from jewel_pricing.engine.application_engine import DiscountApplicationEngine
from jewel_pricing.engine.errors import NotFound, ValidationError
from jewel_pricing.engine.models import (
    DiscountStatus,
    ProductDiscountRecord,
    ProductType,
)
from jewel_pricing.services.discount_service import DiscountService


@pytest.fixture
def service(store, settings):
    return DiscountService(store, DiscountApplicationEngine(store, settings))


def run(coro):
    return asyncio.run(coro)


def test_create_applies_to_targets(service, store, make_rule):
    change = run(service.create_rule(make_rule(rule_id='', product_ids=['gold-1', 'silver-1'])))

    assert change.rule.id == 'festive-sale'
    assert change.rule.created_at is not None
    assert change.outcome.batch.success_count == 2
    assert store.products['gold-1'].current_price == 77796
    assert store.products['silver-1'].current_price == 2071

    saved = run(service.get_rule('festive-sale'))
    assert saved.applied_product_ids == ['gold-1', 'silver-1']
    assert saved.last_applied_at is not None


def test_generated_ids_are_unique(service, make_rule):
    first = run(service.create_rule(make_rule(rule_id='', product_ids=['gold-1']), auto_apply=False))
    second = run(service.create_rule(make_rule(rule_id='', product_ids=['gold-2']), auto_apply=False))

    assert first.rule.id == 'festive-sale'
    assert second.rule.id == 'festive-sale-1'


def test_create_rejects_invalid_rule(service, store, make_rule):
    with pytest.raises(ValidationError) as excinfo:
        run(service.create_rule(make_rule(product_ids=['gold-1'], diamond=None)))

    assert "Diamond product rules must be configured and enabled" in excinfo.value.errors
    assert store.rules == {}
    assert store.writes == []


def test_create_rejects_duplicate_id(service, make_rule):
    run(service.create_rule(make_rule(product_ids=['gold-1']), auto_apply=False))
    with pytest.raises(ValidationError):
        run(service.create_rule(make_rule(product_ids=['gold-2']), auto_apply=False))


def test_create_returns_conflicts_without_writing(service, store, make_rule):
    store.products['gold-1'].discount = ProductDiscountRecord(
        status=DiscountStatus.ACTIVE, discount_id='monsoon', discount_title='Monsoon Offer',
        applied_rule_type=ProductType.GOLD,
    )
    change = run(service.create_rule(make_rule(product_ids=['gold-1', 'silver-1'])))

    assert change.outcome.has_conflicts
    assert [c.product_id for c in change.outcome.conflicts] == ['gold-1']
    assert [op for op, _, _ in store.writes] == []
    assert store.rules['festive'].applied_product_ids == []


def test_resolve_conflict_records_applied_product(service, store, make_rule):
    store.products['gold-1'].discount = ProductDiscountRecord(
        status=DiscountStatus.ACTIVE, discount_id='monsoon', discount_title='Monsoon Offer',
    )
    run(service.create_rule(make_rule(product_ids=['gold-1'])))

    result = run(service.resolve_conflict('gold-1', 'festive', 'replace'))

    assert result.success
    assert store.products['gold-1'].discount.discount_id == 'festive'
    assert store.rules['festive'].applied_product_ids == ['gold-1']


def test_resolve_conflict_rejects_unknown_action(service, make_rule):
    run(service.create_rule(make_rule(product_ids=['gold-1']), auto_apply=False))
    with pytest.raises(ValidationError):
        run(service.resolve_conflict('gold-1', 'festive', 'merge'))


def test_resolve_conflict_unknown_rule(service):
    with pytest.raises(NotFound):
        run(service.resolve_conflict('gold-1', 'nope', 'skip'))


def test_update_with_new_targets_removes_from_old(service, store, make_rule):
    run(service.create_rule(make_rule(product_ids=['gold-1'])))
    change = run(service.update_rule('festive', make_rule(product_ids=['silver-1'])))

    assert change.removed.success_count == 1
    assert store.products['gold-1'].discount.status is DiscountStatus.INACTIVE
    assert store.products['gold-1'].current_price == 79001
    assert store.products['silver-1'].discount.discount_id == 'festive'
    assert store.rules['festive'].applied_product_ids == ['silver-1']


def test_update_with_same_targets_reapplies(service, store, make_rule):
    run(service.create_rule(make_rule(product_ids=['gold-1'])))
    change = run(service.update_rule('festive', make_rule(product_ids=['gold-1'], gold=20)))

    assert change.removed is None
    assert not change.outcome.has_conflicts
    assert store.products['gold-1'].discount.discount_amount == 2340.00


def test_update_keeps_created_at(service, make_rule):
    created = run(service.create_rule(make_rule(product_ids=['gold-1']))).rule
    updated = run(service.update_rule('festive', make_rule(product_ids=['gold-1'], title='Renamed'))).rule

    assert updated.created_at == created.created_at
    assert updated.title == 'Renamed'


def test_deactivating_a_rule_removes_its_discount(service, store, make_rule):
    run(service.create_rule(make_rule(product_ids=['gold-1'])))
    change = run(service.update_rule('festive', make_rule(product_ids=['gold-1'], is_active=False)))

    assert change.outcome is None
    assert store.products['gold-1'].discount.status is DiscountStatus.INACTIVE
    assert store.products['gold-1'].current_price == 79001


def test_update_unknown_rule(service, make_rule):
    with pytest.raises(NotFound):
        run(service.update_rule('nope', make_rule(product_ids=['gold-1'])))


def test_delete_removes_discounts_then_rule(service, store, make_rule):
    run(service.create_rule(make_rule(collection_id='festive-collection')))
    removed = run(service.delete_rule('festive'))

    assert removed.success_count == 3
    assert 'festive' not in store.rules
    for product_id in ('gold-1', 'diamond-1', 'silver-1'):
        assert store.products[product_id].discount.status is DiscountStatus.INACTIVE
    assert store.products['diamond-1'].current_price == 43755


def test_delete_unknown_rule(service):
    with pytest.raises(NotFound):
        run(service.delete_rule('nope'))


def test_apply_bulk_bypasses_conflict_gate(service, store, make_rule):
    store.products['gold-1'].discount = ProductDiscountRecord(
        status=DiscountStatus.ACTIVE, discount_id='monsoon',
    )
    config = make_rule(rule_id='', title='', diamond=None, silver_slabs=None)
    batch = run(service.apply_bulk(['gold-1', 'silver-1'], config))

    assert batch.success_count == 1
    assert batch.failures[0].product_id == 'silver-1'
    assert store.products['gold-1'].discount.discount_id.startswith('manual-')
    assert store.products['gold-1'].discount.discount_title == 'Manual discount'


def test_apply_bulk_requires_products(service, make_rule):
    with pytest.raises(ValidationError):
        run(service.apply_bulk([], make_rule()))


def test_apply_to_collection(service, store, make_rule):
    batch = run(service.apply_to_collection('festive-collection', make_rule(rule_id='')))
    assert batch.success_count == 3


def test_apply_to_empty_collection(service, make_rule):
    with pytest.raises(ValidationError, match="No products found in collection"):
        run(service.apply_to_collection('empty-collection', make_rule()))


def test_sync_collection_tracks_membership(service, store, make_rule):
    run(service.create_rule(make_rule(collection_id='festive-collection')))

    store.collections['festive-collection'] = ['gold-1', 'gold-2']
    results = run(service.sync_collection('festive-collection'))

    assert len(results) == 1
    assert [r.product_id for r in results[0].added] == ['gold-2']
    assert sorted(r.product_id for r in results[0].removed) == ['diamond-1', 'silver-1']
    assert sorted(store.rules['festive'].applied_product_ids) == ['gold-1', 'gold-2']


def test_sync_collection_ignores_rules_for_other_collections(service, store, make_rule):
    run(service.create_rule(make_rule(collection_id='other-collection'), auto_apply=False))
    assert run(service.sync_collection('festive-collection')) == []


def test_product_deleted_never_raises(service, store, make_rule):
    run(service.create_rule(make_rule(product_ids=['gold-1', 'silver-1'])))
    del store.products['silver-1']

    run(service.handle_product_deleted('silver-1'))

    assert store.rules['festive'].applied_product_ids == ['gold-1']


def test_list_rules_filters_inactive(service, make_rule):
    run(service.create_rule(make_rule(rule_id='a', product_ids=['gold-1']), auto_apply=False))
    run(service.create_rule(
        replace(make_rule(rule_id='b', product_ids=['gold-2']), is_active=False), auto_apply=False
    ))

    assert len(run(service.list_rules())) == 2
    assert [r.id for r in run(service.list_rules(include_inactive=False))] == ['a']
