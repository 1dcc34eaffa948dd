"""
JSON payloads for engine results.

Computed properties (counts, transacted price) are not picked up by
``jsonable_encoder``, so results are flattened here.
"""
from fastapi.encoders import jsonable_encoder

from ..engine.models import (
    ApplicationResult,
    ApplyOutcome,
    BatchResult,
    Conflict,
    PriceBreakdown,
    StoneCatalogEntry,
    SyncResult,
)


def breakdown_payload(breakdown: PriceBreakdown) -> dict:
    data = jsonable_encoder(breakdown)
    data['transacted_price'] = breakdown.transacted_price
    return data


def result_payload(result: ApplicationResult) -> dict:
    return jsonable_encoder(result)


def batch_payload(batch: BatchResult) -> dict:
    return {
        'total_products': batch.total_products,
        'success_count': batch.success_count,
        'fail_count': batch.fail_count,
        'results': [result_payload(r) for r in batch.results],
    }


def conflict_payload(conflict: Conflict) -> dict:
    return {
        'product_id': conflict.product_id,
        'product_title': conflict.product_title,
        'existing_discount': conflict.existing_discount.to_dict(),
        'new_discount_id': conflict.new_discount_id,
        'new_discount_title': conflict.new_discount_title,
        'product_type': conflict.product_type.value if conflict.product_type else None,
    }


def outcome_payload(outcome: ApplyOutcome) -> dict:
    return {
        'rule_id': outcome.rule_id,
        'total_products': outcome.total_products,
        'has_conflicts': outcome.has_conflicts,
        'conflicts': [conflict_payload(c) for c in outcome.conflicts],
        'applied': batch_payload(outcome.batch) if outcome.batch else None,
        'error': outcome.error,
    }


def sync_payload(sync: SyncResult) -> dict:
    return {
        'rule_id': sync.rule_id,
        'synced': sync.synced,
        'added': [result_payload(r) for r in sync.added],
        'removed': [result_payload(r) for r in sync.removed],
        'conflicts': [conflict_payload(c) for c in sync.conflicts],
    }


def stone_payload(entry: StoneCatalogEntry) -> dict:
    return jsonable_encoder(entry)
