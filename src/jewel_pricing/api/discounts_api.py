"""
Discounts API - FastAPI router for discount rule management and application.
"""
from typing import Literal, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from ..engine.models import ConflictAction, DiscountRule
from .payloads import batch_payload, outcome_payload, result_payload
from .state import AppState, get_state

router = APIRouter(prefix="/api/discounts", tags=["discounts"])


# Pydantic models for API
class WeightSlabModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    from_weight: Optional[float] = Field(None, alias='from')
    to_weight: Optional[float] = Field(None, alias='to')
    amount: Optional[float] = None


class GoldRulesModel(BaseModel):
    enabled: bool = False
    discount_percentage: Optional[float] = None


class DiamondRulesModel(BaseModel):
    enabled: bool = False
    discount_amount: Optional[float] = None


class SilverRulesModel(BaseModel):
    enabled: bool = False
    weight_slabs: list[WeightSlabModel] = Field(default_factory=list)


class DiscountConfig(BaseModel):
    """Per-type rule blocks of a discount."""
    title: str = ""
    gold_rules: GoldRulesModel = Field(default_factory=GoldRulesModel)
    diamond_rules: DiamondRulesModel = Field(default_factory=DiamondRulesModel)
    silver_rules: SilverRulesModel = Field(default_factory=SilverRulesModel)

    def to_rule(self, **overrides) -> DiscountRule:
        data = self.model_dump(by_alias=True)
        data.update(overrides)
        data.setdefault('id', '')
        return DiscountRule.from_dict(data)


class RuleCreate(DiscountConfig):
    """Request model for creating or replacing a rule."""
    id: Optional[str] = None
    application_type: Literal['collection', 'products'] = 'products'
    target_collection_id: Optional[str] = None
    target_product_ids: list[str] = Field(default_factory=list)
    is_active: bool = True

    def to_rule(self, **overrides) -> DiscountRule:
        overrides.setdefault('id', self.id or '')
        return super().to_rule(**overrides)


class ValidationResponse(BaseModel):
    """Response model for validation."""
    valid: bool
    errors: list[str]
    warnings: list[str]


class ApplyRuleRequest(BaseModel):
    resolutions: dict[str, ConflictAction] = Field(default_factory=dict)


class BulkApplyRequest(BaseModel):
    product_ids: list[str]
    discount_config: DiscountConfig


class CollectionApplyRequest(BaseModel):
    collection_id: str
    discount_config: DiscountConfig


class ResolveConflictRequest(BaseModel):
    product_id: str
    discount_id: str
    action: str


def _change_payload(change, verb: str) -> dict:
    data = {"success": True, "discount": change.rule.to_dict()}
    if change.removed is not None:
        data["removed"] = batch_payload(change.removed)

    outcome = change.outcome
    if outcome is None:
        data["message"] = f"Discount {verb}"
    elif outcome.has_conflicts:
        data["message"] = f"Discount {verb} but conflicts detected"
    elif outcome.error:
        data["message"] = f"Discount {verb}; {outcome.error}"
    else:
        data["message"] = f"Discount {verb} and applied to {outcome.batch.success_count} products"

    if outcome is not None:
        data.update(outcome_payload(outcome))
    return data


# Endpoints

@router.get("")
async def list_discounts(include_inactive: bool = True, state: AppState = Depends(get_state)):
    """List all discount rules."""
    rules = await state.discount_service.list_rules(include_inactive=include_inactive)
    return [rule.to_dict() for rule in rules]


@router.post("")
async def create_discount(rule_data: RuleCreate, state: AppState = Depends(get_state)):
    """Create a discount rule and apply it to its targets."""
    change = await state.discount_service.create_rule(rule_data.to_rule())
    return _change_payload(change, "created")


@router.post("/validate", response_model=ValidationResponse)
async def validate_discount(rule_data: RuleCreate, state: AppState = Depends(get_state)):
    """Validate a rule without saving."""
    result = state.discount_service.validate_rule(rule_data.to_rule())
    return ValidationResponse(valid=result.valid, errors=result.errors, warnings=result.warnings)


@router.post("/apply-bulk")
async def apply_bulk_discount(request: BulkApplyRequest, state: AppState = Depends(get_state)):
    """Apply a discount configuration to selected products."""
    batch = await state.discount_service.apply_bulk(request.product_ids, request.discount_config.to_rule())
    return {
        "success": True,
        "message": f"Applied discount to {batch.success_count} products. {batch.fail_count} failed.",
        "data": batch_payload(batch),
    }


@router.post("/apply-collection")
async def apply_collection_discount(request: CollectionApplyRequest, state: AppState = Depends(get_state)):
    """Apply a discount configuration to every product in a collection."""
    batch = await state.discount_service.apply_to_collection(
        request.collection_id, request.discount_config.to_rule()
    )
    return {
        "success": True,
        "message": (
            f"Applied discount to {batch.success_count} products in collection. "
            f"{batch.fail_count} failed."
        ),
        "data": batch_payload(batch),
    }


@router.post("/resolve-conflict")
async def resolve_conflict(request: ResolveConflictRequest, state: AppState = Depends(get_state)):
    """Replace, keep or skip one conflicting product."""
    result = await state.discount_service.resolve_conflict(
        request.product_id, request.discount_id, request.action
    )
    return {"success": True, "message": "Conflict resolved", "data": result_payload(result)}


@router.get("/{rule_id}")
async def get_discount(rule_id: str, state: AppState = Depends(get_state)):
    """Get a single rule by ID."""
    rule = await state.discount_service.get_rule(rule_id)
    return rule.to_dict()


@router.put("/{rule_id}")
async def update_discount(rule_id: str, rule_data: RuleCreate, state: AppState = Depends(get_state)):
    """Replace a rule's definition and re-apply it."""
    change = await state.discount_service.update_rule(rule_id, rule_data.to_rule(id=rule_id))
    return _change_payload(change, "updated")


@router.delete("/{rule_id}")
async def delete_discount(rule_id: str, state: AppState = Depends(get_state)):
    """Delete a rule, removing its discount from every target product."""
    removed = await state.discount_service.delete_rule(rule_id)
    return {
        "success": True,
        "message": f"Discount rule '{rule_id}' deleted",
        "removed": batch_payload(removed),
    }


@router.post("/{rule_id}/apply")
async def apply_discount(
    rule_id: str,
    request: Optional[ApplyRuleRequest] = None,
    state: AppState = Depends(get_state),
):
    """Re-apply a saved rule, with decisions for conflicting products."""
    resolutions = request.resolutions if request else {}
    outcome = await state.discount_service.apply_rule(rule_id, resolutions)
    return {"success": True, **outcome_payload(outcome)}
