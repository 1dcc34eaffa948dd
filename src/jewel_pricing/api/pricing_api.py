"""
Pricing API - price preview, metal rates and stone slab pricing.
"""
from typing import Literal, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from ..engine.models import StoneCatalogEntry, StoneSlab
from .discounts_api import DiscountConfig
from .payloads import breakdown_payload, stone_payload
from .state import AppState, get_state

router = APIRouter(prefix="/api", tags=["pricing"])


class StoneLineModel(BaseModel):
    stone_id: str
    weight: float = 0.0
    count: int = 1
    cost: float = 0.0
    stone_type: str = ""


class ProductConfigModel(BaseModel):
    """Pricing inputs of one product."""
    metal_weight: float
    metal_type: str
    making_charge_percent: float = 0.0
    labour_type: Literal['percentage', 'fixed'] = 'percentage'
    labour_value: float = 0.0
    wastage_type: Literal['percentage', 'fixed', 'weight'] = 'percentage'
    wastage_value: float = 0.0
    stones: list[StoneLineModel] = Field(default_factory=list)
    tax_percent: float = 0.0


class CalcRequest(BaseModel):
    config: ProductConfigModel
    discount: Optional[DiscountConfig] = None


class MetalRatesUpdate(BaseModel):
    gold24kt: Optional[float] = None
    gold22kt: Optional[float] = None
    gold18kt: Optional[float] = None
    gold14kt: Optional[float] = None
    platinum: Optional[float] = None
    silver: Optional[float] = None


class StoneSlabModel(BaseModel):
    from_weight: float
    to_weight: float
    price_per_carat: float


class StoneEntryModel(BaseModel):
    stone_id: str
    stone_type: str
    title: str = ""
    clarity: str = ""
    color: str = ""
    shape: str = ""
    slabs: list[StoneSlabModel] = Field(default_factory=list)

    def to_entry(self) -> StoneCatalogEntry:
        return StoneCatalogEntry(
            stone_id=self.stone_id.strip(),
            stone_type=self.stone_type.strip(),
            title=self.title,
            clarity=self.clarity,
            color=self.color,
            shape=self.shape,
            slabs=[StoneSlab(**slab.model_dump()) for slab in self.slabs],
        )


@router.post("/calculate-price")
async def calculate_price(req: CalcRequest, state: AppState = Depends(get_state)):
    """Preview a price breakdown; nothing is written."""
    discount = req.discount.to_rule(id='preview') if req.discount else None
    breakdown = await state.pricing_service.calculate_price(req.config.model_dump(), discount)
    return {"success": True, "data": breakdown_payload(breakdown)}


@router.get("/metal-prices")
async def get_metal_prices(state: AppState = Depends(get_state)):
    rates = await state.pricing_service.get_metal_rates()
    return {"success": True, "data": rates.to_dict()}


@router.get("/metal-prices/formatted")
async def get_formatted_metal_prices(state: AppState = Depends(get_state)):
    """Rates formatted for storefront display, e.g. ``₹6,500/g``."""
    return {"success": True, "data": await state.pricing_service.formatted_metal_rates()}


@router.post("/metal-prices")
async def update_metal_prices(update: MetalRatesUpdate, state: AppState = Depends(get_state)):
    rates = await state.pricing_service.update_metal_rates(update.model_dump())
    return {"success": True, "message": "Metal prices updated", "data": rates.to_dict()}


@router.get("/stone-prices")
async def get_stone_prices(state: AppState = Depends(get_state)):
    stones = await state.pricing_service.list_stones()
    return {"success": True, "data": [stone_payload(s) for s in stones]}


@router.post("/stone-prices")
async def save_stone_prices(entry: StoneEntryModel, state: AppState = Depends(get_state)):
    """Create or update a stone and its slab pricing."""
    saved = await state.pricing_service.save_stone(entry.to_entry())
    return {"success": True, "message": "Stone pricing saved", "data": stone_payload(saved)}


@router.get("/status")
async def get_status(state: AppState = Depends(get_state)):
    return {"success": True, "data": await state.pricing_service.get_status()}
