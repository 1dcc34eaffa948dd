"""
Data models for pricing and discounting.

Uses dataclasses for structured, type-safe data representation.
"""
import math
from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Optional

from .errors import InvalidConfiguration


def round_price(amount: float) -> float:
    """Round a monetary amount to 2 decimal places (half up)."""
    return float(Decimal(str(amount)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def to_number(value, default: float = 0.0) -> float:
    """Coerce a stored numeric field, treating blanks and garbage as ``default``."""
    if value is None or value == '':
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if math.isnan(number):
        return default
    return number


def _optional_number(value) -> Optional[float]:
    number = to_number(value, default=math.nan)
    return None if math.isnan(number) else number


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_datetime(value) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


class ProductType(str, Enum):
    """Commodity type that decides which discount rule block applies."""
    GOLD = "gold"
    DIAMOND = "diamond"
    SILVER = "silver"


class LabourType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class WastageType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"
    WEIGHT = "weight"


class ApplicationType(str, Enum):
    COLLECTION = "collection"
    PRODUCTS = "products"


class DiscountStatus(str, Enum):
    """Lifecycle of a product's discount association."""
    ACTIVE = "active"
    INACTIVE = "inactive"


class ConflictAction(str, Enum):
    REPLACE = "replace"
    KEEP_EXISTING = "keep_existing"
    SKIP = "skip"


@dataclass(frozen=True)
class MetalRates:
    """Price per gram for every supported metal. Replaced wholesale, never mutated."""
    gold24kt: float
    gold22kt: float
    gold18kt: float
    gold14kt: float
    platinum: float
    silver: float

    KEYS = ('gold24kt', 'gold22kt', 'gold18kt', 'gold14kt', 'platinum', 'silver')

    def rate_for(self, metal_type: str) -> float:
        """Rate for a metal key; unknown keys are a configuration error."""
        if metal_type not in self.KEYS:
            raise InvalidConfiguration(f"Unknown metal type '{metal_type}'")
        return getattr(self, metal_type)

    def to_dict(self) -> dict[str, float]:
        return {key: getattr(self, key) for key in self.KEYS}

    @classmethod
    def from_dict(cls, data: dict) -> 'MetalRates':
        return cls(**{key: float(data[key]) for key in cls.KEYS})


@dataclass
class StoneSlab:
    """Inclusive carat band ``[from_weight, to_weight]`` with a per-carat price."""
    from_weight: float
    to_weight: float
    price_per_carat: float

    def contains(self, weight: float) -> bool:
        return self.from_weight <= weight <= self.to_weight


@dataclass
class StoneCatalogEntry:
    """A gem in the stone catalog; only diamonds are priced from slabs."""
    stone_id: str
    stone_type: str
    slabs: list[StoneSlab] = field(default_factory=list)
    title: str = ""
    clarity: str = ""
    color: str = ""
    shape: str = ""

    @property
    def is_diamond(self) -> bool:
        return (self.stone_type or '').strip().lower() == ProductType.DIAMOND.value

    def find_slab(self, weight: float) -> Optional[StoneSlab]:
        """First slab (lowest band first) containing the weight."""
        for slab in sorted(self.slabs, key=lambda s: s.from_weight):
            if slab.contains(weight):
                return slab
        return None


@dataclass
class StoneLine:
    """A stone set in a product. ``stone_type`` is the free-text label, if any."""
    stone_id: str
    weight: float = 0.0
    count: int = 1
    cost: float = 0.0
    stone_type: str = ""


@dataclass
class ProductConfiguration:
    """Per-product pricing inputs."""
    metal_weight: float
    metal_type: str
    making_charge_percent: float = 0.0
    labour_type: LabourType = LabourType.PERCENTAGE
    labour_value: float = 0.0
    wastage_type: WastageType = WastageType.PERCENTAGE
    wastage_value: float = 0.0
    stones: list[StoneLine] = field(default_factory=list)
    tax_percent: float = 0.0

    @classmethod
    def from_dict(cls, data: dict) -> 'ProductConfiguration':
        """Build from a loose mapping; numeric blanks default to 0."""
        stones = []
        for raw in data.get('stones') or []:
            count = int(to_number(raw.get('count'), 1)) or 1
            stones.append(StoneLine(
                stone_id=str(raw.get('stone_id') or ''),
                weight=to_number(raw.get('weight')),
                count=count,
                cost=to_number(raw.get('cost')),
                stone_type=str(raw.get('stone_type') or ''),
            ))

        try:
            labour_type = LabourType(data.get('labour_type') or LabourType.PERCENTAGE.value)
            wastage_type = WastageType(data.get('wastage_type') or WastageType.PERCENTAGE.value)
        except ValueError as e:
            raise InvalidConfiguration(str(e)) from e

        return cls(
            metal_weight=to_number(data.get('metal_weight')),
            metal_type=str(data.get('metal_type') or ''),
            making_charge_percent=to_number(data.get('making_charge_percent')),
            labour_type=labour_type,
            labour_value=to_number(data.get('labour_value')),
            wastage_type=wastage_type,
            wastage_value=to_number(data.get('wastage_value')),
            stones=stones,
            tax_percent=to_number(data.get('tax_percent')),
        )


@dataclass
class GoldRules:
    """Percentage off making + labour + wastage."""
    enabled: bool = False
    discount_percentage: Optional[float] = None


@dataclass
class DiamondRules:
    """Fixed amount off the stone cost, capped at the stone cost."""
    enabled: bool = False
    discount_amount: Optional[float] = None


@dataclass
class WeightSlab:
    """Inclusive metal weight band mapped to a flat discount amount."""
    from_weight: Optional[float]
    to_weight: Optional[float]
    amount: Optional[float]

    def contains(self, weight: float) -> bool:
        return self.from_weight <= weight <= self.to_weight


@dataclass
class SilverRules:
    """Flat discount chosen by metal weight slab."""
    enabled: bool = False
    weight_slabs: list[WeightSlab] = field(default_factory=list)

    def find_slab(self, weight: float) -> Optional[WeightSlab]:
        """Lowest slab containing the weight; a shared boundary goes to the lower slab."""
        for slab in sorted(self.weight_slabs, key=lambda s: s.from_weight):
            if slab.contains(weight):
                return slab
        return None


@dataclass
class DiscountRule:
    """A promotional discount with one rule block per product type."""
    id: str
    title: str
    application_type: ApplicationType = ApplicationType.PRODUCTS
    target_collection_id: Optional[str] = None
    target_product_ids: list[str] = field(default_factory=list)
    gold_rules: GoldRules = field(default_factory=GoldRules)
    diamond_rules: DiamondRules = field(default_factory=DiamondRules)
    silver_rules: SilverRules = field(default_factory=SilverRules)
    is_active: bool = True
    created_at: Optional[datetime] = None
    last_applied_at: Optional[datetime] = None

    # Products the rule was last applied to; used to diff collection membership
    applied_product_ids: list[str] = field(default_factory=list)

    @property
    def enabled(self) -> bool:
        return self.is_active and (
            self.gold_rules.enabled or self.diamond_rules.enabled or self.silver_rules.enabled
        )

    def rules_enabled_for(self, product_type: ProductType) -> bool:
        return {
            ProductType.GOLD: self.gold_rules.enabled,
            ProductType.DIAMOND: self.diamond_rules.enabled,
            ProductType.SILVER: self.silver_rules.enabled,
        }[product_type]

    def scoped_to(self, product_type: ProductType) -> 'DiscountRule':
        """Copy carrying only the rule block for one product type."""
        return replace(
            self,
            gold_rules=self.gold_rules if product_type is ProductType.GOLD else GoldRules(),
            diamond_rules=self.diamond_rules if product_type is ProductType.DIAMOND else DiamondRules(),
            silver_rules=self.silver_rules if product_type is ProductType.SILVER else SilverRules(),
        )

    def targets_differ(self, other: 'DiscountRule') -> bool:
        """True when ``other`` targets a different product set definition."""
        if self.application_type != other.application_type:
            return True
        if self.application_type is ApplicationType.COLLECTION:
            return self.target_collection_id != other.target_collection_id
        return list(self.target_product_ids) != list(other.target_product_ids)

    def to_dict(self) -> dict:
        """Convert to a JSON-ready mapping."""
        return {
            'id': self.id,
            'title': self.title,
            'application_type': self.application_type.value,
            'target_collection_id': self.target_collection_id,
            'target_product_ids': list(self.target_product_ids),
            'gold_rules': {
                'enabled': self.gold_rules.enabled,
                'discount_percentage': self.gold_rules.discount_percentage,
            },
            'diamond_rules': {
                'enabled': self.diamond_rules.enabled,
                'discount_amount': self.diamond_rules.discount_amount,
            },
            'silver_rules': {
                'enabled': self.silver_rules.enabled,
                'weight_slabs': [
                    {'from': s.from_weight, 'to': s.to_weight, 'amount': s.amount}
                    for s in self.silver_rules.weight_slabs
                ],
            },
            'is_active': self.is_active,
            'created_at': _iso(self.created_at),
            'last_applied_at': _iso(self.last_applied_at),
            'applied_product_ids': list(self.applied_product_ids),
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'DiscountRule':
        """Create a DiscountRule from a stored mapping."""
        gold = data.get('gold_rules') or {}
        diamond = data.get('diamond_rules') or {}
        silver = data.get('silver_rules') or {}
        return cls(
            id=data.get('id', ''),
            title=data.get('title', ''),
            application_type=ApplicationType(data.get('application_type', ApplicationType.PRODUCTS.value)),
            target_collection_id=data.get('target_collection_id') or None,
            target_product_ids=list(data.get('target_product_ids') or []),
            gold_rules=GoldRules(
                enabled=bool(gold.get('enabled', False)),
                discount_percentage=_optional_number(gold.get('discount_percentage')),
            ),
            diamond_rules=DiamondRules(
                enabled=bool(diamond.get('enabled', False)),
                discount_amount=_optional_number(diamond.get('discount_amount')),
            ),
            silver_rules=SilverRules(
                enabled=bool(silver.get('enabled', False)),
                weight_slabs=[
                    WeightSlab(
                        from_weight=_optional_number(s.get('from')),
                        to_weight=_optional_number(s.get('to')),
                        amount=_optional_number(s.get('amount')),
                    )
                    for s in silver.get('weight_slabs') or []
                ],
            ),
            is_active=bool(data.get('is_active', True)),
            created_at=_parse_datetime(data.get('created_at')),
            last_applied_at=_parse_datetime(data.get('last_applied_at')),
            applied_product_ids=list(data.get('applied_product_ids') or []),
        )


@dataclass
class ProductDiscountRecord:
    """Discount currently associated with a product. Deactivated, never deleted."""
    status: DiscountStatus = DiscountStatus.ACTIVE
    discount_id: Optional[str] = None
    discount_title: Optional[str] = None
    applied_rule_type: Optional[ProductType] = None
    discount_amount: float = 0.0
    applied_at: Optional[datetime] = None

    @property
    def enabled(self) -> bool:
        return self.status is DiscountStatus.ACTIVE

    def deactivated(self) -> 'ProductDiscountRecord':
        return replace(self, status=DiscountStatus.INACTIVE)

    def to_dict(self) -> dict:
        return {
            'status': self.status.value,
            'discount_id': self.discount_id,
            'discount_title': self.discount_title,
            'applied_rule_type': self.applied_rule_type.value if self.applied_rule_type else None,
            'discount_amount': self.discount_amount,
            'applied_at': _iso(self.applied_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'ProductDiscountRecord':
        rule_type = data.get('applied_rule_type')
        return cls(
            status=DiscountStatus(data.get('status', DiscountStatus.INACTIVE.value)),
            discount_id=data.get('discount_id'),
            discount_title=data.get('discount_title'),
            applied_rule_type=ProductType(rule_type) if rule_type else None,
            discount_amount=to_number(data.get('discount_amount')),
            applied_at=_parse_datetime(data.get('applied_at')),
        )


@dataclass
class Product:
    """A storefront product as seen by the pricing engine."""
    product_id: str
    title: str = ""
    variant_ref: Optional[str] = None
    configured: bool = False
    configuration: Optional[ProductConfiguration] = None
    discount: Optional[ProductDiscountRecord] = None
    current_price: Optional[float] = None
    sku: Optional[str] = None


@dataclass
class PageInfo:
    has_next_page: bool = False
    end_cursor: Optional[str] = None


@dataclass
class DiscountResult:
    """Outcome of evaluating a discount rule against a price breakdown."""
    discount_amount: float = 0.0
    discount_type: Optional[str] = None
    applied_on: Optional[str] = None
    product_type: Optional[ProductType] = None


@dataclass
class PriceBreakdown:
    """Derived price components. Recomputed on every request, never stored."""
    metal_cost: float
    making_charge: float
    labour_charge: float
    wastage_charge: float
    stone_cost: float
    subtotal: float
    discount: DiscountResult
    discounted_subtotal: float
    tax_amount: float
    final_price: float
    final_price_after_discount: float
    price_before_discount: float
    metal_rate: float = 0.0
    warnings: list[str] = field(default_factory=list)

    @property
    def transacted_price(self) -> int:
        """Price written to the storefront: always rounded up to a whole unit."""
        return math.ceil(self.final_price_after_discount)


@dataclass
class Conflict:
    """A target product already carrying an active discount from another rule."""
    product_id: str
    product_title: str
    existing_discount: ProductDiscountRecord
    new_discount_id: str
    new_discount_title: str
    product_type: Optional[ProductType] = None


@dataclass
class ApplicationResult:
    """Per-product result of applying, removing or skipping a discount."""
    product_id: str
    success: bool
    new_price: Optional[int] = None
    discount_amount: float = 0.0
    product_type: Optional[ProductType] = None
    error: Optional[str] = None
    skipped: bool = False
    message: Optional[str] = None


@dataclass
class BatchResult:
    """Aggregate of per-product results; a partial failure is still a result."""
    results: list[ApplicationResult] = field(default_factory=list)

    @property
    def total_products(self) -> int:
        return len(self.results)

    @property
    def success_count(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def fail_count(self) -> int:
        return sum(1 for r in self.results if not r.success)

    @property
    def failures(self) -> list[ApplicationResult]:
        return [r for r in self.results if not r.success]


@dataclass
class ApplyOutcome:
    """Result of applying a rule to its targets: conflicts or a batch."""
    rule_id: str
    total_products: int = 0
    conflicts: list[Conflict] = field(default_factory=list)
    batch: Optional[BatchResult] = None
    error: Optional[str] = None

    @property
    def has_conflicts(self) -> bool:
        return len(self.conflicts) > 0

    @property
    def applied(self) -> bool:
        return self.batch is not None


@dataclass
class SyncResult:
    """Result of reconciling a collection rule with current membership."""
    rule_id: str
    added: list[ApplicationResult] = field(default_factory=list)
    removed: list[ApplicationResult] = field(default_factory=list)
    conflicts: list[Conflict] = field(default_factory=list)

    @property
    def synced(self) -> int:
        return len(self.added) + len(self.removed)
