"""Engine subpackage - price calculation, discounting and discount application."""
from .price_calculator import PriceCalculator, StoneCalculator
from .discount_calculator import DiscountCalculator, ValidationResult, classify_product
from .application_engine import DiscountApplicationEngine
from .models import DiscountRule, PriceBreakdown, ProductConfiguration, ProductType, MetalRates

__all__ = [
    'PriceCalculator', 'StoneCalculator', 'DiscountCalculator', 'ValidationResult',
    'classify_product', 'DiscountApplicationEngine', 'DiscountRule', 'PriceBreakdown',
    'ProductConfiguration', 'ProductType', 'MetalRates',
]
