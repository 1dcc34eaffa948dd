"""Services layer - business operations behind the API."""
from .pricing_service import PricingService, format_inr
from .discount_service import DiscountService

__all__ = ['PricingService', 'DiscountService', 'format_inr']
