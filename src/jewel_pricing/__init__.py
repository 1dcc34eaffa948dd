"""
Jewel Pricing Package

Prices jewelry products from metal rates and per-product configuration,
applies type-specific promotional discounts, and republishes recalculated
prices to the storefront through background refresh jobs.
"""

__version__ = "1.0.0"
