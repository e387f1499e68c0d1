"""
TrackProfit - per-shop profit ledger reconciling storefront, ads and carrier data
"""
__version__ = "1.0.0"
