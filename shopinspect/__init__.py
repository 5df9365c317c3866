"""ShopInspect: vehicle inspection workflow engine."""

__version__ = "0.1.0"
