"""Persistence layer for ShopInspect."""
