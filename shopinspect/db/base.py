"""Declarative base shared by all ShopInspect models."""

from sqlalchemy.orm import declarative_base

Base = declarative_base()
