"""
Database Module
"""
from .connection import (
    init_database,
    close_database,
    get_db,
    get_db_dependency,
    get_session_factory,
)
from .models import Base, Order, OrderItem, OrderStatus, Product

__all__ = [
    "init_database",
    "close_database",
    "get_db",
    "get_db_dependency",
    "get_session_factory",
    "Base",
    "Order",
    "OrderItem",
    "OrderStatus",
    "Product",
]
