"""
ShopSync Analytics
Configuration Module
"""
from .settings import (
    IdentityMode,
    PlacementMode,
    Settings,
    StatusStrategyName,
    SyncSettings,
    get_settings,
)

__all__ = [
    "IdentityMode",
    "PlacementMode",
    "Settings",
    "StatusStrategyName",
    "SyncSettings",
    "get_settings",
]
