"""
ShopSync Analytics

Hourly catalog and order sync from an external store feed, with a reporting
layer and dashboard API over the synced data.
"""

__version__ = "1.0.0"
