"""
Data Generation Module
"""
from .generators import FeedGenerator

__all__ = [
    "FeedGenerator",
]
