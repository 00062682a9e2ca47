# automapping/core/utils/__init__.py
"""
Shared helpers for the mapping engine.
"""
from automapping.core.utils.cache import ThreadSafeCache

__all__ = ['ThreadSafeCache']
