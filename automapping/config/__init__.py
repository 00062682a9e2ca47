# automapping/config/__init__.py
"""
Configuration package for the mapping engine.
"""
from automapping.config.manager import get_config, reset_config, ConfigManager

__all__ = ['get_config', 'reset_config', 'ConfigManager']
