# automapping/__init__.py
"""
Structural object mapping between layered data representations.
"""
from automapping.core.errors import (
    AutoMappingError, ConfigurationError, SettingsError, MappingError,
    UnresolvedMappingError, MappingDepthError, ConversionError, UninstantiableTypeError
)
from automapping.core.rules import MappingRule, NullPolicy, RuleBuilder, TypePair
from automapping.core.registry import MappingRegistry, PolymorphicBinding
from automapping.core.executor import MappingExecutor
from automapping.core.mapping import AutoMapper, MappingProfile, get_mapper

__version__ = "1.0.0"

__all__ = [
    'AutoMapper', 'MappingProfile', 'get_mapper',
    'MappingRule', 'NullPolicy', 'RuleBuilder', 'TypePair',
    'MappingRegistry', 'PolymorphicBinding', 'MappingExecutor',
    'AutoMappingError', 'ConfigurationError', 'SettingsError', 'MappingError',
    'UnresolvedMappingError', 'MappingDepthError', 'ConversionError', 'UninstantiableTypeError',
]
