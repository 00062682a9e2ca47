# automapping/core/__init__.py
"""
Mapping engine core: metadata, classification, rules, registry and executor.
"""
