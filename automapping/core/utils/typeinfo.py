"""
Helpers for reading classes and typing constructs at runtime.
"""
import logging
import types
import typing
from typing import Any, Dict, Optional, Tuple, Union, get_args, get_origin

logger = logging.getLogger(__name__)

NoneType = type(None)

# PEP 604 unions (X | None) have their own origin type
_UNION_ORIGINS = (Union,) + ((types.UnionType,) if hasattr(types, 'UnionType') else ())


def is_union(tp: Any) -> bool:
    """Check whether a typing construct is a Union (including Optional)."""
    return get_origin(tp) in _UNION_ORIGINS


def is_any(tp: Any) -> bool:
    """Check whether a declared type places no constraint on its values."""
    return tp is Any or tp is object


def unwrap_optional(tp: Any) -> Tuple[Any, bool]:
    """
    Strip None from a Union.

    Args:
        tp: Declared type

    Returns:
        Tuple of (inner type, whether None was part of the declaration)
    """
    if not is_union(tp):
        return tp, False

    args = get_args(tp)
    remaining = tuple(arg for arg in args if arg is not NoneType)
    nullable = len(remaining) != len(args)

    if len(remaining) == 1:
        return remaining[0], nullable

    return Union[remaining], nullable


def origin_class(tp: Any) -> Optional[type]:
    """
    Get the runtime class behind a declared type.

    List[int] gives list, Optional[Address] gives Address, typing.Sequence[str]
    gives collections.abc.Sequence. Constructs with no class behind them
    (Any, unions, TypeVars, unresolved forward references) give None.

    Args:
        tp: Declared type

    Returns:
        Class or None
    """
    inner, _ = unwrap_optional(tp)
    # From 3.11 Any is a class, and so is the origin of X | Y; neither is a field class
    if inner is Any or is_union(inner):
        return None
    origin = get_origin(inner) or inner
    return origin if isinstance(origin, type) else None


def accepts(declared: Any, value: Any) -> bool:
    """
    Check whether a value can be assigned as-is to a field of the declared type.

    Args:
        declared: Declared field type
        value: Candidate value

    Returns:
        True if no conversion is needed
    """
    if value is None:
        return True

    inner, _ = unwrap_optional(declared)
    if is_any(inner):
        return True

    origin = get_origin(inner)
    if origin in _UNION_ORIGINS:
        return any(accepts(arg, value) for arg in get_args(inner))

    if origin is typing.Literal:
        return value in get_args(inner)

    cls = origin or inner
    if not isinstance(cls, type):
        # TypeVars, NewTypes and string annotations carry no runtime check
        return True

    return isinstance(value, cls)


def resolve_hints(obj: Any) -> Dict[str, Any]:
    """
    Resolve type hints, tolerating annotations that cannot be evaluated.

    Args:
        obj: Class or function

    Returns:
        Mapping of name to declared type
    """
    try:
        return typing.get_type_hints(obj)
    except Exception as e:
        logger.debug(f"Could not resolve type hints for {obj!r}, using raw annotations: {e}")

    hints: Dict[str, Any] = {}
    for klass in reversed(getattr(obj, '__mro__', (obj,))):
        hints.update(getattr(klass, '__annotations__', {}) or {})
    return hints
