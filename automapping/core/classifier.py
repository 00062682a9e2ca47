"""
Shape classification of types: scalar, collection or composite.
"""
import collections.abc
import datetime
import inspect
import logging
import typing
import uuid
from decimal import Decimal
from enum import Enum
from fractions import Fraction
from typing import Any, get_args

from automapping.core.errors import UninstantiableTypeError
from automapping.core.metadata import MetadataCache
from automapping.core.utils.cache import ThreadSafeCache
from automapping.core.utils.typeinfo import NoneType, is_any, is_union, origin_class, unwrap_optional

logger = logging.getLogger(__name__)

SCALAR_TYPES = (
    bool, int, float, complex, Decimal, Fraction,
    str, bytes, bytearray,
    datetime.datetime, datetime.date, datetime.time, datetime.timedelta,
    uuid.UUID, NoneType
)

# Scalars whose no-argument call gives the "empty" value used for unmappable elements
DEFAULT_CONSTRUCTIBLE = (bool, int, float, complex, Decimal, Fraction, str, bytes)

# Abstract collection types and the concrete type used to instantiate them
_ABSTRACT_COLLECTIONS = {
    collections.abc.MutableMapping: dict,
    collections.abc.Mapping: dict,
    collections.abc.MutableSet: set,
    collections.abc.Set: set,
    collections.abc.MutableSequence: list,
    collections.abc.Sequence: list,
    collections.abc.Reversible: list,
    collections.abc.Collection: list,
    collections.abc.Iterable: list,
}


class TypeShape(Enum):
    """How the executor treats values of a type."""
    SCALAR = "scalar"
    COLLECTION = "collection"
    COMPOSITE = "composite"


def is_record_tuple(cls: type) -> bool:
    """Check whether a tuple subclass is a named record rather than a sequence."""
    return issubclass(cls, tuple) and hasattr(cls, '_fields')


class TypeClassifier:
    """
    Classifies types and builds empty collections.

    Results are memoized per type; the classifier reads field metadata to
    tell composites apart from opaque scalar-like classes.
    """

    def __init__(self, metadata: MetadataCache):
        """
        Initialize the classifier.

        Args:
            metadata: Metadata cache used to inspect composite candidates
        """
        self.metadata = metadata
        self._shapes: ThreadSafeCache[Any, TypeShape] = ThreadSafeCache("shapes")

    def classify(self, tp: Any) -> TypeShape:
        """
        Classify a type.

        Args:
            tp: Class or typing construct

        Returns:
            Type shape
        """
        try:
            return self._shapes.get_or_set(tp, lambda: self._classify(tp))
        except TypeError:
            # Unhashable typing construct
            return self._classify(tp)

    def classify_value(self, value: Any) -> TypeShape:
        """Classify the runtime type of a value."""
        return self.classify(type(value))

    def is_mapping(self, tp: Any) -> bool:
        """Check whether a type is a keyed collection."""
        cls = origin_class(tp)
        return cls is not None and issubclass(cls, collections.abc.Mapping)

    def is_fixed_size(self, tp: Any) -> bool:
        """Check whether a collection type is immutable and must be built in one step."""
        cls = origin_class(tp)
        return cls is not None and (issubclass(cls, (tuple, frozenset)))

    def element_type(self, tp: Any) -> Any:
        """
        Get the element type of a collection type.

        For maps this is the value type. Untyped collections give Any.

        Args:
            tp: Collection type

        Returns:
            Element type
        """
        if self.is_mapping(tp):
            return self.value_type(tp)

        inner, _ = unwrap_optional(tp)
        args = get_args(inner)
        if not args:
            return Any

        if len(args) == 2 and args[1] is Ellipsis:
            return args[0]

        if all(arg == args[0] for arg in args):
            return args[0]

        return Any

    def key_type(self, tp: Any) -> Any:
        """Get the key type of a map type."""
        args = get_args(unwrap_optional(tp)[0])
        return args[0] if len(args) == 2 else Any

    def value_type(self, tp: Any) -> Any:
        """Get the value type of a map type."""
        args = get_args(unwrap_optional(tp)[0])
        return args[1] if len(args) == 2 else Any

    def instantiate(self, tp: Any) -> Any:
        """
        Create an empty collection for a collection type.

        Abstract collection types get a concrete implementation: sequences
        become lists, sets become sets and maps become dicts.

        Args:
            tp: Collection type

        Returns:
            Empty collection

        Raises:
            UninstantiableTypeError: If no concrete implementation is known
        """
        cls = origin_class(tp)
        if cls is None:
            raise UninstantiableTypeError(tp, reason="not a class")

        concrete = _ABSTRACT_COLLECTIONS.get(cls)
        if concrete is not None:
            return concrete()

        if not inspect.isabstract(cls):
            try:
                return cls()
            except TypeError as e:
                raise UninstantiableTypeError(tp, reason=str(e)) from e

        raise UninstantiableTypeError(tp, reason="abstract collection type with no known implementation")

    def default_value(self, tp: Any) -> Any:
        """
        Get the value used for an element that could not be mapped.

        Args:
            tp: Destination element type

        Returns:
            Empty scalar for built-in scalars, otherwise None
        """
        inner, nullable = unwrap_optional(tp)
        if nullable:
            return None

        cls = origin_class(inner)
        if cls in DEFAULT_CONSTRUCTIBLE:
            return cls()
        return None

    def reset(self) -> None:
        """Forget every cached classification."""
        self._shapes.clear()

    def _classify(self, tp: Any) -> TypeShape:
        inner, _ = unwrap_optional(tp)

        if is_any(inner) or is_union(inner) or typing.get_origin(inner) is typing.Literal:
            return TypeShape.SCALAR

        cls = origin_class(inner)
        if cls is None:
            return TypeShape.SCALAR

        if issubclass(cls, SCALAR_TYPES) or issubclass(cls, Enum):
            return TypeShape.SCALAR

        if not is_record_tuple(cls) and issubclass(cls, collections.abc.Iterable):
            return TypeShape.COLLECTION

        metadata = self.metadata.get_metadata(cls)
        if metadata.writable_fields and metadata.constructible:
            return TypeShape.COMPOSITE

        # No writable fields or no way to build one: copied as an opaque value
        logger.debug(f"Treating {cls.__qualname__} as an opaque scalar")
        return TypeShape.SCALAR
