"""
Scalar value coercion: registered converters, then native coercion.
"""
import datetime
import logging
import uuid
from decimal import Decimal, InvalidOperation
from enum import Enum
from fractions import Fraction
from typing import Any, Callable, Optional

from automapping.core.classifier import SCALAR_TYPES
from automapping.core.errors import ConversionError
from automapping.core.utils.typeinfo import is_any, is_union, origin_class, unwrap_optional

logger = logging.getLogger(__name__)

_TRUE_STRINGS = frozenset(['true', '1', 'yes', 'y', 'on'])
_FALSE_STRINGS = frozenset(['false', '0', 'no', 'n', 'off', ''])

_NUMERIC_TYPES = (int, float, Decimal, Fraction, complex)


class ConversionChain:
    """
    Fallback chain used when a value does not fit its destination type.

    Order: a converter registered for (value type, target type), trying the
    value's base classes after its exact type; then native coercion between
    numbers, text, booleans, enumerations, dates, times and UUIDs; then
    ConversionError.
    """

    def __init__(self, registry):
        """
        Initialize the chain.

        Args:
            registry: Mapping registry holding user-registered converters
        """
        self.registry = registry

    def find_converter(self, source_type: type, target_type: Any) -> Optional[Callable[[Any], Any]]:
        """
        Find a registered converter, walking the source type's MRO.

        Args:
            source_type: Runtime type of the value
            target_type: Requested type

        Returns:
            Converter function or None
        """
        for klass in source_type.__mro__:
            converter = self.registry.resolve_converter(klass, target_type)
            if converter is not None:
                return converter
        return None

    def convert(self, value: Any, target_type: Any) -> Any:
        """
        Convert a value to the target type.

        Args:
            value: Value to convert
            target_type: Requested type

        Returns:
            Converted value

        Raises:
            ConversionError: If no step of the chain can produce the value
        """
        if value is None:
            return None

        inner, _ = unwrap_optional(target_type)
        if is_any(inner):
            return value

        converter = self.find_converter(type(value), target_type)
        if converter is None and inner is not target_type:
            converter = self.find_converter(type(value), inner)

        if converter is not None:
            try:
                return converter(value)
            except Exception as e:
                raise ConversionError(value, target_type, e) from e

        if is_union(inner):
            raise ConversionError(value, target_type)

        cls = origin_class(inner)
        if cls is None:
            raise ConversionError(value, target_type)

        # datetime subclasses date but a date field should not keep the time part
        if isinstance(value, cls) and not (cls is datetime.date and isinstance(value, datetime.datetime)):
            return value

        try:
            return self._coerce(value, cls)
        except ConversionError:
            raise
        except (TypeError, ValueError, ArithmeticError, InvalidOperation, KeyError, AttributeError) as e:
            raise ConversionError(value, target_type, e) from e

    def _coerce(self, value: Any, cls: type) -> Any:
        """Native coercion between built-in scalar types."""
        if issubclass(cls, Enum):
            return self._to_enum(value, cls)

        if isinstance(value, Enum) and not issubclass(cls, str):
            value = value.value
            if isinstance(value, cls):
                return value

        if cls is bool:
            return self._to_bool(value)

        if cls is str:
            return self._to_str(value)

        if cls in (bytes, bytearray):
            if isinstance(value, str):
                return cls(value.encode('utf-8'))
            return cls(value)

        if cls is int:
            if isinstance(value, str):
                return int(value.strip())
            if isinstance(value, float) and not value.is_integer():
                raise ConversionError(value, cls)
            return int(value)

        if cls is float:
            return float(value)

        if cls is Decimal:
            if isinstance(value, float):
                return Decimal(str(value))
            return Decimal(value)

        if cls in (Fraction, complex):
            return cls(value)

        if cls is datetime.datetime:
            return self._to_datetime(value)

        if cls is datetime.date:
            if isinstance(value, datetime.datetime):
                return value.date()
            if isinstance(value, str):
                return datetime.date.fromisoformat(value.strip())
            raise ConversionError(value, cls)

        if cls is datetime.time:
            if isinstance(value, datetime.datetime):
                return value.time()
            if isinstance(value, str):
                return datetime.time.fromisoformat(value.strip())
            raise ConversionError(value, cls)

        if cls is datetime.timedelta:
            if isinstance(value, _NUMERIC_TYPES) and not isinstance(value, bool):
                return datetime.timedelta(seconds=float(value))
            raise ConversionError(value, cls)

        if cls is uuid.UUID:
            if isinstance(value, str):
                return uuid.UUID(value.strip())
            if isinstance(value, bytes):
                return uuid.UUID(bytes=value)
            if isinstance(value, int):
                return uuid.UUID(int=value)
            raise ConversionError(value, cls)

        raise ConversionError(value, cls)

    @staticmethod
    def _to_enum(value: Any, cls: type) -> Enum:
        if isinstance(value, Enum):
            # Enum to enum of another type: by name, then by value
            if value.name in cls.__members__:
                return cls[value.name]
            return cls(value.value)

        if isinstance(value, str):
            if value in cls.__members__:
                return cls[value]
            for name, member in cls.__members__.items():
                if name.casefold() == value.casefold():
                    return member

        return cls(value)

    @staticmethod
    def _to_bool(value: Any) -> bool:
        if isinstance(value, str):
            text = value.strip().lower()
            if text in _TRUE_STRINGS:
                return True
            if text in _FALSE_STRINGS:
                return False
            raise ConversionError(value, bool)

        if isinstance(value, _NUMERIC_TYPES):
            return bool(value)

        raise ConversionError(value, bool)

    @staticmethod
    def _to_str(value: Any) -> str:
        if isinstance(value, Enum):
            return value.name
        if isinstance(value, (datetime.date, datetime.time)):
            return value.isoformat()
        if isinstance(value, (bytes, bytearray)):
            return value.decode('utf-8')
        # Collections and records have no text form; only scalars are rendered
        if not isinstance(value, SCALAR_TYPES):
            raise ConversionError(value, str)
        return str(value)

    @staticmethod
    def _to_datetime(value: Any) -> datetime.datetime:
        if isinstance(value, str):
            text = value.strip()
            if text.endswith('Z'):
                text = text[:-1] + '+00:00'
            return datetime.datetime.fromisoformat(text)

        if isinstance(value, datetime.date):
            return datetime.datetime(value.year, value.month, value.day)

        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return datetime.datetime.fromtimestamp(value, tz=datetime.timezone.utc)

        raise ConversionError(value, datetime.datetime)
