"""
Per-type field metadata and compiled accessors.

Introspecting a class (type hints, dataclass fields, SQLAlchemy mapper
attributes, constructor signatures) is far more expensive than reading an
attribute, so every class is introspected once and the result is kept until
reset() is called. Descriptors and their accessor functions are never rebuilt
for a cached class, which lets callers hold on to them.
"""
import dataclasses
import inspect
import logging
import typing
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Dict, FrozenSet, List, Optional, Tuple

from sqlalchemy import inspect as sa_inspect
from sqlalchemy.orm import Mapper as SAMapper

from automapping.core.utils.cache import ThreadSafeCache
from automapping.core.utils.typeinfo import origin_class, resolve_hints

logger = logging.getLogger(__name__)

Getter = Callable[[Any], Any]
Setter = Callable[[Any, Any], None]


class ConstructionPath(Enum):
    """How the executor can obtain a fresh instance of a class."""
    ZERO_ARG = "zero_arg"  # cls() then attribute writes
    KEYWORD = "keyword"    # stage values, then cls(**values)
    NONE = "none"


@dataclass(frozen=True)
class FieldDescriptor:
    """One field of a class."""
    name: str
    declared_type: Any = Any
    readable: bool = True
    writable: bool = True
    getter: Optional[Getter] = field(default=None, compare=False, repr=False)
    setter: Optional[Setter] = field(default=None, compare=False, repr=False)

    @property
    def key(self) -> str:
        """Case-insensitive lookup key."""
        return self.name.casefold()


@dataclass(frozen=True)
class TypeMetadata:
    """Introspection result for one class."""
    type: Any
    fields: Tuple[FieldDescriptor, ...] = ()
    construction: ConstructionPath = ConstructionPath.NONE
    frozen: bool = False
    init_params: FrozenSet[str] = frozenset()
    required_params: FrozenSet[str] = frozenset()
    accepts_any_kwargs: bool = False

    def __post_init__(self):
        index: Dict[str, FieldDescriptor] = {}
        for descriptor in self.fields:
            index.setdefault(descriptor.key, descriptor)
        object.__setattr__(self, '_index', MappingProxyType(index))

    def field(self, name: str) -> Optional[FieldDescriptor]:
        """
        Look up a field by case-insensitive name.

        Args:
            name: Field name

        Returns:
            Field descriptor or None
        """
        return self._index.get(name.casefold())

    @property
    def readable_fields(self) -> Tuple[FieldDescriptor, ...]:
        return tuple(f for f in self.fields if f.readable)

    @property
    def writable_fields(self) -> Tuple[FieldDescriptor, ...]:
        return tuple(f for f in self.fields if f.writable)

    @property
    def constructible(self) -> bool:
        return self.construction is not ConstructionPath.NONE


def make_getter(name: str) -> Getter:
    """Build a getter that treats a missing attribute as None."""
    def getter(obj: Any) -> Any:
        return getattr(obj, name, None)

    getter.__name__ = f"get_{name}"
    return getter


def make_setter(name: str) -> Setter:
    """Build an attribute setter."""
    def setter(obj: Any, value: Any) -> None:
        setattr(obj, name, value)

    setter.__name__ = f"set_{name}"
    return setter


def _descriptor(name: str, declared_type: Any, readable: bool = True, writable: bool = True) -> FieldDescriptor:
    return FieldDescriptor(
        name=name,
        declared_type=declared_type,
        readable=readable,
        writable=writable,
        getter=make_getter(name) if readable else None,
        setter=make_setter(name) if writable else None
    )


class MetadataCache:
    """
    Lazily computed, append-only store of TypeMetadata keyed by class.

    Safe for concurrent use: two threads asking for the same class may both
    introspect it, but only one result is published and both receive it.
    """

    def __init__(self):
        """Initialize an empty cache."""
        self._types: ThreadSafeCache[Any, TypeMetadata] = ThreadSafeCache("metadata")

    def get_metadata(self, tp: Any) -> TypeMetadata:
        """
        Get the metadata for a class, introspecting it on first request.

        Args:
            tp: Class (typing constructs are reduced to their runtime class)

        Returns:
            Type metadata; classes with no accessible fields give an empty field list
        """
        cls = origin_class(tp)
        if cls is None:
            return TypeMetadata(type=tp)
        return self._types.get_or_set(cls, lambda: self._introspect(cls))

    def get_fields(self, tp: Any) -> Tuple[FieldDescriptor, ...]:
        """
        Get the ordered fields of a class.

        Args:
            tp: Class

        Returns:
            Field descriptors in declaration order
        """
        return self.get_metadata(tp).fields

    def get_field(self, tp: Any, name: str) -> Optional[FieldDescriptor]:
        """
        Get one field of a class by case-insensitive name.

        Args:
            tp: Class
            name: Field name

        Returns:
            Field descriptor or None
        """
        return self.get_metadata(tp).field(name)

    @staticmethod
    def get_accessor(descriptor: FieldDescriptor) -> Tuple[Optional[Getter], Optional[Setter]]:
        """
        Get the compiled accessors of a field.

        Args:
            descriptor: Field descriptor obtained from this cache

        Returns:
            Tuple of (getter, setter); either may be None
        """
        return descriptor.getter, descriptor.setter

    def reset(self) -> None:
        """Forget every cached class."""
        logger.debug(f"Resetting metadata cache ({self._types.size()} types)")
        self._types.clear()

    def _introspect(self, cls: type) -> TypeMetadata:
        """Compute metadata for a class."""
        frozen = False

        mapper = sa_inspect(cls, raiseerr=False)
        if isinstance(mapper, SAMapper):
            fields = self._sqlalchemy_fields(mapper)
        elif dataclasses.is_dataclass(cls):
            fields = self._dataclass_fields(cls)
            frozen = cls.__dataclass_params__.frozen
        elif issubclass(cls, tuple) and hasattr(cls, '_fields'):
            fields = self._namedtuple_fields(cls)
            frozen = True
        else:
            fields = self._annotated_fields(cls)

        known = {f.key for f in fields}
        for descriptor in self._property_fields(cls):
            if descriptor.key not in known:
                fields.append(descriptor)
                known.add(descriptor.key)

        init_params, required, any_kwargs, construction = self._construction(cls, frozen, known)

        if construction is ConstructionPath.ZERO_ARG and not isinstance(mapper, SAMapper) \
                and not dataclasses.is_dataclass(cls):
            for descriptor in self._probe_fields(cls):
                if descriptor.key not in known:
                    fields.append(descriptor)
                    known.add(descriptor.key)

        metadata = TypeMetadata(
            type=cls,
            fields=tuple(fields),
            construction=construction,
            frozen=frozen,
            init_params=init_params,
            required_params=required,
            accepts_any_kwargs=any_kwargs
        )
        logger.debug(f"Introspected {cls.__qualname__}: {len(fields)} fields, construction={construction.value}")
        return metadata

    @staticmethod
    def _sqlalchemy_fields(mapper: SAMapper) -> List[FieldDescriptor]:
        fields = []

        for attr in mapper.column_attrs:
            if attr.key.startswith('_'):
                continue
            column = attr.columns[0]
            try:
                python_type = column.type.python_type
            except NotImplementedError:
                python_type = Any
            declared = typing.Optional[python_type] if column.nullable and python_type is not Any else python_type
            fields.append(_descriptor(attr.key, declared))

        for rel in mapper.relationships:
            if rel.key.startswith('_'):
                continue
            target = rel.mapper.class_
            if rel.uselist:
                declared = typing.Set[target] if rel.collection_class is set else typing.List[target]
            else:
                declared = typing.Optional[target]
            fields.append(_descriptor(rel.key, declared))

        return fields

    @staticmethod
    def _dataclass_fields(cls: type) -> List[FieldDescriptor]:
        hints = resolve_hints(cls)
        return [
            _descriptor(f.name, hints.get(f.name, f.type))
            for f in dataclasses.fields(cls)
            if not f.name.startswith('_')
        ]

    @staticmethod
    def _namedtuple_fields(cls: type) -> List[FieldDescriptor]:
        hints = resolve_hints(cls)
        return [_descriptor(name, hints.get(name, Any)) for name in cls._fields if not name.startswith('_')]

    @staticmethod
    def _annotated_fields(cls: type) -> List[FieldDescriptor]:
        fields = []
        for name, hint in resolve_hints(cls).items():
            if name.startswith('_') or typing.get_origin(hint) is typing.ClassVar:
                continue
            fields.append(_descriptor(name, hint))
        return fields

    @staticmethod
    def _property_fields(cls: type) -> List[FieldDescriptor]:
        properties: Dict[str, property] = {}
        for klass in reversed(cls.__mro__):
            for name, value in vars(klass).items():
                if isinstance(value, property) and not name.startswith('_'):
                    properties[name] = value

        fields = []
        for name, prop in properties.items():
            declared = Any
            if prop.fget is not None:
                declared = resolve_hints(prop.fget).get('return', Any)
            fields.append(_descriptor(name, declared, readable=prop.fget is not None, writable=prop.fset is not None))
        return fields

    @staticmethod
    def _probe_fields(cls: type) -> List[FieldDescriptor]:
        """Discover attributes that __init__ assigns without class-level annotations."""
        try:
            probe = cls()
        except Exception as e:
            logger.debug(f"Probe construction of {cls.__qualname__} failed: {e}")
            return []

        attributes = getattr(probe, '__dict__', None) or {}
        return [_descriptor(name, Any) for name in attributes if not name.startswith('_')]

    @staticmethod
    def _construction(cls: type, frozen: bool,
                      field_keys: typing.Set[str]) -> Tuple[FrozenSet[str], FrozenSet[str], bool, ConstructionPath]:
        """Work out how instances of a class can be created."""
        if inspect.isabstract(cls):
            return frozenset(), frozenset(), False, ConstructionPath.NONE

        try:
            signature = inspect.signature(cls)
        except (TypeError, ValueError):
            if cls.__init__ is object.__init__:
                return frozenset(), frozenset(), False, ConstructionPath.ZERO_ARG
            return frozenset(), frozenset(), False, ConstructionPath.NONE

        params = list(signature.parameters.values())
        keyword_kinds = (inspect.Parameter.POSITIONAL_OR_KEYWORD, inspect.Parameter.KEYWORD_ONLY)
        init_params = frozenset(p.name for p in params if p.kind in keyword_kinds)
        any_kwargs = any(p.kind is inspect.Parameter.VAR_KEYWORD for p in params)
        required = [p for p in params
                    if p.default is inspect.Parameter.empty
                    and p.kind not in (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD)]
        required_names = frozenset(p.name for p in required)

        if not required and not frozen:
            return init_params, required_names, any_kwargs, ConstructionPath.ZERO_ARG

        if all(p.kind in keyword_kinds and p.name.casefold() in field_keys for p in required):
            return init_params, required_names, any_kwargs, ConstructionPath.KEYWORD

        return init_params, required_names, any_kwargs, ConstructionPath.NONE
