"""
Mapping rules for one (source type, destination type) pair and the fluent
builder that produces them.
"""
import collections.abc
import dataclasses
import logging
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Dict, FrozenSet, Iterable, Mapping, Optional, Type, TypeVar, Generic

from automapping.core.errors import ConfigurationError, type_name
from automapping.core.metadata import MetadataCache
from automapping.core.utils.typeinfo import origin_class

logger = logging.getLogger(__name__)

# Type variables
S = TypeVar('S')  # Source type
T = TypeVar('T')  # Target type

Transformer = Callable[[Any], Any]
Resolver = Callable[[Any], Any]


class NullPolicy(Enum):
    """Whether a None source value is written to the destination."""
    PROPAGATE = "propagate"
    SKIP = "skip"


@dataclass(frozen=True)
class TypePair:
    """Identity key of one mapping configuration."""
    source_type: Any
    dest_type: Any

    def __str__(self) -> str:
        return f"{type_name(self.source_type)} -> {type_name(self.dest_type)}"


def _casefold_index(names: Iterable[str], what: str) -> Dict[str, str]:
    """Index names case-insensitively, rejecting names that differ only by case."""
    index: Dict[str, str] = {}
    for name in names:
        key = name.casefold()
        if key in index and index[key] != name:
            raise ConfigurationError(
                f"Conflicting {what} entries '{index[key]}' and '{name}'",
                code="duplicate_field"
            )
        index[key] = name
    return index


@dataclass(frozen=True, eq=False)
class MappingRule:
    """
    Resolved, immutable configuration for one type pair.

    field_renames maps destination field name to source field name,
    transformers are keyed by source field name and resolvers by destination
    field name. Every name lookup is case-insensitive.
    """
    source_type: Any
    dest_type: Any
    null_policy: NullPolicy = NullPolicy.PROPAGATE
    field_renames: Mapping[str, str] = field(default_factory=dict)
    ignored_source_fields: FrozenSet[str] = frozenset()
    transformers: Mapping[str, Transformer] = field(default_factory=dict)
    resolvers: Mapping[str, Resolver] = field(default_factory=dict)
    map_nested: bool = True
    preserve_nested_nulls: bool = False

    def __post_init__(self):
        object.__setattr__(self, 'field_renames', MappingProxyType(dict(self.field_renames)))
        object.__setattr__(self, 'ignored_source_fields', frozenset(self.ignored_source_fields))
        object.__setattr__(self, 'transformers', MappingProxyType(dict(self.transformers)))
        object.__setattr__(self, 'resolvers', MappingProxyType(dict(self.resolvers)))

        renames = _casefold_index(self.field_renames, "rename")
        object.__setattr__(self, '_renames', {
            key: self.field_renames[name] for key, name in renames.items()
        })
        object.__setattr__(self, '_ignored', frozenset(
            _casefold_index(self.ignored_source_fields, "ignore")
        ))
        transformers = _casefold_index(self.transformers, "transformer")
        object.__setattr__(self, '_transformers', {
            key: self.transformers[name] for key, name in transformers.items()
        })
        resolvers = _casefold_index(self.resolvers, "resolver")
        object.__setattr__(self, '_resolvers', {
            key: self.resolvers[name] for key, name in resolvers.items()
        })

    @property
    def pair(self) -> TypePair:
        return TypePair(self.source_type, self.dest_type)

    @property
    def skips_nulls(self) -> bool:
        return self.null_policy is NullPolicy.SKIP

    @property
    def has_custom_functions(self) -> bool:
        """True when the rule carries transformers or resolvers."""
        return bool(self.transformers) or bool(self.resolvers)

    @classmethod
    def convention(cls, source_type: Any, dest_type: Any,
                   null_policy: NullPolicy = NullPolicy.PROPAGATE) -> 'MappingRule':
        """
        Build the rule used when nothing is registered for a pair.

        Args:
            source_type: Source type
            dest_type: Destination type
            null_policy: Null policy to apply

        Returns:
            Rule matching fields by case-insensitive name only
        """
        return cls(source_type=source_type, dest_type=dest_type, null_policy=null_policy)

    def source_field_for(self, dest_field: str) -> str:
        """Get the source field name feeding a destination field."""
        return self._renames.get(dest_field.casefold(), dest_field)

    def resolver_for(self, dest_field: str) -> Optional[Resolver]:
        return self._resolvers.get(dest_field.casefold())

    def transformer_for(self, source_field: str) -> Optional[Transformer]:
        return self._transformers.get(source_field.casefold())

    def is_ignored(self, source_field: str) -> bool:
        return source_field.casefold() in self._ignored

    def with_options(self, **changes) -> 'MappingRule':
        """
        Copy the rule with some options replaced.

        Args:
            **changes: Field values to replace

        Returns:
            New rule
        """
        return dataclasses.replace(self, **changes)

    def narrow(self, source_type: Any, dest_type: Any) -> 'MappingRule':
        """
        Adapt this rule's options onto a related type pair.

        Only the null policy, the nested-mapping flag and the nested-null
        flag are copied; field-level configuration belongs to the original pair.

        Args:
            source_type: Source type of the new rule
            dest_type: Destination type of the new rule

        Returns:
            New rule for (source_type, dest_type)
        """
        return MappingRule(
            source_type=source_type,
            dest_type=dest_type,
            null_policy=self.null_policy,
            map_nested=self.map_nested,
            preserve_nested_nulls=self.preserve_nested_nulls
        )

    def reverse(self) -> 'MappingRule':
        """
        Build the rule for the opposite direction.

        Renames are inverted and the nested-mapping flag is kept. Transformers,
        resolvers and ignored fields only make sense one way and are dropped.

        Returns:
            Rule for (dest_type, source_type)
        """
        return MappingRule(
            source_type=self.dest_type,
            dest_type=self.source_type,
            field_renames={source: dest for dest, source in self.field_renames.items()},
            map_nested=self.map_nested
        )

    def validate(self, metadata: MetadataCache) -> None:
        """
        Check that every configured name exists on the declared types.

        Mapping (dict) source types and types with no discoverable fields
        cannot be checked on that side and are accepted as-is.

        Args:
            metadata: Metadata cache

        Raises:
            ConfigurationError: If a rename, ignore, transformer or resolver
                names a missing field
        """
        source_fields = self._known_fields(metadata, self.source_type)
        dest_fields = self._known_fields(metadata, self.dest_type)
        problems = []

        for dest, source in self.field_renames.items():
            if source_fields is not None and source.casefold() not in source_fields:
                problems.append(f"rename source field '{source}' does not exist on {type_name(self.source_type)}")
            if dest_fields is not None and dest.casefold() not in dest_fields:
                problems.append(f"rename destination field '{dest}' does not exist on {type_name(self.dest_type)}")

        if source_fields is not None:
            for name in sorted(self.ignored_source_fields):
                if name.casefold() not in source_fields:
                    problems.append(f"ignored field '{name}' does not exist on {type_name(self.source_type)}")
            for name in self.transformers:
                if name.casefold() not in source_fields:
                    problems.append(f"transformed field '{name}' does not exist on {type_name(self.source_type)}")

        if dest_fields is not None:
            for name in self.resolvers:
                if name.casefold() not in dest_fields:
                    problems.append(f"resolved field '{name}' does not exist on {type_name(self.dest_type)}")

        if problems:
            raise ConfigurationError(
                f"Invalid mapping {self.pair}: {'; '.join(problems)}",
                code="unknown_field",
                details={"source_type": type_name(self.source_type),
                         "dest_type": type_name(self.dest_type),
                         "problems": problems}
            )

    @staticmethod
    def _known_fields(metadata: MetadataCache, tp: Any) -> Optional[FrozenSet[str]]:
        cls = origin_class(tp)
        if cls is None or issubclass(cls, collections.abc.Mapping):
            return None

        fields = metadata.get_fields(cls)
        if not fields:
            logger.debug(f"{type_name(tp)} has no discoverable fields, skipping name checks")
            return None
        return frozenset(f.key for f in fields)


class RuleBuilder(Generic[S, T]):
    """
    Fluent builder for MappingRule.

    A builder created through AutoMapper.create_map() is bound to a registry
    and can register() itself; a standalone builder only build()s.
    """

    def __init__(self, source_type: Type[S], dest_type: Type[T], registry=None):
        """
        Initialize the builder.

        Args:
            source_type: Source type
            dest_type: Destination type
            registry: Registry used by register() and reverse_map()
        """
        self.source_type = source_type
        self.dest_type = dest_type
        self.registry = registry
        self.field_renames: Dict[str, str] = {}
        self.ignored_fields: set = set()
        self.transformers: Dict[str, Transformer] = {}
        self.resolvers: Dict[str, Resolver] = {}
        self.null_policy = NullPolicy.PROPAGATE
        self.nested = True
        self.nested_nulls_preserved = False

    @classmethod
    def from_rule(cls, rule: MappingRule, registry=None) -> 'RuleBuilder':
        """
        Start a builder from an existing rule.

        Args:
            rule: Rule to copy
            registry: Registry to bind to

        Returns:
            Builder holding the rule's configuration
        """
        builder = cls(rule.source_type, rule.dest_type, registry)
        builder.field_renames.update(rule.field_renames)
        builder.ignored_fields.update(rule.ignored_source_fields)
        builder.transformers.update(rule.transformers)
        builder.resolvers.update(rule.resolvers)
        builder.null_policy = rule.null_policy
        builder.nested = rule.map_nested
        builder.nested_nulls_preserved = rule.preserve_nested_nulls
        return builder

    def map_field(self, target_field: str, source_field: str) -> 'RuleBuilder[S, T]':
        """
        Map a field from source to target.

        Args:
            target_field: Field name in target object
            source_field: Field name in source object

        Returns:
            Self for chaining
        """
        self._check_name(target_field)
        self._check_name(source_field)
        self.field_renames[target_field] = source_field
        return self

    def map_field_with_converter(self, target_field: str, source_field: str,
                                 converter: Transformer) -> 'RuleBuilder[S, T]':
        """
        Map a field with a converter function.

        Args:
            target_field: Field name in target object
            source_field: Field name in source object
            converter: Function to convert the value

        Returns:
            Self for chaining
        """
        self.map_field(target_field, source_field)
        return self.transform(source_field, converter)

    def transform(self, source_field: str, transformer: Transformer) -> 'RuleBuilder[S, T]':
        """
        Transform a source value before it is written. Not called for None.

        Args:
            source_field: Field name in source object
            transformer: Function applied to the value

        Returns:
            Self for chaining
        """
        self._check_name(source_field)
        self._check_callable(transformer)
        self.transformers[source_field] = transformer
        return self

    def ignore_field(self, source_field: str) -> 'RuleBuilder[S, T]':
        """
        Exclude a source field from name matching.

        Args:
            source_field: Field name in source object

        Returns:
            Self for chaining
        """
        self._check_name(source_field)
        self.ignored_fields.add(source_field)
        return self

    def resolve_field(self, target_field: str, resolver: Resolver) -> 'RuleBuilder[S, T]':
        """
        Compute a target field from the whole source object.

        Args:
            target_field: Field name in target object
            resolver: Function taking the source object

        Returns:
            Self for chaining
        """
        self._check_name(target_field)
        self._check_callable(resolver)
        self.resolvers[target_field] = resolver
        return self

    def ignore_nulls(self) -> 'RuleBuilder[S, T]':
        """Leave destination fields untouched when the source value is None."""
        self.null_policy = NullPolicy.SKIP
        return self

    def propagate_nulls(self) -> 'RuleBuilder[S, T]':
        """Write None source values to the destination."""
        self.null_policy = NullPolicy.PROPAGATE
        return self

    def preserve_nested_nulls(self, preserve: bool = True) -> 'RuleBuilder[S, T]':
        self.nested_nulls_preserved = preserve
        return self

    def map_nested(self, enabled: bool = True) -> 'RuleBuilder[S, T]':
        self.nested = enabled
        return self

    def build(self) -> MappingRule:
        """
        Build the immutable rule.

        Returns:
            Mapping rule
        """
        return MappingRule(
            source_type=self.source_type,
            dest_type=self.dest_type,
            null_policy=self.null_policy,
            field_renames=self.field_renames,
            ignored_source_fields=frozenset(self.ignored_fields),
            transformers=self.transformers,
            resolvers=self.resolvers,
            map_nested=self.nested,
            preserve_nested_nulls=self.nested_nulls_preserved
        )

    def register(self) -> MappingRule:
        """
        Build the rule and register it.

        Returns:
            Registered rule

        Raises:
            ConfigurationError: If the builder is not bound to a registry or
                the rule names missing fields
        """
        if self.registry is None:
            raise ConfigurationError(f"Builder for {type_name(self.source_type)} -> "
                                     f"{type_name(self.dest_type)} is not bound to a registry")
        rule = self.build()
        self.registry.register(rule)
        return rule

    def reverse_map(self) -> 'RuleBuilder':
        """
        Register this rule and its reverse.

        Returns:
            Builder for the reverse pair, for further configuration
        """
        rule = self.register()
        reverse = rule.reverse()
        self.registry.register(reverse)
        return RuleBuilder.from_rule(reverse, self.registry)

    @staticmethod
    def _check_name(name: str) -> None:
        if not isinstance(name, str) or not name.strip():
            raise ConfigurationError(f"Field name must be a non-empty string, got {name!r}",
                                     code="invalid_field_name")

    @staticmethod
    def _check_callable(func: Any) -> None:
        if not callable(func):
            raise ConfigurationError(f"Expected a callable, got {type(func).__name__}",
                                     code="not_callable")
