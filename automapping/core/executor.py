"""
Mapping executor: walks a source object graph and populates a destination graph.

Every call goes through the same steps. First the polymorphic dispatch is
resolved, then the rule. After that the value takes one of three paths:
collection, composite or scalar. Partial mapping reuses those steps with
None values skipped. The compiled-mapper cache only removes repeated
lookups for plain pairs; it never changes results.
"""
import collections.abc
import dataclasses
import logging
import typing
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Tuple

from automapping.core.classifier import SCALAR_TYPES, TypeClassifier, TypeShape
from automapping.core.conversion import ConversionChain
from automapping.core.errors import (
    AutoMappingError, ConversionError, MappingDepthError, UninstantiableTypeError,
    UnresolvedMappingError, log_execution_time, type_name
)
from automapping.core.metadata import ConstructionPath, FieldDescriptor, MetadataCache, TypeMetadata
from automapping.core.registry import MappingRegistry, PolymorphicBinding
from automapping.core.rules import MappingRule, NullPolicy, TypePair
from automapping.core.utils.cache import ThreadSafeCache
from automapping.core.utils.typeinfo import accepts, is_any, origin_class, unwrap_optional

logger = logging.getLogger(__name__)

# (source field name, declared type, value)
SourceField = Tuple[str, Any, Any]
Lookup = Callable[[str], Optional[SourceField]]


@dataclass(frozen=True)
class _MappingContext:
    """Per-call state carried down the object graph."""
    partial: bool = False
    preserve_nested_nulls: bool = False
    rule_override: Optional[MappingRule] = None
    parent: Optional[MappingRule] = None
    depth: int = 0

    def nested(self, parent: Optional[MappingRule]) -> '_MappingContext':
        return dataclasses.replace(self, rule_override=None, parent=parent, depth=self.depth + 1)


class _DirectTarget:
    """Destination written in place through field setters."""
    __slots__ = ('obj',)

    def __init__(self, obj: Any):
        self.obj = obj

    def read(self, descriptor: FieldDescriptor) -> Any:
        if descriptor.getter is None:
            return None
        value = descriptor.getter(self.obj)
        # A class-level default is shared by every instance and must not be updated in place
        if value is not None and value is getattr(type(self.obj), descriptor.name, None):
            return None
        return value

    def write(self, descriptor: FieldDescriptor, value: Any) -> None:
        descriptor.setter(self.obj, value)

    def finish(self) -> Any:
        return self.obj


class _StagedTarget:
    """
    Destination whose values are collected first and passed to the constructor.

    Used for classes that need constructor arguments and for frozen classes,
    where updating an existing instance produces an updated copy.
    """

    def __init__(self, metadata: TypeMetadata, values: Optional[Dict[str, Any]] = None):
        self.metadata = metadata
        self.values: Dict[str, Any] = dict(values or {})

    @classmethod
    def from_existing(cls, metadata: TypeMetadata, obj: Any) -> '_StagedTarget':
        return cls(metadata, {
            d.name: d.getter(obj) for d in metadata.writable_fields if d.getter is not None
        })

    def read(self, descriptor: FieldDescriptor) -> Any:
        return self.values.get(descriptor.name)

    def write(self, descriptor: FieldDescriptor, value: Any) -> None:
        self.values[descriptor.name] = value

    def finish(self) -> Any:
        metadata = self.metadata
        by_key = {name.casefold(): name for name in self.values}

        kwargs = {}
        for param in metadata.init_params:
            name = by_key.pop(param.casefold(), None)
            if name is not None:
                kwargs[param] = self.values[name]
            elif param in metadata.required_params:
                kwargs[param] = None

        extras = {name: self.values[name] for name in by_key.values()}
        if metadata.accepts_any_kwargs:
            kwargs.update(extras)
            extras = {}

        try:
            obj = metadata.type(**kwargs)
        except TypeError as e:
            raise UninstantiableTypeError(metadata.type, reason=str(e)) from e

        if not metadata.frozen:
            for name, value in extras.items():
                setattr(obj, name, value)
        return obj


class _CompiledMapper:
    """Pre-resolved field transfers for one plain pair."""
    __slots__ = ('rule', 'dest_cls', 'steps')

    def __init__(self, rule: MappingRule, dest_cls: type,
                 steps: Tuple[Tuple[FieldDescriptor, Callable[[Any], Any], Any], ...]):
        self.rule = rule
        self.dest_cls = dest_cls
        self.steps = steps


class MappingExecutor:
    """
    Executes mappings against a registry.

    The executor owns no configuration. Rules, converters and bindings come
    from the registry. The executor only caches convention rules and compiled
    mappers, and both caches are keyed by type pair.
    """

    def __init__(self, registry: MappingRegistry,
                 converter: Optional[ConversionChain] = None,
                 enable_compiled_mappers: bool = True,
                 max_depth: int = 64,
                 log_conversion_failures: bool = False):
        """
        Initialize the executor.

        Args:
            registry: Mapping registry
            converter: Scalar conversion chain (defaults to one over the registry)
            enable_compiled_mappers: Whether to memoize compiled mappers for plain pairs
            max_depth: Maximum object graph depth before MappingDepthError
            log_conversion_failures: Log swallowed per-field failures at WARNING instead of DEBUG
        """
        self.registry = registry
        self.metadata: MetadataCache = registry.metadata
        self.classifier: TypeClassifier = registry.classifier
        self.converter = converter or ConversionChain(registry)
        self.enable_compiled_mappers = enable_compiled_mappers
        self.max_depth = max_depth
        self.log_conversion_failures = log_conversion_failures

        self._conventions: ThreadSafeCache[TypePair, MappingRule] = ThreadSafeCache("conventions")
        self._compiled: ThreadSafeCache[TypePair, _CompiledMapper] = ThreadSafeCache("compiled_mappers")

    # Entry points

    def map(self, source: Any, dest_type: Any = None, destination: Any = None, *,
            source_type: Any = None, rule: Optional[MappingRule] = None) -> Any:
        """
        Map a source value, falling back to convention when no rule is registered.

        Args:
            source: Source value
            dest_type: Destination type (inferred from destination or the registry when omitted)
            destination: Existing destination to populate
            source_type: Statically expected source type
            rule: Per-call rule overriding the registered one

        Returns:
            Destination value

        Raises:
            UnresolvedMappingError: If no destination type can be determined
            ConversionError: If a top-level scalar cannot be converted
        """
        if source is None:
            return destination

        dest_type = self._destination_type(source, dest_type, destination)
        if rule is not None:
            rule.validate(self.metadata)
        expected = source_type or self._expected_source(source, dest_type)[0]

        return self._run(source, expected, dest_type, destination, _MappingContext(rule_override=rule))

    def map_to(self, source: Any, target: Any) -> Any:
        """
        Map a source value to a destination type or instance, requiring a configured route.

        Args:
            source: Source value
            target: Destination type or existing destination instance

        Returns:
            Destination value

        Raises:
            UnresolvedMappingError: If no rule or binding connects the two types
        """
        if source is None:
            return None if self._is_type(target) else target

        dest_type, destination = self._split_target(target)
        expected = self._require_route(source, dest_type)
        return self._run(source, expected, dest_type, destination, _MappingContext())

    def partial_map(self, source: Any, destination: Any, *,
                    source_type: Any = None, rule: Optional[MappingRule] = None) -> Any:
        """
        Update an existing destination, leaving fields untouched where the source has None.

        Nested destination objects are kept when the source's nested value is None.

        Args:
            source: Source value
            destination: Destination to update
            source_type: Statically expected source type
            rule: Per-call rule overriding the registered one

        Returns:
            Updated destination (an updated copy for frozen destinations)

        Raises:
            ValueError: If destination is None
        """
        if destination is None:
            raise ValueError("partial_map requires an existing destination")
        if source is None:
            return destination

        dest_type = type(destination)
        if rule is not None:
            rule.validate(self.metadata)
        expected = source_type or self._expected_source(source, dest_type)[0]

        context = _MappingContext(partial=True, preserve_nested_nulls=True, rule_override=rule)
        return self._run(source, expected, dest_type, destination, context)

    def partial_map_to(self, source: Any, target: Any) -> Any:
        """
        Partial map requiring a configured route.

        Args:
            source: Source value
            target: Destination type (a new instance is created) or destination instance

        Returns:
            Destination value

        Raises:
            UnresolvedMappingError: If no rule or binding connects the two types
        """
        dest_type, destination = self._split_target(target)
        if source is None:
            return destination

        expected = self._require_route(source, dest_type)
        context = _MappingContext(partial=True, preserve_nested_nulls=True)
        return self._run(source, expected, dest_type, destination, context)

    def map_collection(self, sources: Iterable[Any], dest_element_type: Any = None, *,
                       source_element_type: Any = None) -> Iterator[Any]:
        """
        Lazily map each element of a sequence.

        Elements go through the same resolution as collection elements,
        including polymorphic dispatch. None elements are yielded as None.

        Args:
            sources: Source elements
            dest_element_type: Destination element type (per-element default destination when omitted)
            source_element_type: Statically expected source element type

        Yields:
            Mapped elements

        Raises:
            UnresolvedMappingError: If dest_element_type is omitted and an element has no default destination
        """
        context = _MappingContext()
        for item in sources:
            if item is None:
                yield None
                continue

            element_dest = dest_element_type
            if element_dest is None:
                element_dest = self.registry.default_destination(type(item))
                if element_dest is None:
                    raise UnresolvedMappingError(type(item))

            yield self._map_element(item, source_element_type or Any, element_dest, None, context)

    @log_execution_time
    def map_many(self, sources: Iterable[Any], dest_element_type: Any = None, *,
                 source_element_type: Any = None) -> List[Any]:
        """
        Map every element of a sequence into a list.

        Args:
            sources: Source elements
            dest_element_type: Destination element type
            source_element_type: Statically expected source element type

        Returns:
            List of mapped elements
        """
        return list(self.map_collection(sources, dest_element_type, source_element_type=source_element_type))

    def clear_caches(self) -> None:
        """Drop metadata, classifications, convention rules and compiled mappers."""
        self.metadata.reset()
        self.classifier.reset()
        self._conventions.clear()
        self._compiled.clear()
        logger.debug("Cleared mapping caches")

    # Route resolution

    @staticmethod
    def _is_type(target: Any) -> bool:
        """Tell a destination type (class or typing construct) from a destination instance."""
        return isinstance(target, type) or typing.get_origin(target) is not None

    def _split_target(self, target: Any) -> Tuple[Any, Any]:
        if self._is_type(target):
            return target, None
        return type(target), target

    def _destination_type(self, source: Any, dest_type: Any, destination: Any) -> Any:
        if dest_type is not None:
            return dest_type
        if destination is not None:
            return type(destination)

        inferred = self.registry.default_destination(type(source))
        if inferred is None and self.classifier.classify(type(source)) is TypeShape.COLLECTION \
                and not isinstance(source, collections.abc.Mapping):
            # Runtime collections carry no element type: use the first element's
            first = next((item for item in source if item is not None), None)
            element_dest = self.registry.default_destination(type(first)) if first is not None else None
            if element_dest is not None:
                inferred = List[element_dest]

        if inferred is None:
            error = UnresolvedMappingError(type(source))
            logger.error(str(error))
            raise error
        return inferred

    def _expected_source(self, source: Any, dest_type: Any) -> Tuple[type, bool]:
        """
        Find the statically expected source type for a top-level call.

        Returns the nearest class in the source's MRO with a rule to dest_type,
        else the nearest class with a binding the source selects, else the
        runtime type. The flag tells whether a route was found.
        """
        runtime = type(source)
        for klass in runtime.__mro__:
            if self.registry.resolve(klass, dest_type) is not None:
                return klass, True

        for klass in runtime.__mro__:
            if self.registry.has_bindings(klass):
                binding = self.registry.resolve_derived_binding(source, klass)
                if binding is not None and self._compatible(binding.dest_type, dest_type):
                    return klass, True

        return runtime, False

    def _require_route(self, source: Any, dest_type: Any) -> type:
        expected, found = self._expected_source(source, dest_type)
        if found:
            return expected

        if self.classifier.classify(dest_type) is TypeShape.COLLECTION \
                and not isinstance(source, collections.abc.Mapping) \
                and isinstance(source, collections.abc.Collection) \
                and not isinstance(source, (str, bytes, bytearray)):
            element_dest = self.classifier.element_type(dest_type)
            missing = [item for item in source
                       if item is not None and not self._expected_source(item, element_dest)[1]]
            if not missing:
                return expected
            error = UnresolvedMappingError(type(missing[0]), element_dest)
        else:
            error = UnresolvedMappingError(type(source), dest_type)

        logger.error(str(error))
        raise error

    @staticmethod
    def _compatible(candidate: Any, dest_type: Any) -> bool:
        """Check whether a destination type can stand in for the expected one."""
        if is_any(dest_type):
            return True
        candidate_cls = origin_class(candidate)
        dest_cls = origin_class(dest_type)
        return candidate_cls is not None and dest_cls is not None and issubclass(candidate_cls, dest_cls)

    @staticmethod
    def _inherits_options(parent: Optional[MappingRule]) -> bool:
        """Check whether a parent rule carries options a nested convention rule must copy."""
        return parent is not None and (parent.null_policy is not NullPolicy.PROPAGATE
                                       or not parent.map_nested or parent.preserve_nested_nulls)

    def _convention_rule(self, source_type: Any, dest_type: Any,
                         parent: Optional[MappingRule] = None) -> MappingRule:
        """Get the rule used for a pair with nothing registered."""
        if self._inherits_options(parent):
            return parent.narrow(source_type, dest_type)

        pair = TypePair(source_type, dest_type)
        return self._conventions.get_or_set(pair, lambda: self._synthesize(pair))

    @staticmethod
    def _synthesize(pair: TypePair) -> MappingRule:
        logger.debug(f"Synthesized convention rule for {pair}")
        return MappingRule.convention(pair.source_type, pair.dest_type)

    @staticmethod
    def _effective_rule(rule: MappingRule, context: _MappingContext) -> MappingRule:
        """Apply the per-call partial-mapping flags to a rule."""
        changes = {}
        if context.partial and rule.null_policy is not NullPolicy.SKIP:
            changes['null_policy'] = NullPolicy.SKIP
        if context.preserve_nested_nulls and not rule.preserve_nested_nulls:
            changes['preserve_nested_nulls'] = True
        return rule.with_options(**changes) if changes else rule

    # Execution

    def _run(self, source: Any, expected: Any, dest_type: Any, destination: Any,
             context: _MappingContext) -> Any:
        try:
            return self._apply(source, expected, dest_type, destination, context)
        except AutoMappingError as e:
            logger.error(f"Mapping {type_name(type(source))} -> {type_name(dest_type)} failed: {e}")
            raise

    def _apply(self, source: Any, expected: Any, dest_type: Any, destination: Any,
               context: _MappingContext, dispatch: bool = True) -> Any:
        if context.depth > self.max_depth:
            raise MappingDepthError(
                f"Object graph deeper than {self.max_depth} levels while mapping "
                f"{type_name(type(source))} -> {type_name(dest_type)}",
                details={"max_depth": self.max_depth}
            )

        runtime = type(source)
        dest_type = unwrap_optional(dest_type)[0]

        # ResolvePolymorphic
        if dispatch and context.rule_override is None and runtime is not expected \
                and isinstance(expected, type) and self.registry.has_bindings(expected):
            binding = self.registry.resolve_derived_binding(source, expected)
            if binding is not None:
                return self._dispatch(source, expected, dest_type, destination, binding, context)

        # ResolveRule
        rule = context.rule_override
        pristine = False
        if rule is None:
            rule = self.registry.resolve(expected, dest_type)
            if rule is None:
                rule = self.registry.resolve_for_hierarchy(runtime, dest_type)
            if rule is None:
                pristine = not self._inherits_options(context.parent)
                rule = self._convention_rule(expected, dest_type, context.parent)
            elif context.parent is not None and context.parent.preserve_nested_nulls \
                    and not rule.preserve_nested_nulls:
                rule = rule.with_options(preserve_nested_nulls=True)
            else:
                pristine = True

        rule = self._effective_rule(rule, context)

        dest_shape = self.classifier.classify(dest_type)
        source_shape = self.classifier.classify(runtime)

        if dest_shape is TypeShape.COLLECTION and source_shape is TypeShape.COLLECTION:
            return self._map_collection(source, runtime, dest_type, destination, rule, context)

        if dest_shape is TypeShape.COMPOSITE and self._is_record(source, source_shape):
            if pristine and self.enable_compiled_mappers and runtime is expected \
                    and not context.partial and not context.preserve_nested_nulls \
                    and not rule.has_custom_functions:
                compiled = self._compiled_mapper(rule, dest_type)
                if compiled is not None and (destination is None or type(destination) is compiled.dest_cls):
                    return self._run_compiled(compiled, source, destination, context)
            return self._map_composite(source, dest_type, destination, rule, context)

        # ScalarAssign
        if accepts(dest_type, source):
            return source
        return self.converter.convert(source, dest_type)

    def _dispatch(self, source: Any, expected: type, dest_type: Any, destination: Any,
                  binding: PolymorphicBinding, context: _MappingContext) -> Any:
        """Restart the mapping with the pair selected by a polymorphic binding."""
        derived = binding.derived_type
        if self._compatible(binding.dest_type, dest_type):
            derived_dest = binding.dest_type
        else:
            derived_dest = self.registry.find_destination_for_derived(derived, dest_type) or dest_type

        rule = self.registry.resolve(derived, derived_dest)
        if rule is None:
            base_rule = self.registry.resolve(expected, dest_type) \
                or self._convention_rule(expected, dest_type, context.parent)
            rule = base_rule.narrow(derived, derived_dest)
        elif context.parent is not None and context.parent.preserve_nested_nulls:
            rule = rule.with_options(preserve_nested_nulls=True)

        dest_cls = origin_class(derived_dest)
        if destination is not None and dest_cls is not None and not isinstance(destination, dest_cls):
            destination = None

        logger.debug(f"Dispatching {type_name(type(source))} as {type_name(derived)} -> {type_name(derived_dest)}")
        restarted = dataclasses.replace(context, rule_override=rule)
        return self._apply(source, derived, derived_dest, destination, restarted, dispatch=False)

    @staticmethod
    def _is_record(value: Any, shape: TypeShape) -> bool:
        """Check whether a value can serve as a field source for a composite."""
        if isinstance(value, collections.abc.Mapping) or shape is TypeShape.COMPOSITE:
            return True
        if shape is TypeShape.COLLECTION or isinstance(value, (SCALAR_TYPES, Enum)):
            return False
        return hasattr(value, '__dict__')

    def _source_lookup(self, source: Any) -> Lookup:
        """Build the case-insensitive field reader for a source value."""
        if isinstance(source, collections.abc.Mapping):
            return self._mapping_lookup(source)

        metadata = self.metadata.get_metadata(type(source))
        if metadata.readable_fields:
            def lookup(name: str) -> Optional[SourceField]:
                descriptor = metadata.field(name)
                if descriptor is None or not descriptor.readable:
                    return None
                return descriptor.name, descriptor.declared_type, descriptor.getter(source)

            return lookup

        return self._mapping_lookup(getattr(source, '__dict__', {}))

    @staticmethod
    def _mapping_lookup(data: collections.abc.Mapping) -> Lookup:
        keys = {}
        for key in data:
            if isinstance(key, str) and not key.startswith('_'):
                keys.setdefault(key.casefold(), key)

        def lookup(name: str) -> Optional[SourceField]:
            key = keys.get(name.casefold())
            if key is None:
                return None
            return key, Any, data[key]

        return lookup

    def _new_target(self, dest_type: Any, destination: Any):
        metadata = self.metadata.get_metadata(dest_type)

        if destination is not None:
            if metadata.frozen:
                return metadata, _StagedTarget.from_existing(metadata, destination)
            return metadata, _DirectTarget(destination)

        if metadata.construction is ConstructionPath.ZERO_ARG and not metadata.frozen:
            return metadata, _DirectTarget(metadata.type())
        if metadata.construction is ConstructionPath.NONE:
            raise UninstantiableTypeError(dest_type)
        return metadata, _StagedTarget(metadata)

    def _map_composite(self, source: Any, dest_type: Any, destination: Any,
                       rule: MappingRule, context: _MappingContext) -> Any:
        metadata, target = self._new_target(dest_type, destination)
        lookup = self._source_lookup(source)

        for descriptor in metadata.writable_fields:
            resolver = rule.resolver_for(descriptor.name)
            if resolver is not None:
                self._transfer(target, descriptor, resolver(source), Any, rule, context)
                continue

            found = lookup(rule.source_field_for(descriptor.name))
            if found is None or rule.is_ignored(found[0]):
                continue

            name, declared, value = found
            transformer = rule.transformer_for(name)
            if transformer is not None and value is not None:
                value = transformer(value)

            self._transfer(target, descriptor, value, declared, rule, context)

        return target.finish()

    def _transfer(self, target, descriptor: FieldDescriptor, value: Any, source_declared: Any,
                  rule: MappingRule, context: _MappingContext) -> None:
        """Write one source value into one destination field."""
        dest_declared = descriptor.declared_type
        dest_shape = self.classifier.classify(dest_declared)

        if value is None:
            if rule.null_policy is NullPolicy.SKIP:
                return
            if rule.preserve_nested_nulls and dest_shape is TypeShape.COMPOSITE:
                return
            target.write(descriptor, None)
            return

        value_shape = self.classifier.classify(type(value))

        try:
            if dest_shape is TypeShape.COLLECTION and value_shape is TypeShape.COLLECTION:
                declared = source_declared if self.classifier.classify(source_declared) is TypeShape.COLLECTION \
                    else type(value)
                mapped = self._map_collection(value, declared, dest_declared, target.read(descriptor),
                                              rule, context.nested(rule))
                target.write(descriptor, mapped)
                return

            if dest_shape is TypeShape.COMPOSITE and rule.map_nested and self._is_record(value, value_shape):
                existing = target.read(descriptor)
                dest_cls = origin_class(dest_declared)
                if existing is not None and not isinstance(existing, dest_cls):
                    existing = None
                expected = self._static_type(value, source_declared)
                mapped = self._apply(value, expected, dest_declared, existing, context.nested(rule))
                target.write(descriptor, mapped)
                return

            if accepts(dest_declared, value):
                target.write(descriptor, value)
                return

            target.write(descriptor, self.converter.convert(value, dest_declared))
        except (ConversionError, UninstantiableTypeError) as e:
            self._log_failure(f"Left {type_name(_target_type(target))}.{descriptor.name} unchanged: {e}")

    @staticmethod
    def _static_type(value: Any, declared: Any) -> type:
        cls = origin_class(declared)
        if cls is not None and cls is not object and isinstance(value, cls):
            return cls
        return type(value)

    def _map_collection(self, source: Any, source_declared: Any, dest_type: Any, existing: Any,
                        rule: MappingRule, context: _MappingContext) -> Any:
        """Map a collection, reusing a growable destination collection when one exists."""
        source_element = self.classifier.element_type(source_declared)
        dest_element = self.classifier.element_type(dest_type)
        skip_nulls = rule.null_policy is NullPolicy.SKIP

        if self.classifier.is_mapping(dest_type):
            if not isinstance(source, collections.abc.Mapping):
                raise ConversionError(source, dest_type)

            key_type = self.classifier.key_type(dest_type)
            items = []
            for key, value in source.items():
                if value is None and skip_nulls:
                    continue
                try:
                    mapped_key = key if accepts(key_type, key) else self.converter.convert(key, key_type)
                except ConversionError as e:
                    self._log_failure(f"Dropped map entry with key {key!r}: {e}")
                    continue
                mapped = None if value is None else \
                    self._map_element(value, source_element, dest_element, rule, context)
                items.append((mapped_key, mapped))

            if isinstance(existing, collections.abc.MutableMapping):
                existing.clear()
                existing.update(items)
                return existing

            result = self.classifier.instantiate(dest_type)
            if isinstance(result, collections.abc.MutableMapping):
                result.update(items)
                return result
            return type(result)(items)

        elements = source.values() if isinstance(source, collections.abc.Mapping) else source
        items = []
        for element in elements:
            if element is None:
                if not skip_nulls:
                    items.append(None)
                continue
            items.append(self._map_element(element, source_element, dest_element, rule, context))

        if self.classifier.is_fixed_size(dest_type):
            # Length known only now: allocate once from the counted elements
            dest_cls = origin_class(dest_type)
            if dest_cls in (tuple, frozenset) or dest_cls is None:
                return (dest_cls or tuple)(items)
            return dest_cls(items)

        if isinstance(existing, (collections.abc.MutableSequence, collections.abc.MutableSet)):
            target = existing
            target.clear()
        else:
            target = self.classifier.instantiate(dest_type)

        try:
            if isinstance(target, collections.abc.MutableSet):
                for item in items:
                    target.add(item)
            else:
                for item in items:
                    target.append(item)
        except TypeError as e:
            raise ConversionError(source, dest_type, e) from e
        return target

    def _map_element(self, element: Any, source_element: Any, dest_element: Any,
                     rule: Optional[MappingRule], context: _MappingContext) -> Any:
        """
        Map one collection element.

        Order: nested collection, assignable as-is, exact converter, direct
        rule, polymorphic binding, convention, scalar conversion, then the
        destination element type's default value.
        """
        runtime = type(element)
        dest_shape = self.classifier.classify(dest_element)
        element_shape = self.classifier.classify(runtime)

        try:
            if dest_shape is TypeShape.COLLECTION and element_shape is TypeShape.COLLECTION:
                return self._map_collection(element, runtime, dest_element, None,
                                            rule or MappingRule.convention(runtime, dest_element),
                                            context)

            if accepts(dest_element, element):
                return element

            converter = self.registry.resolve_converter(runtime, dest_element)
            if converter is not None:
                try:
                    return converter(element)
                except Exception as e:
                    raise ConversionError(element, dest_element, e) from e

            if self.registry.resolve(runtime, dest_element) is not None:
                return self._apply(element, runtime, dest_element, None, context, dispatch=False)

            base = self._binding_base(element, source_element)
            if base is not None:
                return self._apply(element, base, dest_element, None, context)

            if dest_shape is TypeShape.COMPOSITE and self._is_record(element, element_shape):
                return self._apply(element, self._static_type(element, source_element), dest_element,
                                   None, context)

            return self.converter.convert(element, dest_element)
        except (ConversionError, UninstantiableTypeError) as e:
            self._log_failure(f"Using default value for element {element!r}: {e}")
            return self.classifier.default_value(dest_element)

    def _binding_base(self, element: Any, source_element: Any) -> Optional[type]:
        """Find the base type whose bindings select this element."""
        declared = origin_class(source_element)
        if declared is not None and isinstance(element, declared) and self.registry.has_bindings(declared):
            if self.registry.resolve_derived_binding(element, declared) is not None:
                return declared

        for klass in type(element).__mro__:
            if self.registry.has_bindings(klass) and \
                    self.registry.resolve_derived_binding(element, klass) is not None:
                return klass
        return None

    # Compiled mappers

    def _compiled_mapper(self, rule: MappingRule, dest_type: Any) -> Optional[_CompiledMapper]:
        """Get the compiled mapper for a rule, rebuilding it if the rule was replaced."""
        metadata = self.metadata.get_metadata(dest_type)
        if metadata.construction is not ConstructionPath.ZERO_ARG or metadata.frozen:
            return None

        source_metadata = self.metadata.get_metadata(rule.source_type)
        if not source_metadata.readable_fields:
            return None

        pair = rule.pair
        compiled = self._compiled.get_or_set(pair, lambda: self._compile(rule, metadata, source_metadata))
        if compiled.rule is not rule:
            compiled = self._compile(rule, metadata, source_metadata)
            self._compiled.set(pair, compiled)
        return compiled

    @staticmethod
    def _compile(rule: MappingRule, metadata: TypeMetadata, source_metadata: TypeMetadata) -> _CompiledMapper:
        steps = []
        for descriptor in metadata.writable_fields:
            source_field = source_metadata.field(rule.source_field_for(descriptor.name))
            if source_field is None or not source_field.readable or rule.is_ignored(source_field.name):
                continue
            steps.append((descriptor, source_field.getter, source_field.declared_type))

        logger.debug(f"Compiled mapper for {rule.pair} with {len(steps)} field transfers")
        return _CompiledMapper(rule, metadata.type, tuple(steps))

    def _run_compiled(self, compiled: _CompiledMapper, source: Any, destination: Any,
                      context: _MappingContext) -> Any:
        target = _DirectTarget(destination if destination is not None else compiled.dest_cls())
        rule = compiled.rule
        for descriptor, getter, declared in compiled.steps:
            self._transfer(target, descriptor, getter(source), declared, rule, context)
        return target.obj

    def _log_failure(self, message: str) -> None:
        if self.log_conversion_failures:
            logger.warning(message)
        else:
            logger.debug(message)


def _target_type(target: Any) -> Any:
    """Get the destination class behind a target wrapper, for log messages."""
    if isinstance(target, _StagedTarget):
        return target.metadata.type
    return type(target.obj)
