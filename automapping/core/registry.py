"""
Registry of mapping rules, default destinations, scalar converters and
polymorphic bindings.
"""
import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from automapping.core.classifier import TypeClassifier, TypeShape
from automapping.core.errors import ConfigurationError, type_name
from automapping.core.metadata import MetadataCache
from automapping.core.rules import MappingRule, TypePair
from automapping.core.utils.typeinfo import origin_class

logger = logging.getLogger(__name__)

Predicate = Callable[[Any], bool]
Converter = Callable[[Any], Any]


@dataclass(frozen=True)
class PolymorphicBinding:
    """
    One derived-type entry for a base source type.

    Explicit bindings carry a user predicate; implicit ones accept instances
    of the derived type.
    """
    base_type: type
    derived_type: type
    dest_type: Any
    predicate: Optional[Predicate] = None

    @property
    def explicit(self) -> bool:
        return self.predicate is not None

    def matches(self, instance: Any) -> bool:
        """
        Check whether an instance selects this binding.

        Args:
            instance: Source instance

        Returns:
            True if the binding applies
        """
        if self.predicate is not None:
            return bool(self.predicate(instance))
        return isinstance(instance, self.derived_type)


class MappingRegistry:
    """
    Thread-safe store of everything registered during configuration.

    Writes take an RLock; readers see either the previous or the new entry,
    never a partially built one. Binding lists are published as tuples.
    """

    def __init__(self, metadata: Optional[MetadataCache] = None,
                 classifier: Optional[TypeClassifier] = None):
        """
        Initialize an empty registry.

        Args:
            metadata: Metadata cache used to validate rules
            classifier: Classifier used to resolve collection default destinations
        """
        self.metadata = metadata or MetadataCache()
        self.classifier = classifier or TypeClassifier(self.metadata)
        self._lock = threading.RLock()
        self._rules: Dict[TypePair, MappingRule] = {}
        self._defaults: Dict[Any, Any] = {}
        self._converters: Dict[Tuple[Any, Any], Converter] = {}
        self._bindings: Dict[type, Tuple[PolymorphicBinding, ...]] = {}

    def register(self, rule: MappingRule, source_type: Any = None, dest_type: Any = None) -> MappingRule:
        """
        Register a rule, replacing any rule for the same pair.

        The pair also becomes the default destination for its source type.

        Args:
            rule: Rule to register
            source_type: Source type (must match the rule's when given)
            dest_type: Destination type (must match the rule's when given)

        Returns:
            Registered rule

        Raises:
            ConfigurationError: If the rule does not fit the pair or names missing fields
        """
        if source_type is not None and source_type != rule.source_type:
            raise ConfigurationError(f"Rule for {rule.pair} cannot be registered for source "
                                     f"{type_name(source_type)}")
        if dest_type is not None and dest_type != rule.dest_type:
            raise ConfigurationError(f"Rule for {rule.pair} cannot be registered for destination "
                                     f"{type_name(dest_type)}")

        rule.validate(self.metadata)

        with self._lock:
            replaced = rule.pair in self._rules
            self._rules[rule.pair] = rule
            self._defaults[rule.source_type] = rule.dest_type

        logger.debug(f"{'Replaced' if replaced else 'Registered'} mapping {rule.pair}")
        return rule

    def resolve(self, source_type: Any, dest_type: Any) -> Optional[MappingRule]:
        """
        Get the rule registered for an exact pair.

        Args:
            source_type: Source type
            dest_type: Destination type

        Returns:
            Rule or None
        """
        with self._lock:
            return self._rules.get(TypePair(source_type, dest_type))

    def resolve_for_hierarchy(self, source_type: type, dest_type: Any) -> Optional[MappingRule]:
        """
        Get the rule for the nearest class in the source type's MRO.

        Args:
            source_type: Source class
            dest_type: Destination type

        Returns:
            Rule or None
        """
        for klass in getattr(source_type, '__mro__', (source_type,)):
            rule = self.resolve(klass, dest_type)
            if rule is not None:
                return rule
        return None

    def default_destination(self, source_type: Any) -> Optional[Any]:
        """
        Get the destination type used when a caller gives none.

        Collections resolve through their element type and give List[dest].

        Args:
            source_type: Source type

        Returns:
            Destination type or None
        """
        with self._lock:
            dest = self._defaults.get(source_type)
        if dest is not None:
            return dest

        if self.classifier.classify(source_type) is TypeShape.COLLECTION:
            element_dest = self.default_destination(self.classifier.element_type(source_type))
            if element_dest is not None:
                return List[element_dest]

        return None

    def register_converter(self, from_type: Any, to_type: Any, converter: Converter) -> None:
        """
        Register a scalar converter.

        Args:
            from_type: Source value type
            to_type: Destination value type
            converter: Conversion function

        Raises:
            ConfigurationError: If converter is not callable
        """
        if not callable(converter):
            raise ConfigurationError(f"Converter for {type_name(from_type)} -> {type_name(to_type)} "
                                     f"must be callable", code="not_callable")

        with self._lock:
            self._converters[(from_type, to_type)] = converter
        logger.debug(f"Registered converter {type_name(from_type)} -> {type_name(to_type)}")

    def resolve_converter(self, from_type: Any, to_type: Any) -> Optional[Converter]:
        with self._lock:
            return self._converters.get((from_type, to_type))

    def include(self, base_type: type, derived_type: type, dest_type: Any,
                predicate: Optional[Predicate] = None, rule: Optional[MappingRule] = None) -> PolymorphicBinding:
        """
        Bind a derived source type to a destination for polymorphic dispatch.

        A rule for (derived_type, dest_type) is registered unless one exists;
        an existing binding for the same (base_type, derived_type) is replaced
        in place.

        Args:
            base_type: Base source type
            derived_type: Derived source type
            dest_type: Destination type for derived instances
            predicate: Optional explicit predicate; defaults to an isinstance check
            rule: Rule to register for (derived_type, dest_type)

        Returns:
            Binding

        Raises:
            ConfigurationError: If derived_type is not a subclass of base_type
        """
        if not (isinstance(base_type, type) and isinstance(derived_type, type)
                and issubclass(derived_type, base_type)):
            raise ConfigurationError(f"{type_name(derived_type)} is not a subclass of {type_name(base_type)}",
                                     code="invalid_binding")
        if predicate is not None and not callable(predicate):
            raise ConfigurationError("Binding predicate must be callable", code="not_callable")

        if rule is not None:
            self.register(rule, derived_type, dest_type)
        elif self.resolve(derived_type, dest_type) is None:
            self.register(MappingRule.convention(derived_type, dest_type))

        binding = PolymorphicBinding(base_type, derived_type, dest_type, predicate)
        with self._lock:
            current = list(self._bindings.get(base_type, ()))
            for i, existing in enumerate(current):
                if existing.derived_type is derived_type:
                    current[i] = binding
                    break
            else:
                current.append(binding)
            self._bindings[base_type] = tuple(current)

        logger.debug(f"Included {type_name(derived_type)} -> {type_name(dest_type)} "
                     f"under {type_name(base_type)} ({'explicit' if binding.explicit else 'implicit'})")
        return binding

    def bindings_for(self, base_type: type) -> Tuple[PolymorphicBinding, ...]:
        with self._lock:
            return self._bindings.get(base_type, ())

    def has_bindings(self, base_type: Any) -> bool:
        with self._lock:
            return base_type in self._bindings

    def resolve_derived_binding(self, instance: Any, base_type: type) -> Optional[PolymorphicBinding]:
        """
        Find the binding selected by an instance.

        Explicit predicates are evaluated first, then implicit ones, each
        tier in registration order. The first match wins.

        Args:
            instance: Source instance
            base_type: Statically expected source type

        Returns:
            Binding or None
        """
        bindings = self.bindings_for(base_type)
        for tier in (True, False):
            for binding in bindings:
                if binding.explicit is tier and binding.matches(instance):
                    return binding
        return None

    def resolve_derived_type(self, instance: Any, base_type: type) -> Optional[type]:
        """
        Find the derived type selected by an instance.

        Args:
            instance: Source instance
            base_type: Statically expected source type

        Returns:
            Derived type or None
        """
        binding = self.resolve_derived_binding(instance, base_type)
        return binding.derived_type if binding is not None else None

    def find_destination_for_derived(self, derived_type: type, base_dest: Any) -> Optional[Any]:
        """
        Find a registered destination for a derived source compatible with a base destination.

        Args:
            derived_type: Derived source type
            base_dest: Statically expected destination type

        Returns:
            Destination type or None
        """
        base_cls = origin_class(base_dest)
        for pair in self.get_all_mapping_configurations():
            if pair.source_type is not derived_type:
                continue
            dest_cls = origin_class(pair.dest_type)
            if dest_cls is not None and base_cls is not None and issubclass(dest_cls, base_cls):
                return pair.dest_type
        return None

    def get_all_mapping_configurations(self) -> List[TypePair]:
        """
        Get every registered pair in registration order.

        Returns:
            List of type pairs
        """
        with self._lock:
            return list(self._rules)

    def rules(self) -> List[MappingRule]:
        with self._lock:
            return list(self._rules.values())

    def clear(self) -> None:
        """Remove every rule, converter, default and binding."""
        with self._lock:
            self._rules.clear()
            self._defaults.clear()
            self._converters.clear()
            self._bindings.clear()
        logger.debug("Cleared mapping registry")
