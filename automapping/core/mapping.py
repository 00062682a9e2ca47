"""
AutoMapper facade: configuration and mapping entry points over one registry.

Similar to AutoMapper in C#: rules are declared once, through create_map()
or profiles, and objects are then mapped by type without hand-written copy code.
"""
import inspect
import logging
import threading
from typing import Any, Callable, Iterable, Iterator, List, Optional, Type, TypeVar, Union

from automapping.config import get_config, ConfigManager
from automapping.core.classifier import TypeClassifier
from automapping.core.errors import ConfigurationError, log_exception, setup_logging
from automapping.core.executor import MappingExecutor
from automapping.core.metadata import MetadataCache
from automapping.core.registry import MappingRegistry, PolymorphicBinding, Predicate
from automapping.core.rules import MappingRule, RuleBuilder, TypePair

logger = logging.getLogger(__name__)

# Type variables
S = TypeVar('S')  # Source type
T = TypeVar('T')  # Target type

Configure = Callable[[RuleBuilder], Any]


class MappingProfile:
    """
    Group of related mapping declarations.

    Subclasses implement configure() and call create_map(), include() or
    register_converter() on the mapper they receive.
    """

    def configure(self, mapper: 'AutoMapper') -> None:
        """
        Declare mappings.

        Args:
            mapper: Mapper to configure
        """
        raise NotImplementedError


class AutoMapper:
    """
    Mapping engine facade.

    Each instance owns its own registry and caches, so independent instances
    never see each other's rules.
    """

    def __init__(self, config: Optional[ConfigManager] = None,
                 registry: Optional[MappingRegistry] = None):
        """
        Initialize the mapper.

        Args:
            config: Configuration (default: the global configuration)
            registry: Registry to use (default: a new empty registry)
        """
        config = config or get_config()

        if registry is None:
            metadata = MetadataCache()
            registry = MappingRegistry(metadata, TypeClassifier(metadata))

        self.registry = registry
        self.executor = MappingExecutor(
            registry,
            enable_compiled_mappers=config.get_bool("ENABLE_COMPILED_MAPPERS", True),
            max_depth=config.get_int("MAX_MAPPING_DEPTH", 64),
            log_conversion_failures=config.get_bool("LOG_CONVERSION_FAILURES", False)
        )

    # Configuration

    def create_map(self, source_type: Type[S], dest_type: Type[T],
                   configure: Optional[Configure] = None, partial: bool = False) -> Union[RuleBuilder, MappingRule]:
        """
        Start declaring the mapping for a type pair.

        Without configure, returns a builder bound to this mapper's registry;
        call register() (or reverse_map()) on it when done. With configure, the
        builder is passed to it and the rule is registered immediately.

        Args:
            source_type: Source type
            dest_type: Destination type
            configure: Optional function configuring the builder
            partial: Skip None source values (partial-update mapping)

        Returns:
            Builder, or the registered rule when configure is given
        """
        builder = RuleBuilder(source_type, dest_type, self.registry)
        if partial:
            builder.ignore_nulls()

        if configure is None:
            return builder

        configure(builder)
        return builder.register()

    def register(self, rule: MappingRule) -> MappingRule:
        """
        Register a prebuilt rule.

        Args:
            rule: Rule to register

        Returns:
            Registered rule
        """
        return self.registry.register(rule)

    def include(self, base_type: type, derived_type: type, dest_type: Any,
                predicate: Optional[Predicate] = None,
                configure: Optional[Configure] = None) -> PolymorphicBinding:
        """
        Map instances of derived_type to dest_type wherever base_type is expected.

        Args:
            base_type: Base source type
            derived_type: Derived source type
            dest_type: Destination type for derived instances
            predicate: Optional explicit condition, evaluated before implicit type checks
            configure: Optional function configuring the (derived_type, dest_type) rule

        Returns:
            Binding
        """
        rule = None
        if configure is not None:
            builder = RuleBuilder(derived_type, dest_type, self.registry)
            configure(builder)
            rule = builder.build()
        return self.registry.include(base_type, derived_type, dest_type, predicate, rule)

    def register_converter(self, from_type: Any, to_type: Any, converter: Callable[[Any], Any]) -> None:
        """
        Register a scalar converter.

        Args:
            from_type: Source value type
            to_type: Destination value type
            converter: Conversion function
        """
        self.registry.register_converter(from_type, to_type, converter)

    def add_profile(self, profile: Union[MappingProfile, Type[MappingProfile], Callable[['AutoMapper'], Any]]) -> None:
        """
        Apply a mapping profile.

        Args:
            profile: Profile class, profile instance or function taking the mapper

        Raises:
            ConfigurationError: If profile is none of these
        """
        if inspect.isclass(profile) and issubclass(profile, MappingProfile):
            profile = profile()

        if isinstance(profile, MappingProfile):
            name = type(profile).__name__
            apply = profile.configure
        elif callable(profile):
            name = getattr(profile, '__name__', repr(profile))
            apply = profile
        else:
            raise ConfigurationError(f"Not a mapping profile: {profile!r}", code="invalid_profile")

        try:
            apply(self)
        except Exception as e:
            logger.error(f"Failed to load mapping profile {name}")
            log_exception(e, logger)
            raise

        logger.info(f"Loaded mapping profile {name}")

    def add_profiles(self, *profiles) -> None:
        """
        Apply several mapping profiles in order.

        Args:
            *profiles: Profiles accepted by add_profile()
        """
        for profile in profiles:
            self.add_profile(profile)

    # Mapping

    def map(self, source: Any, dest_type: Any = None, destination: Any = None, *,
            source_type: Any = None, configure: Optional[Configure] = None) -> Any:
        """
        Map a source value; pairs without a rule are mapped by convention.

        Args:
            source: Source value
            dest_type: Destination type (inferred from destination or the default destination when omitted)
            destination: Existing destination to populate
            source_type: Statically expected source type
            configure: Per-call changes on top of the registered rule

        Returns:
            Destination value
        """
        rule = None
        if configure is not None and source is not None:
            rule = self._per_call_rule(source, dest_type, destination, source_type, configure)
        return self.executor.map(source, dest_type, destination, source_type=source_type, rule=rule)

    def map_to(self, source: Any, target: Any) -> Any:
        """
        Map to a destination type or instance through a configured rule or binding.

        Args:
            source: Source value
            target: Destination type or destination instance

        Returns:
            Destination value
        """
        return self.executor.map_to(source, target)

    def partial_map(self, source: Any, destination: Any, *, source_type: Any = None,
                    configure: Optional[Configure] = None) -> Any:
        """
        Update destination from source, leaving fields where the source has None untouched.

        Args:
            source: Source value
            destination: Destination to update
            source_type: Statically expected source type
            configure: Per-call changes on top of the registered rule

        Returns:
            Updated destination
        """
        rule = None
        if configure is not None and source is not None and destination is not None:
            rule = self._per_call_rule(source, type(destination), destination, source_type, configure)
        return self.executor.partial_map(source, destination, source_type=source_type, rule=rule)

    def partial_map_to(self, source: Any, target: Any) -> Any:
        """
        Partial map through a configured rule or binding.

        Args:
            source: Source value
            target: Destination type or destination instance

        Returns:
            Destination value
        """
        return self.executor.partial_map_to(source, target)

    def map_collection(self, sources: Iterable[Any], dest_element_type: Any = None, *,
                       source_element_type: Any = None) -> Iterator[Any]:
        """Lazily map each element of a sequence."""
        return self.executor.map_collection(sources, dest_element_type, source_element_type=source_element_type)

    def map_many(self, sources: Iterable[Any], dest_element_type: Any = None, *,
                 source_element_type: Any = None) -> List[Any]:
        """Map each element of a sequence into a list."""
        return self.executor.map_many(sources, dest_element_type, source_element_type=source_element_type)

    def get_all_mapping_configurations(self) -> List[TypePair]:
        """
        Get every registered type pair.

        Returns:
            List of type pairs in registration order
        """
        return self.registry.get_all_mapping_configurations()

    def get_rule(self, source_type: Any, dest_type: Any) -> Optional[MappingRule]:
        return self.registry.resolve(source_type, dest_type)

    def clear_caches(self) -> None:
        """Drop every metadata and compiled-mapper cache; registered rules are kept."""
        self.executor.clear_caches()

    def _per_call_rule(self, source: Any, dest_type: Any, destination: Any,
                       source_type: Any, configure: Configure) -> MappingRule:
        dest_type = dest_type or (type(destination) if destination is not None
                                  else self.registry.default_destination(type(source)))
        source_type = source_type or type(source)

        registered = self.registry.resolve_for_hierarchy(source_type, dest_type)
        if registered is not None:
            builder = RuleBuilder.from_rule(registered.with_options(source_type=source_type))
        else:
            builder = RuleBuilder(source_type, dest_type)
        configure(builder)
        return builder.build()


# Global mapper instance, created on first use
_mapper: Optional[AutoMapper] = None
_mapper_lock = threading.Lock()


def get_mapper() -> AutoMapper:
    """
    Get the global mapper instance.

    Returns:
        Global mapper
    """
    global _mapper
    with _mapper_lock:
        if _mapper is None:
            config = get_config()
            if config.get_bool("CONFIGURE_LOGGING", False):
                setup_logging(config.get("LOG_LEVEL", "INFO"), config.get("LOG_FILE") or None,
                              config.get("LOG_FORMAT"))
            _mapper = AutoMapper(config)
        return _mapper


def reset_mapper() -> None:
    """Drop the global mapper so the next get_mapper() builds a fresh one."""
    global _mapper
    with _mapper_lock:
        _mapper = None
