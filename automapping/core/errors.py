"""
Exception hierarchy and logging utilities for the mapping engine.
"""
import logging
import sys
import traceback
from typing import Dict, Any, Optional, TypeVar, Callable
from functools import wraps
import time
import json

# Type variables
T = TypeVar('T')


def type_name(tp: Any) -> str:
    """
    Get a readable name for a class or typing construct.

    Args:
        tp: Class or typing construct

    Returns:
        Readable type name
    """
    if isinstance(tp, type):
        return tp.__qualname__
    return str(tp).replace('typing.', '')


class AutoMappingError(Exception):
    """
    Base exception for all mapping engine errors.

    Every error carries a machine-readable code and a details dict. Subclasses
    declare a default_code; raisers pass a narrower code when they have one
    (for example "unknown_field" rather than "invalid_configuration").
    """

    default_code: Optional[str] = None

    def __init__(self, message: str, code: Optional[str] = None,
                 details: Optional[Dict[str, Any]] = None):
        """
        Initialize the exception.

        Args:
            message: Error message
            code: Error code (default: the class's default_code)
            details: Additional error details, copied
        """
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.details = dict(details) if details else {}

    def to_dict(self) -> Dict[str, Any]:
        """
        Describe the error as plain data; an empty code or details entry is left out.

        Returns:
            Error dictionary
        """
        data: Dict[str, Any] = {"message": self.message, "type": type(self).__name__}
        for key, value in (("code", self.code), ("details", self.details)):
            if value:
                data[key] = value
        return data

    def __str__(self) -> str:
        data = self.to_dict()
        text = self.message
        if "code" in data:
            text += f" | Code: {data['code']}"
        if "details" in data:
            text += f" | Details: {json.dumps(data['details'], default=str)}"
        return text


class ConfigurationError(AutoMappingError):
    """A mapping rule refers to something the declared types do not have."""
    default_code = "invalid_configuration"


class SettingsError(AutoMappingError):
    """A library setting is missing, malformed or out of range."""
    default_code = "invalid_setting"


class MappingError(AutoMappingError):
    """Structural error raised while mapping."""
    default_code = "mapping_failed"


class UnresolvedMappingError(MappingError):
    """No rule and no default destination could be found for a type-inferring call."""

    default_code = "unresolved_mapping"

    def __init__(self, source_type: Any, dest_type: Any = None, message: Optional[str] = None):
        """
        Initialize the exception.

        Args:
            source_type: Runtime source type
            dest_type: Requested destination type (None when it had to be inferred)
            message: Optional message overriding the default one
        """
        self.source_type = source_type
        self.dest_type = dest_type

        if message is None:
            if dest_type is None:
                message = f"No default destination is registered for {type_name(source_type)}"
            else:
                message = f"No mapping is configured from {type_name(source_type)} to {type_name(dest_type)}"

        super().__init__(
            message,
            details={
                "source_type": type_name(source_type),
                "dest_type": type_name(dest_type) if dest_type is not None else None
            }
        )


class MappingDepthError(MappingError):
    """The object graph is deeper than the configured maximum (usually a cycle)."""
    default_code = "max_depth_exceeded"


class ConversionError(AutoMappingError):
    """A scalar value could not be coerced to the requested type."""

    default_code = "conversion_failed"

    def __init__(self, value: Any, target_type: Any, cause: Optional[Exception] = None):
        """
        Initialize the exception.

        Args:
            value: Value that failed to convert
            target_type: Requested type
            cause: Underlying exception, if any
        """
        self.value = value
        self.target_type = target_type
        self.cause = cause

        message = f"Cannot convert {type(value).__name__} value {value!r} to {type_name(target_type)}"
        if cause is not None:
            message = f"{message}: {cause}"

        super().__init__(message)


class UninstantiableTypeError(AutoMappingError):
    """A destination type has no usable construction path."""

    default_code = "uninstantiable_type"

    def __init__(self, target_type: Any, reason: str = "no usable construction path"):
        """
        Initialize the exception.

        Args:
            target_type: Type that could not be constructed
            reason: Why construction failed
        """
        self.target_type = target_type
        super().__init__(f"Cannot instantiate {type_name(target_type)}: {reason}")


def setup_logging(level: str = "INFO",
                  log_file: Optional[str] = None,
                  log_format: Optional[str] = None) -> None:
    """
    Set up logging configuration.

    Args:
        level: Logging level
        log_file: Log file path
        log_format: Log format string
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    # Thread name is included since mappings run on arbitrary caller threads
    if log_format is None:
        log_format = "%(asctime)s - %(name)s - %(levelname)s - [%(threadName)s] - %(message)s"

    logging.basicConfig(
        level=log_level,
        format=log_format,
        handlers=[
            logging.StreamHandler(sys.stdout)
        ]
    )

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(logging.Formatter(log_format))
        logging.getLogger().addHandler(file_handler)

    # SQLAlchemy engine logging drowns out mapping diagnostics
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def log_exception(exc: Exception, logger: Optional[logging.Logger] = None) -> None:
    """
    Log an exception with its traceback.

    Args:
        exc: Exception to log
        logger: Logger to use (default: root logger)
    """
    logger = logger or logging.getLogger()

    exc_tb = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))

    logger.error(
        f"Exception: {type(exc).__name__}: {exc}\n"
        f"Traceback:\n{exc_tb}"
    )


def log_execution_time(func: Callable[..., T]) -> Callable[..., T]:
    """
    Decorator to log function execution time.

    Args:
        func: Function to decorate

    Returns:
        Decorated function
    """
    logger = logging.getLogger(func.__module__)

    @wraps(func)
    def wrapper(*args, **kwargs):
        start_time = time.time()

        try:
            result = func(*args, **kwargs)

            elapsed = time.time() - start_time
            logger.debug(f"{func.__name__} executed in {elapsed:.4f} seconds")

            return result
        except Exception as e:
            elapsed = time.time() - start_time
            logger.debug(f"{func.__name__} failed after {elapsed:.4f} seconds: {e}")
            raise

    return wrapper
