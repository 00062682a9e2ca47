# automapping/config/settings.py
"""
Default library settings. Every uppercase name here can be overridden with
an AUTOMAPPING_-prefixed environment variable, a JSON settings file or
explicit overrides passed to ConfigManager.
"""

# Logging settings
LOG_LEVEL = "INFO"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(threadName)s] - %(message)s"
LOG_FILE = ""

# Whether get_mapper() configures the root logger on first use
CONFIGURE_LOGGING = False

# Mapping engine settings
ENABLE_COMPILED_MAPPERS = True
MAX_MAPPING_DEPTH = 64

# Log swallowed per-field conversion failures at WARNING instead of DEBUG
LOG_CONVERSION_FAILURES = False
