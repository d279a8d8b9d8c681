"""
PONYX Core Module
=================

Configuration shared by the compiler and the command line:
- Config: Layered configuration (defaults, project file, environment)
- CompilerOptions: The resolved ``compiler.*`` settings
"""

from ponyx.core.config import CompilerOptions, Config, ConfigError, get_config, set_config

__all__ = [
    "Config",
    "CompilerOptions",
    "ConfigError",
    "get_config",
    "set_config",
]
