"""
Configuration module for the GGompertz/NBD estimation package.

This module handles environment variables and the numerical settings
(quadrature tolerances, optimizer defaults, logging) used during estimation.
"""

from .settings import (
    AppConfig,
    EstimationConfig,
    LoggingConfig,
    get_config,
    reload_config,
)

# Convenience imports for common usage
__all__ = [
    # Settings classes
    "AppConfig",
    "EstimationConfig",
    "LoggingConfig",
    # Settings functions
    "get_config",
    "reload_config",
]
