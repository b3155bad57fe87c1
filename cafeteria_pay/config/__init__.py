# Configuration package
"""
Configuration package for the cafeteria payment service
Exports the settings class and the cached accessor
"""
from .settings import Settings, get_settings, validate_settings

__all__ = ["Settings", "get_settings", "validate_settings"]
