"""Configuration module for ListingHarvester.

This module provides centralized configuration management using pydantic-settings,
loading every tunable of the extraction pipeline from the environment.
"""

from config.settings import GlobalConfig, get_config

__all__ = ["GlobalConfig", "get_config"]
