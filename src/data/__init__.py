"""
ReviewSight Data Module
=======================

Configuration and review harvesting.

This module provides:
    - Settings: environment-driven configuration (see config.py)
    - Harvester: pluggable review source contract
    - FileHarvester: JSON / raw page text source for offline runs

Quick Start:
    from src.data import FileHarvester, PhaseDescriptor

    harvester = FileHarvester("reviews.json")
    async for review in harvester.harvest(url, PhaseDescriptor("recent", 100)):
        print(review.rating, review.text)

Configuration:
    Set environment variables or create a .env file.
"""

from .config import get_settings, reset_settings, Settings
from .harvester import (
    PhaseDescriptor,
    Harvester,
    HarvestingError,
    FileHarvester,
    order_for_phase,
    validate_source_url,
)

__version__ = "1.0.0"

__all__ = [
    # Configuration
    "get_settings",
    "reset_settings",
    "Settings",
    # Harvesting
    "PhaseDescriptor",
    "Harvester",
    "HarvestingError",
    "FileHarvester",
    "order_for_phase",
    "validate_source_url",
]
