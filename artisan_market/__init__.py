"""Inventory and promotional-campaign engine for the artisan marketplace."""

__version__ = "1.0.0"
