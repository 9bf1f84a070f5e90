"""Lens definitions, archetype catalogs and policy impact datasets."""

__version__ = "1.0.0"
