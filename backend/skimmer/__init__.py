"""Content Skimmer — event-driven file analysis and search indexing."""

__version__ = "1.0.0"
