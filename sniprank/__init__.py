"""sniprank - multi-factor re-ranking of code search results."""

__version__ = "0.1.0"
