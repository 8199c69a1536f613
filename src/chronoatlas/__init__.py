"""Year-by-year political map of Europe."""

__version__ = "0.1.0"
