"""Gift product intelligence: resilient scraping and product analysis."""

__version__ = "0.1.0"
