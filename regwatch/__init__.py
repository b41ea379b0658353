"""regwatch — freshness and resilience pipeline for crawled regulatory facts."""

__version__ = "0.1.0"
