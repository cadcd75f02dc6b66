"""Flavortown shop monitor: crawl every region, diff, notify."""

__version__ = "0.3.0"
