"""Shout Out: sales celebration and attribution service for ServiceTitan tenants."""

__version__ = "1.0.0"
