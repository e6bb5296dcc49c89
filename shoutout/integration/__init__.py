"""Upstream API integrations."""
