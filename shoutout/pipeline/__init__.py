"""Estimate ingestion pipeline.

Fetches sold estimates page by page, resolves names, attributes revenue to
tracked SKU categories, flags celebration events and upserts idempotently.
"""
