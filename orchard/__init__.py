"""
Backend package for the durian orchard tracker.

This package provides a FastAPI application over a swappable persistence
layer (in-memory, SQL via SQLAlchemy, or a flat JSON file) that records the
trees planted on each garden grid.
"""
